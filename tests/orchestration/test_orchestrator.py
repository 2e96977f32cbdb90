#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Orchestrator Tests

Unit and integration tests for the AIOrchestrator.
"""

import json
import pytest
from unittest.mock import AsyncMock, patch

from quiz_lead_processor.errors import (
    AllProvidersFailedError,
    ErrorKind,
    NoSuitableProviderError,
    ProviderError,
)
from quiz_lead_processor.metrics import HealthStatus
from quiz_lead_processor.orchestration.orchestrator import AIOrchestrator
from quiz_lead_processor.orchestration.scoring import ScoringPolicy
from quiz_lead_processor.orchestration.strategies import CostStrategy, RoundRobinStrategy

from conftest import ScriptedProvider


def overloaded(provider="alpha"):
    return ProviderError("Service overloaded", kind=ErrorKind.OVERLOADED, provider=provider, status_code=529)


class TestRegistration:
    """Tests for provider registration."""

    @pytest.mark.asyncio
    async def test_register_provider_instance(self, app_config):
        orchestrator = AIOrchestrator(app_config=app_config)
        provider = ScriptedProvider("alpha")

        registered = await orchestrator.register_provider("alpha", provider)

        assert registered is provider
        assert provider.is_initialized is True
        assert orchestrator.providers == {"alpha": provider}
        assert orchestrator.default_provider == "alpha"
        assert "alpha" in orchestrator.provider_usage

    @pytest.mark.asyncio
    async def test_default_provider_follows_preference(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("gemini"), ScriptedProvider("claude"))
        assert orchestrator.default_provider == "claude"

    @pytest.mark.asyncio
    async def test_failed_health_check_leaves_provider_unregistered(self, app_config):
        app_config.ai_health_check_on_register = True
        orchestrator = AIOrchestrator(app_config=app_config)
        provider = ScriptedProvider("alpha", responses=[overloaded()])

        registered = await orchestrator.register_provider("alpha", provider)

        assert registered is None
        assert orchestrator.providers == {}
        assert provider.is_initialized is False

    @pytest.mark.asyncio
    async def test_passing_health_check(self, app_config):
        app_config.ai_health_check_on_register = True
        orchestrator = AIOrchestrator(app_config=app_config)
        provider = ScriptedProvider("alpha", default_response="Hi")

        assert await orchestrator.register_provider("alpha", provider) is provider
        assert provider.calls[0]["prompt"] == "Hello"
        assert provider.calls[0]["options"]["max_tokens"] == 5

    @pytest.mark.asyncio
    async def test_unknown_provider_name(self, app_config):
        orchestrator = AIOrchestrator(app_config=app_config)
        assert await orchestrator.register_provider("mistral") is None

    @pytest.mark.asyncio
    async def test_invalid_provider_config(self, app_config):
        orchestrator = AIOrchestrator(app_config=app_config)
        # Missing API key
        assert await orchestrator.register_provider("claude", provider_config={}) is None
        assert orchestrator.providers == {}

    @pytest.mark.asyncio
    async def test_initialize_registers_configured_providers(self, app_config):
        app_config.anthropic_api_key = "test-anthropic-key"
        orchestrator = AIOrchestrator(app_config=app_config)

        names = await orchestrator.initialize()

        assert names == ["claude"]
        assert orchestrator.is_initialized is True
        assert orchestrator.providers["claude"].model == app_config.claude_model
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_initialize_without_keys(self, app_config):
        orchestrator = AIOrchestrator(app_config=app_config)
        assert await orchestrator.initialize() == []
        assert orchestrator.is_initialized is True

    def test_scoring_policy_loaded_from_file(self, app_config, tmp_path):
        path = tmp_path / "scoring.json"
        path.write_text(json.dumps({"base_affinity": {"gemini": 30.0}}))
        app_config.scoring_policy_path = path

        orchestrator = AIOrchestrator(app_config=app_config)

        assert orchestrator.scoring_policy.base_affinity["gemini"] == 30.0
        assert orchestrator.strategy.policy is orchestrator.scoring_policy

    def test_strategy_from_config(self, app_config):
        app_config.ai_selection_strategy = "round_robin"
        assert isinstance(AIOrchestrator(app_config=app_config).strategy, RoundRobinStrategy)


class TestSelection:
    """Tests for select_provider."""

    @pytest.mark.asyncio
    async def test_explicit_provider_wins(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(
            ScriptedProvider("alpha"), ScriptedProvider("beta"), strategy=CostStrategy()
        )
        assert orchestrator.select_provider("Hello", {"provider": "beta"}) == "beta"

    @pytest.mark.asyncio
    async def test_unknown_explicit_provider_is_ignored(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("alpha"))
        assert orchestrator.select_provider("Hello", {"provider": "missing"}) == "alpha"

    @pytest.mark.asyncio
    async def test_capability_filter(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(
            ScriptedProvider("textonly", vision=False, structured=False),
            ScriptedProvider("vision", vision=True, structured=False),
        )
        assert orchestrator.select_provider("Describe", {"requires_vision": True}) == "vision"

    @pytest.mark.asyncio
    async def test_no_capable_provider(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("textonly", vision=False, structured=False))

        with pytest.raises(NoSuitableProviderError) as excinfo:
            orchestrator.select_provider("Describe", {"requires_vision": True})

        assert excinfo.value.kind == ErrorKind.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_supported_providers_restricts_candidates(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("alpha"), ScriptedProvider("beta"))
        assert orchestrator.select_provider("Hello", {"supported_providers": ["beta"]}) == "beta"

    @pytest.mark.asyncio
    async def test_reliability_breaks_equal_scores(self, app_config, orchestrator_factory):
        policy = ScoringPolicy(base_affinity={"a": 5.0, "b": 5.0})
        orchestrator = await orchestrator_factory(ScriptedProvider("a"), ScriptedProvider("b"), scoring_policy=policy)

        # Equal scores go to the first registered provider
        assert orchestrator.select_provider("Hello", {}) == "a"

        orchestrator.provider_usage["a"].record(True, 10.0)
        orchestrator.provider_usage["a"].record(False, 10.0)
        orchestrator.provider_usage["a"].record(False, 10.0)

        assert orchestrator.select_provider("Hello", {}) == "b"
        assert orchestrator.get_provider_health("a").status == HealthStatus.UNHEALTHY


class TestExecution:
    """Tests for generation, fallback and caching."""

    @pytest.mark.asyncio
    async def test_generate_text(self, orchestrator_factory):
        provider = ScriptedProvider("alpha", responses=["Generated text"])
        orchestrator = await orchestrator_factory(provider)

        response = await orchestrator.generate_text("Hello", {"max_tokens": 100})

        assert response.content == "Generated text"
        assert response.provider == "alpha"
        assert response.usage.total_tokens == 30
        assert orchestrator.usage.requests == 1
        assert orchestrator.provider_usage["alpha"].successes == 1

    @pytest.mark.asyncio
    async def test_fallback_to_next_capable_provider(self, orchestrator_factory):
        alpha = ScriptedProvider("alpha", responses=[overloaded()])
        beta = ScriptedProvider("beta", responses=["From beta"])
        orchestrator = await orchestrator_factory(alpha, beta)

        response = await orchestrator.generate_text("Hello", {"provider": "alpha"})

        assert response.provider == "beta"
        assert response.content == "From beta"
        assert orchestrator.provider_usage["alpha"].failures == 1
        assert orchestrator.provider_usage["beta"].successes == 1
        assert orchestrator.usage.successes == 1

    @pytest.mark.asyncio
    async def test_fallback_skips_incapable_providers(self, orchestrator_factory):
        alpha = ScriptedProvider("alpha", responses=[overloaded()])
        plain = ScriptedProvider("plain", structured=False)
        gamma = ScriptedProvider("gamma", responses=[{"answer": 42}])
        orchestrator = await orchestrator_factory(alpha, plain, gamma)

        response = await orchestrator.generate_structured(
            "Hello", {"type": "object", "required": ["answer"]}, {"provider": "alpha"}
        )

        assert response.provider == "gamma"
        assert response.content == {"answer": 42}
        assert response.structured is True
        assert plain.calls == []

    @pytest.mark.asyncio
    async def test_all_providers_failed(self, orchestrator_factory):
        alpha = ScriptedProvider("alpha", responses=[overloaded("alpha")])
        beta = ScriptedProvider("beta", responses=[ProviderError("Too many requests", kind=ErrorKind.RATE_LIMITED)])
        orchestrator = await orchestrator_factory(alpha, beta)

        with pytest.raises(AllProvidersFailedError) as excinfo:
            await orchestrator.generate_text("Hello", {"provider": "alpha"})

        error = excinfo.value
        assert error.kind == ErrorKind.RATE_LIMITED
        assert [attempt["provider"] for attempt in error.attempts] == ["alpha", "beta"]
        assert orchestrator.usage.failures == 1

    @pytest.mark.asyncio
    async def test_fallback_disabled(self, app_config, orchestrator_factory):
        app_config.ai_enable_fallback = False
        alpha = ScriptedProvider("alpha", responses=[overloaded()])
        beta = ScriptedProvider("beta")
        orchestrator = await orchestrator_factory(alpha, beta)

        with pytest.raises(AllProvidersFailedError):
            await orchestrator.generate_text("Hello", {"provider": "alpha"})

        assert beta.calls == []

    @pytest.mark.asyncio
    async def test_no_providers(self, orchestrator_factory):
        orchestrator = await orchestrator_factory()

        with pytest.raises(ProviderError) as excinfo:
            await orchestrator.generate_text("Hello")

        assert excinfo.value.kind == ErrorKind.FATAL

    @pytest.mark.asyncio
    async def test_identical_requests_hit_the_cache(self, orchestrator_factory):
        provider = ScriptedProvider("alpha", responses=["first", "second"])
        orchestrator = await orchestrator_factory(provider)

        first = await orchestrator.generate_text("Hello", {"temperature": 0.5})
        second = await orchestrator.generate_text("Hello", {"temperature": 0.5})

        assert second is first
        assert len(provider.calls) == 1
        assert orchestrator.usage.cache_hits == 1
        assert orchestrator.usage.requests == 2

    @pytest.mark.asyncio
    async def test_caching_disabled(self, app_config, orchestrator_factory):
        app_config.ai_enable_caching = False
        provider = ScriptedProvider("alpha", responses=["first", "second"])
        orchestrator = await orchestrator_factory(provider)

        await orchestrator.generate_text("Hello")
        second = await orchestrator.generate_text("Hello")

        assert second.content == "second"
        assert orchestrator.usage.cache_hits == 0

    @pytest.mark.asyncio
    async def test_analyze_image_requires_vision(self, orchestrator_factory):
        blind = ScriptedProvider("blind", vision=False)
        seeing = ScriptedProvider("seeing", responses=["A chart"])
        orchestrator = await orchestrator_factory(blind, seeing)

        response = await orchestrator.analyze_image(b"\x89PNG", "Describe this chart")

        assert response.provider == "seeing"
        assert response.multimodal is True
        assert blind.calls == []

    @pytest.mark.asyncio
    async def test_model_not_served_is_dropped_per_provider(self, orchestrator_factory):
        alpha = ScriptedProvider("alpha", responses=[overloaded()])
        beta = ScriptedProvider("beta", responses=["ok"])
        orchestrator = await orchestrator_factory(alpha, beta)

        response = await orchestrator.generate_text("Hello", {"provider": "alpha", "model": "alpha-model"})

        assert alpha.calls[0]["model"] == "alpha-model"
        assert beta.calls[0]["model"] == "beta-model"
        assert response.model == "beta-model"


class TestStatus:
    """Tests for status reporting and maintenance."""

    @pytest.mark.asyncio
    async def test_status_is_json_serializable(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("alpha"), ScriptedProvider("beta"))
        await orchestrator.generate_text("Hello")

        status = orchestrator.get_status()

        json.dumps(status)
        assert status["total_providers"] == 2
        assert status["metrics"]["total_requests"] == 1
        assert status["providers"]["alpha"]["health"]["status"] in ("healthy", "unknown")
        assert status["configuration"]["selection_strategy"] == "characteristics"
        assert status["cache_size"] == 1

    @pytest.mark.asyncio
    async def test_describe_provider(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("alpha", vision=False))

        descriptor = orchestrator.describe_provider("alpha")

        assert descriptor.supports_vision is False
        assert descriptor.supports_structured is True
        assert descriptor.max_tokens == 4096
        assert descriptor.health.status == HealthStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_validate_providers(self, orchestrator_factory):
        good = ScriptedProvider("good")
        bad = ScriptedProvider("bad", default_response=overloaded("bad"))
        orchestrator = await orchestrator_factory(good, bad)

        assert await orchestrator.validate_providers() == ["good"]

    @pytest.mark.asyncio
    async def test_reset_metrics_and_clear_cache(self, orchestrator_factory):
        orchestrator = await orchestrator_factory(ScriptedProvider("alpha"))
        await orchestrator.generate_text("Hello")

        orchestrator.reset_metrics()
        orchestrator.clear_cache()

        assert orchestrator.usage.requests == 0
        assert orchestrator.provider_usage["alpha"].requests == 0
        assert len(orchestrator.cache) == 0

    @pytest.mark.asyncio
    async def test_close_closes_every_provider(self, orchestrator_factory):
        alpha = ScriptedProvider("alpha")
        orchestrator = await orchestrator_factory(alpha)

        with patch.object(alpha, "close", new=AsyncMock()) as close:
            await orchestrator.close()

        close.assert_awaited_once()
