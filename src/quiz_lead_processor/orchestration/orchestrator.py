#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
AI Orchestrator

Multi-provider AI orchestration for the lead processing core. Registers
provider adapters, selects a provider per request (capability filter, then one
selection strategy), falls back through the other capable providers on
failure, caches responses, and keeps global and per-provider usage metrics.
"""

import time
import logging
import inspect
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple, Type, Union

from quiz_lead_processor.config import config as default_config, AppConfig
from quiz_lead_processor.errors import (
    ErrorKind,
    ProviderError,
    NoSuitableProviderError,
    AllProvidersFailedError,
    classify_error,
)
from quiz_lead_processor.metrics import UsageCounters, OrchestratorUsage, ProviderHealth
from quiz_lead_processor.orchestration.cache import ResponseCache, make_cache_key
from quiz_lead_processor.orchestration.scoring import ScoringPolicy
from quiz_lead_processor.orchestration.strategies import SelectionStrategy, create_strategy
from quiz_lead_processor.providers import PROVIDER_REGISTRY, AIResponse, BaseAIProvider, ProviderConfig
from quiz_lead_processor.utils.logger import get_logger, log_provider_event

# Configure logger
logger = get_logger(__name__)

# Default provider preference
PROVIDER_PREFERENCE = ("claude", "openai", "gemini")


@dataclass
class ProviderDescriptor:
    """Capabilities, pricing and health of a registered provider."""
    name: str
    supports_vision: bool
    supports_structured: bool
    cost_per_token: float
    max_tokens: int
    health: ProviderHealth = field(default_factory=ProviderHealth)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "supports_vision": self.supports_vision,
            "supports_structured": self.supports_structured,
            "cost_per_token": self.cost_per_token,
            "max_tokens": self.max_tokens,
            "health": self.health.to_dict(),
        }


class AIOrchestrator:
    """
    Provider registry with selection, fallback, caching and metrics.

    One instance is constructed per service and handed to its callers.
    """

    def __init__(
        self,
        app_config: Optional[AppConfig] = None,
        scoring_policy: Optional[ScoringPolicy] = None,
        strategy: Optional[SelectionStrategy] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            app_config: Application configuration (defaults to the module config)
            scoring_policy: Weights for the characteristics strategy; loaded
                from AI_SCORING_POLICY_PATH when not given
            strategy: Selection strategy overriding AI_SELECTION_STRATEGY
        """
        self.config = app_config or default_config

        if scoring_policy is None and self.config.scoring_policy_path is not None:
            scoring_policy = ScoringPolicy.from_dict(self.config.load_json_config(self.config.scoring_policy_path))
        self.scoring_policy = scoring_policy or ScoringPolicy()
        self.strategy = strategy or create_strategy(self.config.ai_selection_strategy, self.scoring_policy)

        self.providers: Dict[str, BaseAIProvider] = {}
        self.provider_usage: Dict[str, UsageCounters] = {}
        self.usage = OrchestratorUsage()
        self.cache = ResponseCache(
            ttl_seconds=self.config.ai_cache_ttl_seconds,
            max_entries=self.config.ai_cache_max_entries,
        )
        self.default_provider: Optional[str] = None
        self.is_initialized = False

    # Registration

    async def register_provider(
        self,
        name: str,
        provider: Union[BaseAIProvider, Type[BaseAIProvider], None] = None,
        provider_config: Union[ProviderConfig, Dict[str, Any], None] = None,
    ) -> Optional[BaseAIProvider]:
        """
        Construct, initialize and health-probe a provider adapter.

        Failure is not fatal: it is logged and the provider stays unregistered.

        Args:
            name: Registry name of the provider
            provider: Adapter instance or class (defaults to PROVIDER_REGISTRY[name])
            provider_config: Adapter configuration when a class is given

        Returns:
            BaseAIProvider: Registered adapter, or None on failure
        """
        try:
            if provider is None:
                if name not in PROVIDER_REGISTRY:
                    raise ProviderError(f"Unknown provider: {name}", kind=ErrorKind.INVALID_REQUEST, provider=name)
                provider = PROVIDER_REGISTRY[name]
            if inspect.isclass(provider):
                provider = provider(provider_config or {})

            await provider.initialize()

            if self.config.ai_health_check_on_register:
                health = await provider.check_health()
                if not health.get("healthy"):
                    await provider.close()
                    raise ProviderError(
                        f"Health check failed: {health.get('error')}",
                        kind=ErrorKind.OVERLOADED,
                        provider=name,
                    )
        except Exception as e:
            log_provider_event(name, "register_failed", f"Failed to register provider: {e}", logging.WARNING)
            return None

        self.providers[name] = provider
        self.provider_usage.setdefault(name, UsageCounters())
        self._setup_provider_hierarchy()
        log_provider_event(name, "register", "Registered provider")
        return provider

    async def initialize(self) -> List[str]:
        """
        Register every provider with an API key in the configuration.

        Returns:
            List[str]: Names of the registered providers
        """
        for name, settings in self.config.provider_settings().items():
            await self.register_provider(name, PROVIDER_REGISTRY[name], settings)

        self.is_initialized = True
        if not self.providers:
            logger.warning("AI orchestrator initialized without any provider")
        else:
            logger.info(
                f"AI orchestrator initialized with {len(self.providers)} providers "
                f"(default: {self.default_provider}, strategy: {self.strategy.name})"
            )
        return list(self.providers)

    def _setup_provider_hierarchy(self) -> None:
        self.default_provider = next(
            (name for name in PROVIDER_PREFERENCE if name in self.providers),
            next(iter(self.providers), None),
        )

    # Selection

    @staticmethod
    def _options_for(provider: BaseAIProvider, options: Dict[str, Any]) -> Dict[str, Any]:
        """Drop a model name the provider does not serve."""
        model = options.get("model")
        if model and model not in provider.get_available_models():
            options = dict(options)
            options.pop("model")
        return options

    def _is_capable(self, name: str, options: Dict[str, Any]) -> bool:
        provider = self.providers[name]
        model = self._options_for(provider, options).get("model")
        if options.get("requires_vision") and not provider.supports_multimodal(model):
            return False
        if options.get("requires_structured") and not provider.supports_structured_output(model):
            return False
        return True

    def _capable_providers(self, options: Dict[str, Any]) -> List[str]:
        candidates = list(self.providers)
        supported = options.get("supported_providers")
        if supported:
            candidates = [name for name in candidates if name in supported]
        return [name for name in candidates if self._is_capable(name, options)]

    def select_provider(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Choose the provider for a request.

        Args:
            prompt: Request prompt
            options: provider, supported_providers, requires_vision,
                requires_structured, speed_priority, quality_priority,
                cost_priority, model

        Returns:
            str: Provider name
        """
        options = options or {}
        explicit = options.get("provider")
        if explicit and explicit in self.providers:
            return explicit

        candidates = self._capable_providers(options)
        if not candidates:
            raise NoSuitableProviderError(
                "No suitable providers available for this request",
                requires_vision=bool(options.get("requires_vision")),
                requires_structured=bool(options.get("requires_structured")),
            )

        if len(candidates) == 1:
            return candidates[0]

        return self.strategy.select(candidates, prompt, options, self.providers, self.get_provider_health)

    # Execution

    async def execute_with_fallback(
        self,
        primary: str,
        operation: str,
        args: Tuple[Any, ...],
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> AIResponse:
        """
        Run an adapter operation on the primary provider, then on the fallbacks.

        Fallbacks are the other registered providers able to serve the request,
        in registration order.

        Args:
            primary: Provider tried first
            operation: Adapter method name (generate_text, generate_structured, analyze_image)
            args: Positional arguments of the adapter call
            kwargs: Keyword arguments of the adapter call; "options" is
                adjusted per provider

        Returns:
            AIResponse: First successful response
        """
        kwargs = kwargs or {}
        options = kwargs.get("options") or {}
        chain = [primary] + [
            name for name in self.providers
            if name != primary and self._is_capable(name, options)
        ]

        last_error: Optional[BaseException] = None
        attempts = []

        for name in chain:
            provider = self.providers.get(name)
            if provider is None:
                continue

            call_kwargs = dict(kwargs)
            if "options" in call_kwargs:
                call_kwargs["options"] = self._options_for(provider, options)

            start_time = time.monotonic()
            try:
                logger.debug(f"Executing {operation} with {name} provider")
                response = await getattr(provider, operation)(*args, **call_kwargs)
            except Exception as e:
                elapsed_ms = (time.monotonic() - start_time) * 1000
                self.provider_usage.setdefault(name, UsageCounters()).record(False, elapsed_ms)
                last_error = e
                attempts.append({"provider": name, "error": str(e), "kind": classify_error(e).value})
                log_provider_event(
                    name, "error", f"{operation} failed: {e}", logging.WARNING,
                    stage=options.get("stage"), lead_id=options.get("lead_id"),
                )

                if not self.config.ai_enable_fallback:
                    break
                continue

            elapsed_ms = response.processing_time_ms or (time.monotonic() - start_time) * 1000
            self.provider_usage.setdefault(name, UsageCounters()).record(True, elapsed_ms, response.cost)

            if name != primary:
                log_provider_event(
                    name, "fallback", f"Fallback from {primary} succeeded for {operation}", logging.WARNING,
                    stage=options.get("stage"), lead_id=options.get("lead_id"),
                )
            return response

        raise AllProvidersFailedError(
            f"All providers failed for {operation}: {last_error}",
            last_error=last_error,
            attempts=attempts,
        )

    def _ensure_providers(self) -> None:
        if not self.providers:
            raise ProviderError("No AI providers available", kind=ErrorKind.FATAL)

    async def _run(
        self,
        request_type: str,
        prompt: str,
        options: Dict[str, Any],
        operation: str,
        args: Tuple[Any, ...],
        schema: Optional[Dict[str, Any]] = None,
        image: Optional[Union[str, bytes]] = None,
    ) -> AIResponse:
        self._ensure_providers()

        cache_key = None
        if self.config.ai_enable_caching:
            cache_key = make_cache_key(request_type, prompt, options, schema=schema, image=image)
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.usage.record_cache_hit()
                logger.debug(f"Cache hit for {request_type} request")
                return cached

        start_time = time.monotonic()
        try:
            primary = self.select_provider(prompt, options)
            response = await self.execute_with_fallback(primary, operation, args, {"options": options})
        except Exception:
            self.usage.record(False, (time.monotonic() - start_time) * 1000)
            raise

        self.usage.record(True, (time.monotonic() - start_time) * 1000, response.cost)

        if cache_key is not None:
            self.cache.set(cache_key, response)

        return response

    async def generate_text(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> AIResponse:
        """
        Generate text with provider selection, fallback and caching.

        Args:
            prompt: Input prompt
            options: Selection hints and adapter options

        Returns:
            AIResponse: Provider response
        """
        options = dict(options or {})
        return await self._run("text", prompt, options, "generate_text", (prompt,))

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> AIResponse:
        """
        Generate a JSON object, only on providers supporting structured output.

        Args:
            prompt: Input prompt
            schema: JSON schema of the expected object
            options: Selection hints and adapter options

        Returns:
            AIResponse: Provider response with dict content
        """
        options = dict(options or {})
        options["requires_structured"] = True
        return await self._run("structured", prompt, options, "generate_structured", (prompt, schema), schema=schema)

    async def analyze_image(
        self,
        image: Union[str, bytes],
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> AIResponse:
        """
        Analyze an image, only on vision-capable providers.

        Args:
            image: URL, data URL, base64 string or bytes
            prompt: Analysis prompt
            options: Selection hints and adapter options

        Returns:
            AIResponse: Provider response
        """
        options = dict(options or {})
        options["requires_vision"] = True
        return await self._run("image", prompt, options, "analyze_image", (image, prompt), image=image)

    # Health and status

    def get_provider_health(self, name: str) -> ProviderHealth:
        return ProviderHealth.from_counters(self.provider_usage.get(name, UsageCounters()))

    def describe_provider(self, name: str) -> ProviderDescriptor:
        provider = self.providers[name]
        return ProviderDescriptor(
            name=name,
            supports_vision=provider.supports_multimodal(),
            supports_structured=provider.supports_structured_output(),
            cost_per_token=provider.get_cost_per_token(),
            max_tokens=provider.get_max_tokens(),
            health=self.get_provider_health(name),
        )

    async def validate_providers(self) -> List[str]:
        """
        Re-probe the health of every registered provider.

        Returns:
            List[str]: Names of the providers that answered the probe
        """
        valid = []
        for name, provider in self.providers.items():
            health = await provider.check_health()
            if health.get("healthy"):
                valid.append(name)
            else:
                log_provider_event(name, "health", f"Health check failed: {health.get('error')}", logging.WARNING)
        return valid

    def get_status(self) -> Dict[str, Any]:
        """
        JSON-serializable snapshot of providers, metrics and configuration.

        Returns:
            Dict: Orchestrator status
        """
        providers = {}
        for name, provider in self.providers.items():
            info = provider.get_info()
            info["health"] = self.get_provider_health(name).to_dict()
            info["usage"] = self.provider_usage[name].to_dict()
            providers[name] = info

        metrics = self.usage.to_dict()
        metrics["provider_usage"] = {name: usage.to_dict() for name, usage in self.provider_usage.items()}

        return {
            "initialized": self.is_initialized,
            "total_providers": len(self.providers),
            "default_provider": self.default_provider,
            "providers": providers,
            "metrics": metrics,
            "selection": self.strategy.get_stats(),
            "configuration": {
                "enable_fallback": self.config.ai_enable_fallback,
                "enable_caching": self.config.ai_enable_caching,
                "cache_ttl_seconds": self.config.ai_cache_ttl_seconds,
                "cache_max_entries": self.config.ai_cache_max_entries,
                "selection_strategy": self.strategy.name,
            },
            "cache_size": len(self.cache),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("AI orchestrator cache cleared")

    def reset_metrics(self) -> None:
        self.usage = OrchestratorUsage()
        self.provider_usage = {name: UsageCounters() for name in self.providers}
        logger.info("AI orchestrator metrics reset")

    async def close(self) -> None:
        for name, provider in self.providers.items():
            await provider.close()
            logger.debug(f"Closed {name} provider")
