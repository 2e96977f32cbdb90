#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Pytest configuration file for the Quiz Lead Processor test suite.
"""

import asyncio
import os
import sys
import copy
import json
import pytest
from pathlib import Path
from typing import Dict, List, Any, Optional

# Add the project root directory to Python path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Add the src directory to Python path for accessing quiz_lead_processor
src_path = os.path.join(project_root, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from quiz_lead_processor.config import AppConfig
from quiz_lead_processor.errors import QueueError
from quiz_lead_processor.orchestration.orchestrator import AIOrchestrator
from quiz_lead_processor.providers.base import BaseAIProvider, Completion, ModelInfo, ProviderConfig


# Define pytest markers
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: mark test as exercising several components together"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as waiting on real backoff delays"
    )


SAMPLE_LEAD = {
    "id": 42,
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "company": "Analytical Engines Ltd",
    "campaign": 7,
    "quizAnswers": {"team_size": "11-50", "ai_usage": "experimenting", "budget": "medium"},
}

SAMPLE_CAMPAIGN = {
    "id": 7,
    "title": "AI Readiness Quiz",
    "campaignType": "quiz",
    "googleSheetId": "sheet-123",
    "config": {},
}

ANALYSIS_RESULT = {
    "leadScore": 82,
    "qualification": "hot",
    "summary": "Ada runs a mid-sized team that is already experimenting with AI.",
    "insights": ["Active experimentation", "Budget available"],
    "recommendations": ["Offer a pilot project"],
}

RESPONSE_TEXT = (
    "Hi Ada, thanks for taking the AI Readiness Quiz. Here is your personalized assessment: "
    "your team is ready for a focused pilot and already has the budget to run it."
)

EMAIL_TEXT = (
    "Subject: Your AI Readiness Results\n\n"
    "Dear Ada,\n\nYour team scored well on our readiness quiz. We recommend starting with a pilot."
)


class ScriptedProvider(BaseAIProvider):
    """Provider whose completions come from a script of texts, dicts or exceptions."""

    def __init__(
        self,
        name: str = "scripted",
        responses: Optional[List[Any]] = None,
        default_response: Any = "ok",
        cost_per_1m: float = 1.0,
        vision: bool = True,
        structured: bool = True,
    ):
        self.name = name
        self.DEFAULT_MODEL = f"{name}-model"
        self.MODELS = {
            self.DEFAULT_MODEL: ModelInfo(
                input_cost_per_1m=cost_per_1m,
                output_cost_per_1m=cost_per_1m,
                max_output_tokens=4096,
                context_window=32000,
                supports_vision=vision,
                supports_structured=structured,
            )
        }
        self.responses = list(responses or [])
        self.default_response = default_response
        self.calls: List[Dict[str, Any]] = []
        super().__init__(ProviderConfig(api_key="test-key", max_retries=1, retry_wait_multiplier=0))

    async def initialize(self) -> None:
        self.is_initialized = True

    async def _complete(self, prompt, model, options, schema=None, image=None) -> Completion:
        self.calls.append({"prompt": prompt, "model": model, "options": dict(options), "schema": schema})
        response = self.responses.pop(0) if self.responses else self.default_response
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return Completion(text=response, prompt_tokens=10, completion_tokens=20, finish_reason="stop")


class InMemoryLeadRepository:
    """LeadRepository keeping records in dicts and recording every update."""

    def __init__(self, leads=None, campaigns=None):
        self.leads: Dict[Any, Dict[str, Any]] = {lead["id"]: dict(lead) for lead in (leads or [])}
        self.campaigns: Dict[Any, Dict[str, Any]] = {c["id"]: copy.deepcopy(c) for c in (campaigns or [])}
        self.updates: List[tuple] = []

    async def get_lead(self, lead_id):
        lead = self.leads.get(lead_id)
        return dict(lead) if lead else None

    async def get_campaign(self, campaign_id):
        campaign = self.campaigns.get(campaign_id)
        return copy.deepcopy(campaign) if campaign else None

    async def update_lead(self, lead_id, data):
        self.updates.append((lead_id, copy.deepcopy(data)))
        self.leads.setdefault(lead_id, {"id": lead_id}).update(data)

    def statuses(self, lead_id) -> List[str]:
        return [data.get("aiProcessingStatus") for lid, data in self.updates if lid == lead_id]


class RecordingScheduler:
    """JobScheduler that records jobs and fails for selected queues."""

    def __init__(self, failing_queues=()):
        self.jobs: List[Dict[str, Any]] = []
        self.failing_queues = set(failing_queues)

    async def add_job(self, queue_name, job_type, payload, options=None):
        if queue_name in self.failing_queues:
            raise QueueError(f"Queue {queue_name} unavailable")
        job = {"queue": queue_name, "type": job_type, "payload": dict(payload), "options": dict(options or {})}
        self.jobs.append(job)
        return job

    def jobs_for(self, queue_name) -> List[Dict[str, Any]]:
        return [job for job in self.jobs if job["queue"] == queue_name]


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll a predicate, plain or coroutine function, until it holds or the timeout expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        outcome = predicate()
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        if outcome:
            return
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture(scope="function")
def temp_log_path(tmp_path: Path) -> Path:
    """Temporary log file path for testing."""
    return tmp_path / "test.log"


@pytest.fixture(scope="function")
def mock_env_vars(monkeypatch, temp_log_path: Path):
    """
    Set up environment variables for testing.

    Args:
        monkeypatch: Pytest monkeypatch fixture
        temp_log_path: Temporary log file path
    """
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("LOG_FILE_PATH", str(temp_log_path))
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key")
    monkeypatch.delenv("GOOGLE_AI_API_KEY", raising=False)
    monkeypatch.setenv("AI_SELECTION_STRATEGY", "cost")
    monkeypatch.setenv("AI_CACHE_TTL", "120")
    monkeypatch.setenv("AI_PROCESSING_TIMEOUT", "15")
    monkeypatch.setenv("QUEUE_BACKEND", "memory")
    monkeypatch.setenv("QUEUE_CONCURRENCY", "2")
    monkeypatch.setenv("QUEUE_REDIS_URL", "redis://cache.internal:6380/2")
    monkeypatch.setenv("DEBUG_MODE", "true")


@pytest.fixture(scope="function")
def app_config() -> AppConfig:
    """Configuration independent of the environment, tuned for fast tests."""
    config = AppConfig()
    config.openai_api_key = None
    config.anthropic_api_key = None
    config.google_ai_api_key = None
    config.ai_enable_fallback = True
    config.ai_enable_caching = True
    config.ai_cache_ttl_seconds = 3600
    config.ai_cache_max_entries = 1000
    config.ai_selection_strategy = "characteristics"
    config.ai_health_check_on_register = False
    config.scoring_policy_path = None
    config.ai_processing_timeout_seconds = 5
    config.retry_delay_seconds = 30
    config.max_processing_retries = 3
    config.quality_warning_threshold = 0.6
    config.queue_backend = "memory"
    config.queue_concurrency = 5
    config.queue_key_prefix = "test"
    config.queue_poll_interval = 0.01
    return config


@pytest.fixture(scope="function")
def lead_repository() -> InMemoryLeadRepository:
    return InMemoryLeadRepository(leads=[SAMPLE_LEAD], campaigns=[SAMPLE_CAMPAIGN])


@pytest.fixture(scope="function")
def recording_scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture(scope="function")
def orchestrator_factory(app_config):
    """Returns a coroutine building an orchestrator with the given providers registered."""

    async def build(*providers: BaseAIProvider, config: Optional[AppConfig] = None, **kwargs) -> AIOrchestrator:
        orchestrator = AIOrchestrator(app_config=config or app_config, **kwargs)
        for provider in providers:
            await orchestrator.register_provider(provider.name, provider)
        orchestrator.is_initialized = True
        return orchestrator

    return build


@pytest.fixture(scope="function")
def happy_provider() -> ScriptedProvider:
    """Provider scripted for one complete pipeline run."""
    return ScriptedProvider("alpha", responses=[ANALYSIS_RESULT, RESPONSE_TEXT, EMAIL_TEXT])
