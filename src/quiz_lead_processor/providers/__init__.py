"""
AI provider adapters.

Adapters are looked up by name in PROVIDER_REGISTRY, so the orchestrator never
inspects adapter types.
"""

from typing import Dict, Type

from quiz_lead_processor.providers.base import (
    AIResponse,
    BaseAIProvider,
    Completion,
    ModelInfo,
    ProviderConfig,
    TokenUsage,
)
from quiz_lead_processor.providers.claude_provider import ClaudeProvider
from quiz_lead_processor.providers.gemini_provider import GeminiProvider
from quiz_lead_processor.providers.openai_provider import OpenAIProvider

PROVIDER_REGISTRY: Dict[str, Type[BaseAIProvider]] = {
    "openai": OpenAIProvider,
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
}

__all__ = [
    "AIResponse",
    "BaseAIProvider",
    "ClaudeProvider",
    "Completion",
    "GeminiProvider",
    "ModelInfo",
    "OpenAIProvider",
    "PROVIDER_REGISTRY",
    "ProviderConfig",
    "TokenUsage",
]
