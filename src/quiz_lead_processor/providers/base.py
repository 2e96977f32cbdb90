#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
AI Provider Base Interface

Abstract base class shared by the OpenAI, Claude and Gemini adapters. The base
class owns input validation, transient-failure retries, cost accounting,
structured-output parsing and response normalization. Adapters only translate
one completion request to their vendor API and map vendor failures to typed
ProviderError kinds.
"""

import re
import json
import time
import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception

from quiz_lead_processor.errors import ErrorKind, ProviderError, ValidationError, is_retryable
from quiz_lead_processor.utils.logger import get_logger, log_provider_event

# Configure logger
logger = get_logger(__name__)

# Constants
DEFAULT_MAX_PROMPT_LENGTH = 32000
DEFAULT_MAX_TOKENS = 4096
DEFAULT_COST_PER_TOKEN = 0.000001
HEALTH_CHECK_PROMPT = "Hello"

# Blend used to reduce input/output pricing to one per-token figure
INPUT_COST_WEIGHT = 0.7
OUTPUT_COST_WEIGHT = 0.3

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class ProviderConfig(BaseModel):
    """Adapter configuration, usually built from AppConfig.provider_settings()."""
    model_config = ConfigDict(extra="ignore")

    api_key: str = ""
    model: Optional[str] = None
    organization: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_wait_multiplier: float = Field(default=1.0, ge=0)
    retry_wait_max: float = Field(default=8.0, ge=0)


@dataclass
class ModelInfo:
    """Pricing and capabilities of one vendor model."""
    input_cost_per_1m: float
    output_cost_per_1m: float
    max_output_tokens: int
    context_window: int
    supports_vision: bool = False
    supports_structured: bool = False

    @property
    def cost_per_token(self) -> float:
        return (
            self.input_cost_per_1m * INPUT_COST_WEIGHT
            + self.output_cost_per_1m * OUTPUT_COST_WEIGHT
        ) / 1_000_000

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (
            prompt_tokens / 1_000_000 * self.input_cost_per_1m
            + completion_tokens / 1_000_000 * self.output_cost_per_1m
        )


@dataclass
class TokenUsage:
    """Token counts reported by the vendor."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class Completion:
    """Raw result of one vendor call, before normalization."""
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class AIResponse:
    """Normalized provider response."""
    content: Any
    provider: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    processing_time_ms: float = 0.0
    finish_reason: Optional[str] = None
    request_id: Optional[str] = None
    structured: bool = False
    multimodal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def error_from_status(provider: str, status_code: int, message: str) -> ProviderError:
    """
    Map an upstream HTTP status to a typed ProviderError.

    Args:
        provider: Provider name
        status_code: HTTP status returned by the vendor
        message: Error text returned by the vendor

    Returns:
        ProviderError: Error carrying the matching ErrorKind
    """
    if status_code == 429:
        kind = ErrorKind.RATE_LIMITED
    elif status_code in (401, 403):
        kind = ErrorKind.AUTH
    elif status_code == 408:
        kind = ErrorKind.TIMEOUT
    elif status_code >= 500:
        # 529 is Anthropic's overloaded status
        kind = ErrorKind.OVERLOADED
    elif 400 <= status_code < 500:
        kind = ErrorKind.INVALID_REQUEST
    else:
        kind = ErrorKind.FATAL

    return ProviderError(
        f"{provider} API error ({status_code}): {message}",
        kind=kind,
        provider=provider,
        status_code=status_code,
    )


def parse_structured_content(text: str, schema: Optional[Dict[str, Any]], provider: str) -> Dict[str, Any]:
    """
    Parse model output into a JSON object and check the schema's required keys.

    Models sometimes wrap JSON in prose or code fences, so the outermost
    object in the text is used when the whole text does not parse.

    Args:
        text: Raw model output
        schema: JSON schema requested from the model
        provider: Provider name for error context

    Returns:
        Dict: Parsed object
    """
    candidates = [text.strip()]
    match = JSON_OBJECT_PATTERN.search(text)
    if match:
        candidates.append(match.group(0))

    parsed = None
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            break
        except (ValueError, TypeError):
            continue

    if not isinstance(parsed, dict):
        raise ValidationError(
            f"Failed to parse structured response from {provider}",
            provider=provider,
            content=text[:200],
        )

    required = (schema or {}).get("required", [])
    missing = [key for key in required if key not in parsed]
    if missing:
        raise ValidationError(
            f"Structured response from {provider} is missing required fields: {', '.join(missing)}",
            provider=provider,
            missing=missing,
        )

    return parsed


def prepare_image(image: Union[str, bytes], default_media_type: str = "image/jpeg") -> Dict[str, str]:
    """
    Normalize an image argument.

    Args:
        image: URL, data URL, bare base64 string, or raw bytes

    Returns:
        Dict: Either {"url": ...} or {"media_type": ..., "data": base64}
    """
    if isinstance(image, (bytes, bytearray)):
        return {"media_type": default_media_type, "data": base64.b64encode(bytes(image)).decode("ascii")}

    if isinstance(image, str):
        if image.startswith("http://") or image.startswith("https://"):
            return {"url": image}
        if image.startswith("data:image"):
            header, _, data = image.partition(",")
            media_type = header[len("data:"):].split(";")[0] or default_media_type
            return {"media_type": media_type, "data": data}
        return {"media_type": default_media_type, "data": image}

    raise ProviderError(
        "Invalid image format. Provide a URL, base64 string, or bytes",
        kind=ErrorKind.INVALID_REQUEST,
    )


class BaseAIProvider(ABC):
    """
    Abstract base class for AI providers.

    Subclasses declare MODELS and DEFAULT_MODEL and implement initialize()
    and _complete(). Capability probes, cost figures and limits are derived
    from the model table.
    """

    name = "base"
    MODELS: Dict[str, ModelInfo] = {}
    DEFAULT_MODEL = ""

    def __init__(self, config: Union[ProviderConfig, Dict[str, Any]]):
        """
        Initialize the provider.

        Args:
            config: Provider configuration (api_key, model, timeout, retry settings)
        """
        if not isinstance(config, ProviderConfig):
            config = ProviderConfig.model_validate(config)

        self.config = config
        self.model = config.model or self.DEFAULT_MODEL
        self.is_initialized = False
        self.token_usage = {
            "total_tokens": 0,
            "total_cost": 0.0,
            "request_count": 0,
        }

        self.validate_config()

    def validate_config(self) -> None:
        """Validate the API key and default model."""
        if not self.config.api_key:
            raise ProviderError(f"{self.name} API key is required", kind=ErrorKind.AUTH, provider=self.name)

        if self.MODELS and self.model not in self.MODELS:
            raise ProviderError(
                f"Unsupported {self.name} model: {self.model}",
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.name,
            )

    @abstractmethod
    async def initialize(self) -> None:
        """Create the vendor client."""

    @abstractmethod
    async def _complete(
        self,
        prompt: str,
        model: str,
        options: Dict[str, Any],
        schema: Optional[Dict[str, Any]] = None,
        image: Optional[Dict[str, str]] = None,
    ) -> Completion:
        """Perform one vendor call. Vendor failures must be raised as ProviderError."""

    async def close(self) -> None:
        """Release the vendor client."""
        self.is_initialized = False

    # Capability negotiation

    def model_info(self, model: Optional[str] = None) -> Optional[ModelInfo]:
        return self.MODELS.get(model or self.model)

    def supports_multimodal(self, model: Optional[str] = None) -> bool:
        info = self.model_info(model)
        return bool(info and info.supports_vision)

    def supports_structured_output(self, model: Optional[str] = None) -> bool:
        info = self.model_info(model)
        return bool(info and info.supports_structured)

    def get_available_models(self) -> List[str]:
        return list(self.MODELS.keys())

    def get_cost_per_token(self) -> float:
        info = self.model_info()
        return info.cost_per_token if info else DEFAULT_COST_PER_TOKEN

    def get_max_tokens(self) -> int:
        info = self.model_info()
        return info.max_output_tokens if info else DEFAULT_MAX_TOKENS

    def get_max_prompt_length(self) -> int:
        return DEFAULT_MAX_PROMPT_LENGTH

    def estimate_tokens(self, text: str) -> int:
        """Roughly four characters per token."""
        return -(-len(text) // 4)

    def estimate_cost(self, prompt: str) -> float:
        return self.estimate_tokens(prompt) * self.get_cost_per_token()

    def calculate_cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        info = self.model_info(model)
        if info is None:
            return 0.0
        return info.calculate_cost(prompt_tokens, completion_tokens)

    # Requests

    def validate_input(self, prompt: str, options: Dict[str, Any]) -> None:
        """
        Validate request parameters before any vendor call.

        Args:
            prompt: Input prompt
            options: Request options (max_tokens, temperature)
        """
        if not prompt or not isinstance(prompt, str):
            raise ProviderError("Prompt must be a non-empty string", kind=ErrorKind.INVALID_REQUEST, provider=self.name)

        if len(prompt) > self.get_max_prompt_length():
            raise ProviderError(
                f"Prompt exceeds maximum length of {self.get_max_prompt_length()} characters",
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.name,
            )

        max_tokens = options.get("max_tokens")
        if max_tokens is not None and max_tokens > self.get_max_tokens():
            raise ProviderError(
                f"max_tokens exceeds provider limit of {self.get_max_tokens()}",
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.name,
            )

        temperature = options.get("temperature")
        if temperature is not None and not 0 <= temperature <= 2:
            raise ProviderError("Temperature must be between 0 and 2", kind=ErrorKind.INVALID_REQUEST, provider=self.name)

    async def _complete_with_retry(self, prompt: str, model: str, options: Dict[str, Any], **kwargs: Any) -> Completion:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.retry_wait_multiplier, max=self.config.retry_wait_max),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    log_provider_event(
                        self.name, "retry",
                        f"Retrying {model} request (attempt {attempt.retry_state.attempt_number})",
                    )
                return await self._complete(prompt, model, options, **kwargs)

    def _normalize(self, completion: Completion, content: Any, model: str, start_time: float, **flags: bool) -> AIResponse:
        usage = TokenUsage(
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            total_tokens=completion.prompt_tokens + completion.completion_tokens,
        )
        cost = self.calculate_cost(model, usage.prompt_tokens, usage.completion_tokens)

        self.token_usage["total_tokens"] += usage.total_tokens
        self.token_usage["total_cost"] += cost
        self.token_usage["request_count"] += 1

        return AIResponse(
            content=content,
            provider=self.name,
            model=model,
            usage=usage,
            cost=cost,
            processing_time_ms=(time.monotonic() - start_time) * 1000,
            finish_reason=completion.finish_reason,
            request_id=completion.request_id,
            **flags,
        )

    async def generate_text(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> AIResponse:
        """
        Generate a free-text response.

        Args:
            prompt: Input prompt
            options: model, max_tokens, temperature, system_prompt, history

        Returns:
            AIResponse: Normalized response with text content
        """
        options = options or {}
        self.validate_input(prompt, options)
        model = options.get("model") or self.model

        start_time = time.monotonic()
        completion = await self._complete_with_retry(prompt, model, options)
        return self._normalize(completion, completion.text, model, start_time)

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> AIResponse:
        """
        Generate a JSON object response matching schema.

        Args:
            prompt: Input prompt
            schema: JSON schema of the expected object
            options: model, max_tokens, temperature, system_prompt

        Returns:
            AIResponse: Normalized response with dict content
        """
        options = options or {}
        model = options.get("model") or self.model
        if not self.supports_structured_output(model):
            raise ProviderError(
                f"Model {model} does not support structured output",
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.name,
            )
        self.validate_input(prompt, options)

        start_time = time.monotonic()
        completion = await self._complete_with_retry(prompt, model, options, schema=schema)
        content = parse_structured_content(completion.text, schema, self.name)
        return self._normalize(completion, content, model, start_time, structured=True)

    async def analyze_image(
        self,
        image: Union[str, bytes],
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> AIResponse:
        """
        Analyze an image with a vision-capable model.

        Args:
            image: URL, data URL, base64 string or bytes
            prompt: Analysis prompt
            options: model, max_tokens, temperature, detail

        Returns:
            AIResponse: Normalized response with text content
        """
        options = options or {}
        model = options.get("model") or self.model
        if not self.supports_multimodal(model):
            raise ProviderError(
                f"Model {model} does not support image analysis",
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.name,
            )
        self.validate_input(prompt, options)

        start_time = time.monotonic()
        completion = await self._complete_with_retry(prompt, model, options, image=prepare_image(image))
        return self._normalize(completion, completion.text, model, start_time, multimodal=True)

    async def check_health(self) -> Dict[str, Any]:
        """
        Probe the provider with a minimal request.

        Returns:
            Dict: {"healthy": bool, "provider": name, ...}
        """
        start_time = time.monotonic()
        try:
            await self.generate_text(HEALTH_CHECK_PROMPT, {"max_tokens": 5})
        except ProviderError as e:
            return {"healthy": False, "provider": self.name, "error": e.to_dict()}

        return {
            "healthy": True,
            "provider": self.name,
            "response_time_ms": (time.monotonic() - start_time) * 1000,
            "usage": dict(self.token_usage),
        }

    def get_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "initialized": self.is_initialized,
            "model": self.model,
            "supports_multimodal": self.supports_multimodal(),
            "supports_structured_output": self.supports_structured_output(),
            "available_models": self.get_available_models(),
            "max_tokens": self.get_max_tokens(),
            "max_prompt_length": self.get_max_prompt_length(),
            "cost_per_token": self.get_cost_per_token(),
        }
