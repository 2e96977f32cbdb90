#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
OpenAI Provider

Adapter for OpenAI chat models through the official async client. Structured
output uses JSON mode and vision requests send image content parts.
"""

import json
from typing import Dict, List, Any, Optional

import openai
from openai import AsyncOpenAI

from quiz_lead_processor.errors import ErrorKind, ProviderError
from quiz_lead_processor.providers.base import (
    BaseAIProvider,
    Completion,
    ModelInfo,
    error_from_status,
)
from quiz_lead_processor.utils.logger import get_logger, log_provider_event

# Configure logger
logger = get_logger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_STRUCTURED_TEMPERATURE = 0.3


class OpenAIProvider(BaseAIProvider):
    """OpenAI GPT models (GPT-4o family by default)."""

    name = "openai"
    DEFAULT_MODEL = "gpt-4o"
    MODELS = {
        "gpt-4o": ModelInfo(2.50, 10.00, 16384, 128000, supports_vision=True, supports_structured=True),
        "gpt-4o-mini": ModelInfo(0.15, 0.60, 16384, 128000, supports_vision=True, supports_structured=True),
        "gpt-4-turbo": ModelInfo(10.00, 30.00, 4096, 128000, supports_vision=True, supports_structured=True),
        "gpt-4": ModelInfo(30.00, 60.00, 8192, 8192),
        "gpt-3.5-turbo": ModelInfo(0.50, 1.50, 4096, 16385),
    }

    def __init__(self, config, client: Optional[AsyncOpenAI] = None):
        super().__init__(config)
        self.client = client

    async def initialize(self) -> None:
        if self.client is None:
            self.client = AsyncOpenAI(
                api_key=self.config.api_key,
                organization=self.config.organization,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                # Retries are handled by BaseAIProvider
                max_retries=0,
            )
        self.is_initialized = True
        log_provider_event(self.name, "initialize", f"OpenAI client ready (model {self.model})")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None
        await super().close()

    def _messages(
        self,
        prompt: str,
        options: Dict[str, Any],
        image: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []

        if options.get("system_prompt"):
            messages.append({"role": "system", "content": options["system_prompt"]})

        messages.extend(options.get("history") or [])

        if image is None:
            messages.append({"role": "user", "content": prompt})
        else:
            url = image.get("url") or f"data:{image['media_type']};base64,{image['data']}"
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": url, "detail": options.get("detail", "auto")}},
                ],
            })

        return messages

    async def _complete(
        self,
        prompt: str,
        model: str,
        options: Dict[str, Any],
        schema: Optional[Dict[str, Any]] = None,
        image: Optional[Dict[str, str]] = None,
    ) -> Completion:
        if self.client is None:
            raise ProviderError("OpenAI provider is not initialized", kind=ErrorKind.FATAL, provider=self.name)

        if schema is not None:
            default_temperature = DEFAULT_STRUCTURED_TEMPERATURE
            system = (
                "Respond only with a JSON object that conforms to this JSON schema:\n"
                f"{json.dumps(schema)}"
            )
            options = dict(options)
            options["system_prompt"] = f"{options['system_prompt']}\n\n{system}" if options.get("system_prompt") else system
        else:
            default_temperature = DEFAULT_TEMPERATURE

        params: Dict[str, Any] = {
            "model": model,
            "messages": self._messages(prompt, options, image),
            "max_tokens": options.get("max_tokens") or DEFAULT_MAX_OUTPUT_TOKENS,
            "temperature": options.get("temperature", default_temperature),
        }
        if schema is not None:
            params["response_format"] = {"type": "json_object"}
        if options.get("stop"):
            params["stop"] = options["stop"]

        try:
            response = await self.client.chat.completions.create(**params)
        except openai.APITimeoutError as e:
            raise ProviderError(f"OpenAI request timed out: {e}", kind=ErrorKind.TIMEOUT, provider=self.name) from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"OpenAI connection failed: {e}", kind=ErrorKind.OVERLOADED, provider=self.name) from e
        except openai.APIStatusError as e:
            raise error_from_status(self.name, e.status_code, str(e)) from e

        choice = response.choices[0]
        usage = response.usage
        return Completion(
            text=choice.message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason,
            request_id=response.id,
        )
