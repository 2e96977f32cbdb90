#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Claude Provider

Adapter for Anthropic Claude models through the Messages REST API.
Structured output is requested with a schema-bearing system prompt and the
JSON object is extracted from the reply.
"""

import json
from typing import Dict, List, Any, Optional

from quiz_lead_processor.errors import ErrorKind, ProviderError
from quiz_lead_processor.providers.base import Completion, ModelInfo
from quiz_lead_processor.providers.rest import RESTProvider
from quiz_lead_processor.utils.logger import log_provider_event

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_OUTPUT_TOKENS = 1000
DEFAULT_STRUCTURED_MAX_OUTPUT_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_STRUCTURED_TEMPERATURE = 0.3


class ClaudeProvider(RESTProvider):
    """Anthropic Claude 3 / 3.5 models."""

    name = "claude"
    BASE_URL = "https://api.anthropic.com"
    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
    MODELS = {
        "claude-3-5-sonnet-20241022": ModelInfo(3.00, 15.00, 8192, 200000, supports_vision=True, supports_structured=True),
        "claude-3-5-haiku-20241022": ModelInfo(0.25, 1.25, 8192, 200000, supports_vision=True, supports_structured=True),
        "claude-3-opus-20240229": ModelInfo(15.00, 75.00, 4096, 200000, supports_vision=True, supports_structured=True),
        "claude-3-sonnet-20240229": ModelInfo(3.00, 15.00, 4096, 200000, supports_vision=True, supports_structured=True),
        "claude-3-haiku-20240307": ModelInfo(0.25, 1.25, 4096, 200000, supports_vision=True),
    }

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["x-api-key"] = self.config.api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    async def initialize(self) -> None:
        await super().initialize()
        log_provider_event(self.name, "initialize", f"Claude client ready (model {self.model})")

    @staticmethod
    def _image_block(image: Dict[str, str]) -> Dict[str, Any]:
        if "url" in image:
            return {"type": "image", "source": {"type": "url", "url": image["url"]}}
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": image["media_type"], "data": image["data"]},
        }

    def _messages(self, prompt: str, options: Dict[str, Any], image: Optional[Dict[str, str]]) -> List[Dict[str, Any]]:
        messages = list(options.get("history") or [])
        if image is None:
            messages.append({"role": "user", "content": prompt})
        else:
            messages.append({
                "role": "user",
                "content": [self._image_block(image), {"type": "text", "text": prompt}],
            })
        return messages

    @staticmethod
    def _structured_system_prompt(schema: Dict[str, Any], system_prompt: Optional[str]) -> str:
        instructions = (
            "You are a precise assistant that always responds with valid JSON. "
            "Respond only with a JSON object that conforms to this schema, with no other text:\n"
            f"{json.dumps(schema, indent=2)}"
        )
        if system_prompt:
            return f"{system_prompt}\n\n{instructions}"
        return instructions

    async def _complete(
        self,
        prompt: str,
        model: str,
        options: Dict[str, Any],
        schema: Optional[Dict[str, Any]] = None,
        image: Optional[Dict[str, str]] = None,
    ) -> Completion:
        info = self.MODELS.get(model)
        if info is None:
            raise ProviderError(f"Unsupported Claude model: {model}", kind=ErrorKind.INVALID_REQUEST, provider=self.name)

        if schema is not None:
            max_tokens = options.get("max_tokens") or DEFAULT_STRUCTURED_MAX_OUTPUT_TOKENS
            temperature = options.get("temperature", DEFAULT_STRUCTURED_TEMPERATURE)
            system = self._structured_system_prompt(schema, options.get("system_prompt"))
        else:
            max_tokens = options.get("max_tokens") or DEFAULT_MAX_OUTPUT_TOKENS
            temperature = options.get("temperature", DEFAULT_TEMPERATURE)
            system = options.get("system_prompt")

        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": min(max_tokens, info.max_output_tokens),
            "temperature": temperature,
            "messages": self._messages(prompt, options, image),
        }
        if system:
            payload["system"] = system
        if options.get("stop"):
            payload["stop_sequences"] = options["stop"]

        body = await self._post("/v1/messages", payload)

        text = "".join(block.get("text", "") for block in body.get("content", []) if block.get("type") == "text")
        usage = body.get("usage", {})
        return Completion(
            text=text,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            finish_reason=body.get("stop_reason"),
            request_id=body.get("id"),
        )
