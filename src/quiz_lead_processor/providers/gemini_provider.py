#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Gemini Provider

Adapter for Google Gemini models through the Generative Language REST API.
"""

from typing import Dict, List, Any, Optional

from quiz_lead_processor.errors import ErrorKind, ProviderError
from quiz_lead_processor.providers.base import Completion, ModelInfo
from quiz_lead_processor.providers.rest import RESTProvider
from quiz_lead_processor.utils.logger import log_provider_event

DEFAULT_MAX_OUTPUT_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_STRUCTURED_TEMPERATURE = 0.3

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

# JSON schema keywords the Gemini responseSchema accepts
SCHEMA_KEYS = ("type", "properties", "required", "items", "enum", "description", "format", "nullable")


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a JSON schema to the subset accepted by responseSchema."""
    converted: Dict[str, Any] = {}
    for key in SCHEMA_KEYS:
        if key not in schema:
            continue
        value = schema[key]
        if key == "properties":
            value = {name: to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items":
            value = to_gemini_schema(value)
        converted[key] = value
    return converted


class GeminiProvider(RESTProvider):
    """Google Gemini 1.5 models."""

    name = "gemini"
    BASE_URL = "https://generativelanguage.googleapis.com"
    DEFAULT_MODEL = "gemini-1.5-flash"
    MODELS = {
        "gemini-1.5-pro": ModelInfo(1.25, 5.00, 8192, 2097152, supports_vision=True, supports_structured=True),
        "gemini-1.5-flash": ModelInfo(0.075, 0.30, 8192, 1048576, supports_vision=True, supports_structured=True),
        "gemini-1.5-flash-8b": ModelInfo(0.0375, 0.15, 8192, 1048576, supports_vision=True, supports_structured=True),
        "gemini-pro": ModelInfo(0.50, 1.50, 8192, 32768, supports_structured=True),
        "gemini-pro-vision": ModelInfo(0.25, 0.50, 4096, 16384, supports_vision=True),
    }

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["x-goog-api-key"] = self.config.api_key
        return headers

    async def initialize(self) -> None:
        await super().initialize()
        log_provider_event(self.name, "initialize", f"Gemini client ready (model {self.model})")

    def _contents(self, prompt: str, options: Dict[str, Any], image: Optional[Dict[str, str]]) -> List[Dict[str, Any]]:
        contents = []
        for message in options.get("history") or []:
            role = "model" if message.get("role") == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message.get("content", "")}]})

        parts: List[Dict[str, Any]] = [{"text": prompt}]
        if image is not None:
            if "url" in image:
                raise ProviderError(
                    "Gemini image analysis requires inline image data, not a URL",
                    kind=ErrorKind.INVALID_REQUEST,
                    provider=self.name,
                )
            parts.append({"inlineData": {"mimeType": image["media_type"], "data": image["data"]}})

        contents.append({"role": "user", "parts": parts})
        return contents

    @staticmethod
    def _safety_settings(options: Dict[str, Any]) -> List[Dict[str, str]]:
        if options.get("safety_settings"):
            return options["safety_settings"]
        return [{"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"} for category in SAFETY_CATEGORIES]

    async def _complete(
        self,
        prompt: str,
        model: str,
        options: Dict[str, Any],
        schema: Optional[Dict[str, Any]] = None,
        image: Optional[Dict[str, str]] = None,
    ) -> Completion:
        generation_config: Dict[str, Any] = {
            "maxOutputTokens": options.get("max_tokens") or DEFAULT_MAX_OUTPUT_TOKENS,
            "temperature": options.get(
                "temperature",
                DEFAULT_STRUCTURED_TEMPERATURE if schema is not None else DEFAULT_TEMPERATURE,
            ),
        }
        if schema is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = to_gemini_schema(schema)
        if options.get("stop"):
            generation_config["stopSequences"] = options["stop"]

        payload: Dict[str, Any] = {
            "contents": self._contents(prompt, options, image),
            "generationConfig": generation_config,
            "safetySettings": self._safety_settings(options),
        }
        if options.get("system_prompt"):
            payload["systemInstruction"] = {"parts": [{"text": options["system_prompt"]}]}

        body = await self._post(f"/v1beta/models/{model}:generateContent", payload)

        candidates = body.get("candidates") or []
        if not candidates:
            block_reason = body.get("promptFeedback", {}).get("blockReason", "no candidates returned")
            raise ProviderError(
                f"Content blocked by Gemini safety filters: {block_reason}",
                kind=ErrorKind.INVALID_REQUEST,
                provider=self.name,
            )

        candidate = candidates[0]
        parts = candidate.get("content", {}).get("parts", [])
        usage = body.get("usageMetadata", {})
        return Completion(
            text="".join(part.get("text", "") for part in parts),
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
            finish_reason=candidate.get("finishReason", "STOP"),
            request_id=body.get("responseId"),
        )
