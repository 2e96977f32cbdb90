#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
REST Provider Base

Shared httpx plumbing for adapters that talk to a vendor's HTTP API directly.
"""

from typing import Dict, Any, Optional

import httpx

from quiz_lead_processor.errors import ErrorKind, ProviderError
from quiz_lead_processor.providers.base import BaseAIProvider, error_from_status


class RESTProvider(BaseAIProvider):
    """BaseAIProvider backed by an httpx.AsyncClient."""

    BASE_URL = ""

    def __init__(self, config, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def default_headers(self) -> Dict[str, str]:
        return {"content-type": "application/json"}

    async def initialize(self) -> None:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url or self.BASE_URL,
                headers=self.default_headers(),
                timeout=self.config.timeout,
                transport=self.transport,
            )
        self.is_initialized = True

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
        await super().close()

    async def _post(self, path: str, payload: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        POST a JSON payload and return the decoded body.

        Args:
            path: Path relative to the vendor base URL
            payload: JSON body
            params: Query parameters

        Returns:
            Dict: Decoded JSON response
        """
        if self.client is None:
            raise ProviderError(f"{self.name} provider is not initialized", kind=ErrorKind.FATAL, provider=self.name)

        try:
            response = await self.client.post(path, json=payload, params=params)
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.name} request timed out", kind=ErrorKind.TIMEOUT, provider=self.name) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.name} connection failed: {e}", kind=ErrorKind.OVERLOADED, provider=self.name
            ) from e

        if response.status_code >= 400:
            raise error_from_status(self.name, response.status_code, self._error_message(response))

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned a non-JSON body", kind=ErrorKind.OVERLOADED, provider=self.name
            ) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("message", error))
        return str(error or body)[:200]
