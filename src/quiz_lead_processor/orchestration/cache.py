#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Response Cache

In-memory TTL cache for provider responses. Keys are deterministic digests of
the request, so identical requests within the TTL are served without a
provider call. Writes are last-writer-wins.
"""

import json
import time
import hashlib
from dataclasses import dataclass
from typing import Dict, Any, Optional, Callable, Union

from quiz_lead_processor.utils.logger import get_logger

# Configure logger
logger = get_logger(__name__)

# Constants
DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000
PROMPT_KEY_LENGTH = 500


@dataclass
class CacheEntry:
    """Cached provider response."""
    key: str
    value: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


def _digest(data: Union[str, bytes]) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def make_cache_key(
    request_type: str,
    prompt: str,
    options: Dict[str, Any],
    schema: Optional[Dict[str, Any]] = None,
    image: Optional[Union[str, bytes]] = None,
) -> str:
    """
    Build the cache key of a request.

    Args:
        request_type: text, structured or image
        prompt: Request prompt (only the first 500 characters are keyed)
        options: Request options (model, temperature, max_tokens, provider)
        schema: Schema of a structured request
        image: Image of an image analysis request

    Returns:
        str: Hex digest identifying the request
    """
    key_data = {
        "type": request_type,
        "prompt": prompt[:PROMPT_KEY_LENGTH],
        "model": options.get("model"),
        "temperature": options.get("temperature"),
        "max_tokens": options.get("max_tokens"),
        "provider": options.get("provider"),
    }
    if schema is not None:
        key_data["schema"] = _digest(json.dumps(schema, sort_keys=True, default=str))
    if image is not None:
        key_data["image"] = _digest(image)

    return _digest(json.dumps(key_data, sort_keys=True, default=str))


class ResponseCache:
    """TTL cache with a soft size limit."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            timestamp=self._clock(),
            ttl=self.ttl_seconds if ttl is None else ttl,
        )
        if len(self._entries) > self.max_entries:
            self.prune()

    def prune(self) -> int:
        """
        Drop expired entries, then the oldest entries while above max_entries.

        Returns:
            int: Number of entries removed
        """
        now = self._clock()
        before = len(self._entries)

        for key in [key for key, entry in self._entries.items() if entry.is_expired(now)]:
            del self._entries[key]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.values(), key=lambda entry: entry.timestamp)[:overflow]
            for entry in oldest:
                del self._entries[entry.key]

        removed = before - len(self._entries)
        if removed:
            logger.debug(f"Pruned {removed} cache entries")
        return removed

    def clear(self) -> None:
        self._entries.clear()
