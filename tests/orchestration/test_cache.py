#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Tests for the response cache.
"""

import pytest

from quiz_lead_processor.orchestration.cache import ResponseCache, make_cache_key


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestCacheKey:
    """Tests for request digests."""

    def test_identical_requests_share_a_key(self):
        options = {"model": "gpt-4o", "temperature": 0.7, "max_tokens": 100}
        assert make_cache_key("text", "Hello", options) == make_cache_key("text", "Hello", dict(options))

    def test_only_first_500_characters_are_keyed(self):
        prefix = "x" * 500
        assert make_cache_key("text", prefix + "tail one", {}) == make_cache_key("text", prefix + "tail two", {})

    @pytest.mark.parametrize("changed", [
        {"model": "other"},
        {"temperature": 0.1},
        {"max_tokens": 50},
        {"provider": "claude"},
    ])
    def test_keyed_options_change_the_key(self, changed):
        base = {"model": "gpt-4o", "temperature": 0.7, "max_tokens": 100, "provider": None}
        options = dict(base)
        options.update(changed)
        assert make_cache_key("text", "Hello", base) != make_cache_key("text", "Hello", options)

    def test_request_type_schema_and_image_change_the_key(self):
        text_key = make_cache_key("text", "Hello", {})
        assert make_cache_key("structured", "Hello", {}, schema={"type": "object"}) != text_key
        assert make_cache_key("image", "Hello", {}, image=b"\x89PNG") != make_cache_key("image", "Hello", {}, image=b"GIF8")


class TestResponseCache:
    """Tests for ResponseCache."""

    def test_get_within_ttl(self, clock):
        cache = ResponseCache(ttl_seconds=60, clock=clock)
        cache.set("k", "value")
        clock.advance(59)
        assert cache.get("k") == "value"

    def test_entry_expires_after_ttl(self, clock):
        cache = ResponseCache(ttl_seconds=60, clock=clock)
        cache.set("k", "value")
        clock.advance(60)

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, clock):
        cache = ResponseCache(ttl_seconds=60, clock=clock)
        cache.set("short", "value", ttl=5)
        clock.advance(10)
        assert cache.get("short") is None

    def test_last_writer_wins(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("k", "first")
        cache.set("k", "second")
        assert cache.get("k") == "second"

    def test_prune_drops_oldest_above_limit(self, clock):
        cache = ResponseCache(ttl_seconds=3600, max_entries=2, clock=clock)
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == "c"

    def test_prune_drops_expired_first(self, clock):
        cache = ResponseCache(ttl_seconds=10, max_entries=10, clock=clock)
        cache.set("old", 1)
        clock.advance(11)
        cache.set("new", 2)

        assert cache.prune() == 1
        assert len(cache) == 1

    def test_clear(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("k", "v")
        cache.clear()
        assert len(cache) == 0
