"""
tests/test_cache.py — SettingsCache Unit Tests
===============================================

TTL expiry, the 300 s ceiling, explicit invalidation and hit/miss
accounting, all driven by an injected monotonic clock (no DB needed).
"""

from __future__ import annotations

import pytest

from gembot.config import MAX_SETTINGS_CACHE_TTL
from gembot.engine.cache import SettingsCache


@pytest.fixture
def cache(monotonic):
    return SettingsCache(ttl_seconds=60, clock=monotonic)


class TestTtl:
    def test_fresh_entry_is_a_hit(self, cache, monotonic):
        cache.put("limits.tip.daily_max", 100)
        monotonic.advance(59)
        entry = cache.lookup("limits.tip.daily_max")
        assert entry is not None
        assert entry.value == 100
        assert cache.hits == 1

    def test_entry_expires_at_ttl(self, cache, monotonic):
        cache.put("limits.tip.daily_max", 100)
        monotonic.advance(60)
        assert cache.lookup("limits.tip.daily_max") is None
        assert cache.misses == 1
        assert len(cache) == 0

    def test_ttl_is_capped(self, monotonic):
        cache = SettingsCache(ttl_seconds=3600, clock=monotonic)
        assert cache.ttl_seconds == MAX_SETTINGS_CACHE_TTL

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            SettingsCache(ttl_seconds=-1)

    def test_zero_ttl_never_hits(self, monotonic):
        cache = SettingsCache(ttl_seconds=0, clock=monotonic)
        cache.put("k", 1)
        assert cache.lookup("k") is None

    def test_none_values_are_cached(self, cache):
        cache.put("missing.key", None)
        entry = cache.lookup("missing.key")
        assert entry is not None
        assert entry.value is None


class TestInvalidation:
    def test_invalidate_drops_entry(self, cache):
        cache.put("features.tips_enabled", True)
        cache.invalidate("features.tips_enabled")
        assert "features.tips_enabled" not in cache

    def test_invalidate_unknown_key_is_noop(self, cache):
        cache.invalidate("nope")
        assert len(cache) == 0

    def test_clear(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_instances_are_isolated(self, monotonic):
        first = SettingsCache(clock=monotonic)
        second = SettingsCache(clock=monotonic)
        first.put("a", 1)
        assert second.lookup("a") is None


class TestGenerations:
    def test_put_after_invalidate_is_discarded(self, cache):
        gen = cache.generation("limits.tip.daily_max")
        cache.invalidate("limits.tip.daily_max")
        assert cache.put("limits.tip.daily_max", 100, generation=gen) is False
        assert cache.lookup("limits.tip.daily_max") is None

    def test_put_with_current_generation_sticks(self, cache):
        cache.invalidate("limits.tip.daily_max")
        gen = cache.generation("limits.tip.daily_max")
        assert cache.put("limits.tip.daily_max", 100, generation=gen) is True
        assert cache.lookup("limits.tip.daily_max").value == 100

    def test_clear_invalidates_pending_loads(self, cache):
        gen = cache.generation("features.tips_enabled")
        cache.clear()
        assert cache.put("features.tips_enabled", True, generation=gen) is False

    def test_other_keys_unaffected(self, cache):
        gen = cache.generation("a")
        cache.invalidate("b")
        assert cache.put("a", 1, generation=gen) is True
