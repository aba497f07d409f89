"""Tests for the TTL response cache."""

import asyncio

import pytest

from app.services.response_cache import MISS, CacheKeys, ResponseCache


class TestResponseCache:
    """TTL boundaries, eviction and invalidation."""

    def test_miss_for_unknown_key(self, cache):
        assert cache.get("dashboard:org-1:all:all") is MISS
        assert not MISS

    def test_hit_until_ttl_boundary(self, cache, clock):
        cache.set("settings:org-1", {"tone": "professional"})

        clock.advance(5.0)

        assert cache.get("settings:org-1") == {"tone": "professional"}

    def test_expired_entry_is_evicted_on_access(self, cache, clock):
        cache.set("settings:org-1", {"tone": "professional"})

        clock.advance(5.001)

        assert cache.get("settings:org-1") is MISS
        assert cache.stats()["size"] == 0

    def test_per_entry_ttl(self, cache, clock):
        cache.set("growth:org-1:all:all", [1, 2, 3], ttl=60)

        clock.advance(30)

        assert cache.get("growth:org-1:all:all") == [1, 2, 3]

    def test_falsy_values_are_cached(self, cache):
        cache.set("team:org-1", [])

        assert cache.get("team:org-1") == []
        assert cache.get("team:org-1") is not MISS

    def test_invalidate(self, cache):
        cache.set("team:org-1", ["a"])

        assert cache.invalidate("team:org-1") is True
        assert cache.invalidate("team:org-1") is False
        assert cache.get("team:org-1") is MISS

    def test_invalidate_pattern_scopes_to_organization(self, cache):
        cache.set(CacheKeys.dashboard("org-1"), 1)
        cache.set(CacheKeys.escalations("org-1", status="open"), 2)
        cache.set(CacheKeys.credits("org-1"), 3)
        cache.set(CacheKeys.credits("org-10"), 4)
        cache.set(CacheKeys.settings("org-2"), 5)

        removed = cache.invalidate_pattern(CacheKeys.organization_pattern("org-1"))

        assert removed == 3
        assert sorted(cache.stats()["keys"]) == ["credits:org-10", "settings:org-2"]

    def test_clear(self, cache):
        cache.set("a:1", 1)
        cache.set("b:2", 2)

        assert cache.clear() == 2
        assert cache.stats() == {"size": 0, "keys": []}

    def test_cleanup_removes_only_expired(self, cache, clock):
        cache.set("short:1", "x", ttl=1)
        cache.set("long:1", "y", ttl=100)

        clock.advance(2)

        assert cache.cleanup() == 1
        assert cache.stats()["keys"] == ["long:1"]

    def test_rejects_non_positive_default_ttl(self):
        with pytest.raises(ValueError):
            ResponseCache(default_ttl=0)

    def test_key_builders(self):
        assert CacheKeys.dashboard("o") == "dashboard:o:all:all"
        assert CacheKeys.growth("o", "2026-01-01", "2026-02-01") == "growth:o:2026-01-01:2026-02-01"
        assert CacheKeys.escalations("o") == "escalations:o:all:all:all"
        assert CacheKeys.team_members("o") == "team:o"
        assert CacheKeys.credits("o") == "credits:o"


class TestSweeper:
    """Background sweep task."""

    @pytest.mark.asyncio
    async def test_sweeper_cleans_and_stops_on_cancel(self, cache, clock):
        cache.set("short:1", "x", ttl=1)
        clock.advance(2)

        task = asyncio.create_task(cache.run_sweeper(interval=0.01))
        for _ in range(50):
            if cache.stats()["size"] == 0:
                break
            await asyncio.sleep(0.01)

        assert cache.stats()["size"] == 0

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
