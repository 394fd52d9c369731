"""
Tests for the response cache.

These tests verify:
- Key building
- In-memory TTL map (expiry, eviction, prefix invalidation)
- Redis errors degrade to cache misses
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from rerank import cache as cache_module
from rerank.cache import MemoryBackend, RedisBackend, ResponseCache, cache_key, get_cache


# =============================================================================
# KEYS
# =============================================================================

class TestCacheKey:

    def test_plain_parts(self):
        assert cache_key("dashboard", "u1") == "rerank:dashboard:u1"

    def test_params_are_hashed_in_stable_order(self):
        first = cache_key("dashboard", "u1", params={"page": 1, "sort": "date"})
        second = cache_key("dashboard", "u1", params={"sort": "date", "page": 1})

        assert first == second
        assert first.startswith("rerank:dashboard:u1:")
        assert len(first.rsplit(":", 1)[1]) == 12

    def test_different_params_differ(self):
        assert cache_key("x", params={"page": 1}) != cache_key("x", params={"page": 2})


# =============================================================================
# MEMORY BACKEND
# =============================================================================

@pytest.mark.asyncio
class TestMemoryBackend:

    async def test_set_and_get(self):
        backend = MemoryBackend()
        await backend.set("k", {"a": 1}, timedelta(minutes=1))
        assert await backend.get("k") == {"a": 1}
        assert await backend.get("missing") is None

    async def test_expired_entries_are_dropped(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(cache_module.time, "monotonic", lambda: clock[0])
        backend = MemoryBackend()
        await backend.set("k", "v", timedelta(seconds=30))

        clock[0] += 31
        assert await backend.get("k") is None
        assert len(backend) == 0

    async def test_oldest_entry_is_evicted(self):
        backend = MemoryBackend(max_entries=2)
        for key in ("a", "b", "c"):
            await backend.set(key, key, timedelta(minutes=1))

        assert await backend.get("a") is None
        assert await backend.get("c") == "c"
        assert len(backend) == 2

    async def test_delete_prefix(self):
        backend = MemoryBackend()
        await backend.set("rerank:dashboard:u1", 1, timedelta(minutes=1))
        await backend.set("rerank:dashboard:u1:abc", 2, timedelta(minutes=1))
        await backend.set("rerank:dashboard:u2", 3, timedelta(minutes=1))

        assert await backend.delete_prefix("rerank:dashboard:u1") == 2
        assert await backend.get("rerank:dashboard:u2") == 3


# =============================================================================
# FACADE
# =============================================================================

@pytest.mark.asyncio
class TestResponseCache:

    async def test_invalidate_uses_key_prefix(self):
        cache = ResponseCache()
        await cache.set(cache_key("sites", "u1"), ["a"])
        await cache.set(cache_key("sites", "u1", params={"refresh": True}), ["b"])

        assert await cache.invalidate("sites", "u1") == 2
        assert await cache.get(cache_key("sites", "u1")) is None

    async def test_redis_errors_are_misses(self):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=RedisConnectionError("down"))
        backend.set = AsyncMock(side_effect=RedisConnectionError("down"))
        backend.delete_prefix = AsyncMock(side_effect=RedisConnectionError("down"))
        cache = ResponseCache(backend)

        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False
        assert await cache.invalidate("k") == 0

    async def test_backend_name(self):
        assert ResponseCache().backend_name == "memory"
        assert ResponseCache(RedisBackend("redis://localhost:6379/0")).backend_name == "redis"


class TestGetCache:

    def test_memory_without_redis_url(self, configure, monkeypatch):
        configure(REDIS_URL=None)
        monkeypatch.setattr(cache_module, "_cache", None)

        cache = get_cache()
        assert cache.backend_name == "memory"
        assert get_cache() is cache

    def test_redis_when_configured(self, configure, monkeypatch):
        configure(REDIS_URL="redis://localhost:6379/0")
        monkeypatch.setattr(cache_module, "_cache", None)

        assert get_cache().backend_name == "redis"
