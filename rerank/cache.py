"""
Response Cache

Async key/value cache with TTL for Search Console property lists:
- Redis (redis.asyncio) when REDIS_URL is configured
- In-process bounded TTL map otherwise (oldest entry evicted first)
- Graceful degradation: Redis errors are logged and treated as misses
"""

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from rerank.config import get_settings

logger = logging.getLogger(__name__)

NAMESPACE = "rerank"
DEFAULT_TTL = timedelta(minutes=5)
MAX_MEMORY_ENTRIES = 1000


def cache_key(*parts: Any, params: Optional[Dict] = None) -> str:
    """
    Namespaced cache key.

    cache_key("gsc-properties", user_id, params={"page": 1}) ->
    "rerank:gsc-properties:<user_id>:<hash>"
    """
    key = ":".join([NAMESPACE] + [str(p) for p in parts])
    if params:
        param_str = json.dumps(params, sort_keys=True, default=str)
        key = f"{key}:{hashlib.md5(param_str.encode()).hexdigest()[:12]}"
    return key


class MemoryBackend:
    """Bounded TTL map used when Redis is not configured."""

    def __init__(self, max_entries: int = MAX_MEMORY_ENTRIES):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: timedelta) -> None:
        async with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (time.monotonic() + ttl.total_seconds(), value)

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
            return len(keys)

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisBackend:
    """JSON values in Redis with SETEX."""

    def __init__(self, url: str):
        self.url = url
        self._redis = Redis.from_url(url, decode_responses=True, socket_timeout=5)

    async def get(self, key: str) -> Optional[Any]:
        data = await self._redis.get(key)
        return None if data is None else json.loads(data)

    async def set(self, key: str, value: Any, ttl: timedelta) -> None:
        await self._redis.setex(key, ttl, json.dumps(value, default=str))

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key async for key in self._redis.scan_iter(match=f"{prefix}*", count=100)]
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def close(self) -> None:
        await self._redis.close()


class ResponseCache:
    """
    Cache facade used by the API routers.

    Usage:
        cache = get_cache()
        data = await cache.get(key)
        if data is None:
            data = build()
            await cache.set(key, data, ttl=timedelta(minutes=5))
    """

    def __init__(self, backend=None):
        self.backend = backend or MemoryBackend()

    @property
    def backend_name(self) -> str:
        return "redis" if isinstance(self.backend, RedisBackend) else "memory"

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await self.backend.get(key)
        except RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> bool:
        try:
            await self.backend.set(key, value, ttl or DEFAULT_TTL)
            return True
        except RedisError as e:
            logger.warning(f"Cache set failed for {key}: {e}")
            return False

    async def invalidate(self, *parts: Any) -> int:
        """Drop every key under cache_key(*parts)."""
        prefix = cache_key(*parts)
        try:
            return await self.backend.delete_prefix(prefix)
        except RedisError as e:
            logger.warning(f"Cache invalidate failed for {prefix}: {e}")
            return 0

    async def close(self) -> None:
        await self.backend.close()


_cache: Optional[ResponseCache] = None


def get_cache() -> ResponseCache:
    """Process-wide cache, Redis-backed when REDIS_URL is set."""
    global _cache
    if _cache is None:
        redis_url = get_settings().REDIS_URL
        if redis_url:
            _cache = ResponseCache(RedisBackend(redis_url))
            logger.info("Response cache using Redis")
        else:
            _cache = ResponseCache(MemoryBackend())
            logger.info("Response cache using in-memory TTL map")
    return _cache
