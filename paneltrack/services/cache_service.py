"""
Cache Service for near-real-time manufacturing floor reads.

Supports:
1. Redis (preferred for production, shared across workers)
2. In-memory fallback (for development/testing)

The cache is best-effort: a cache outage degrades to recomputing from the
database, it never fails a request.

Usage:
    cache = get_cache()

    await cache.set_mo_progress(mo_id, snapshot_dict)
    snapshot = await cache.get_mo_progress(mo_id)

    # After an inspection for the MO commits
    await cache.invalidate_mo(mo_id)
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatchcase
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from paneltrack.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        """Set value in cache with TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        pass


class InMemoryCache(CacheBackend):
    """
    In-memory cache for development/fallback.

    Not shared between processes; use Redis when running several workers.
    """

    def __init__(self):
        self._cache: Dict[str, tuple] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.now(timezone.utc):
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        async with self._lock:
            now = datetime.now(timezone.utc)
            self._prune(now)
            self._cache[key] = (value, now + timedelta(seconds=ttl))
            return True

    def _prune(self, now: datetime) -> None:
        """Drop expired keys, including ones nobody reads again. Caller holds the lock."""
        expired = [k for k, (_, expires_at) in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        """Clear keys matching a Redis-style glob pattern."""
        async with self._lock:
            keys_to_delete = [k for k in self._cache if fnmatchcase(k, pattern)]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)


class RedisCache(CacheBackend):
    """Redis cache backend for production."""

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._get_client().get(key)
        except RedisError as e:
            logger.warning(f"Redis GET failed for {key}: {e}")
            return None
        return json.loads(value) if value else None

    async def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        try:
            await self._get_client().set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except RedisError as e:
            logger.warning(f"Redis SET failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._get_client().delete(key)
            return True
        except RedisError as e:
            logger.warning(f"Redis DELETE failed for {key}: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        try:
            client = self._get_client()
            cursor = 0
            deleted = 0
            while True:
                cursor, keys = await client.scan(cursor, match=pattern, count=100)
                if keys:
                    await client.delete(*keys)
                    deleted += len(keys)
                if cursor == 0:
                    break
            return deleted
        except RedisError as e:
            logger.warning(f"Redis SCAN/DELETE failed for {pattern}: {e}")
            return 0


class CacheService:
    """
    Namespaced cache for manufacturing order read models.

    Cache keys follow the format:

        {namespace}:{resource_type}:{identifier}

    Examples:
        paneltrack:mo:progress:6f1c...
    """

    def __init__(self, backend: CacheBackend, namespace: str = "paneltrack"):
        self._backend = backend
        self._namespace = namespace

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self._backend.get(self._make_key(key))

    async def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        return await self._backend.set(self._make_key(key), value, ttl)

    async def delete(self, key: str) -> bool:
        return await self._backend.delete(self._make_key(key))

    async def clear_pattern(self, pattern: str) -> int:
        return await self._backend.clear_pattern(self._make_key(pattern))

    # ==================== MO Progress Cache ====================

    def _progress_key(self, mo_id) -> str:
        return f"mo:progress:{mo_id}"

    async def get_mo_progress(self, mo_id) -> Optional[dict]:
        return await self.get(self._progress_key(mo_id))

    async def set_mo_progress(self, mo_id, data: dict, ttl: Optional[int] = None) -> bool:
        ttl = ttl or settings.MO_PROGRESS_CACHE_TTL
        return await self.set(self._progress_key(mo_id), data, ttl)

    async def invalidate_mo(self, mo_id) -> int:
        """Drop every cached read model for one MO."""
        return await self.clear_pattern(f"mo:*:{mo_id}")


# Singleton cache instance
_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the cache service singleton."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Cache initialized with in-memory backend")

        _cache_instance = CacheService(backend)

    return _cache_instance


def reset_cache(backend: Optional[CacheBackend] = None) -> CacheService:
    """Replace the singleton (tests, or after settings change)."""
    global _cache_instance
    _cache_instance = CacheService(backend or InMemoryCache())
    return _cache_instance
