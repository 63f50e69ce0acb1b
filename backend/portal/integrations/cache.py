"""Cache service with Protocol pattern for dependency injection.

Provides RedisCacheService (shared across workers) and MemoryCacheService
(in-process fallback). Each cache is owned by the component that creates it;
keys are namespaced by the owner so ``invalidate(prefix)`` only touches its
own entries.
"""

import logging
import threading
import time
from typing import Protocol

import redis

from ..config import settings

logger = logging.getLogger(__name__)


class CacheService(Protocol):
    """Cache service interface."""

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, ttl: int) -> None: ...
    def invalidate(self, prefix: str) -> int: ...


class RedisCacheService:
    """Redis-backed cache implementation."""

    def __init__(self, redis_url: str) -> None:
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._client.ping()

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError:
            logger.warning("Redis get failed for %s", key, exc_info=True)
            return None

    def set(self, key: str, value: str, ttl: int) -> None:
        try:
            self._client.setex(key, ttl, value)
        except redis.RedisError:
            logger.warning("Redis set failed for %s", key, exc_info=True)

    def invalidate(self, prefix: str) -> int:
        try:
            keys = list(self._client.scan_iter(match=f"{prefix}*"))
            if not keys:
                return 0
            return int(self._client.delete(*keys))
        except redis.RedisError:
            logger.warning("Redis invalidate failed for %s*", prefix, exc_info=True)
            return 0


class MemoryCacheService:
    """In-process cache with per-entry expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, time.monotonic() + ttl)

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)


def create_cache_service() -> CacheService:
    """Factory: create the appropriate cache service based on configuration."""
    if not settings.redis_url:
        return MemoryCacheService()
    try:
        return RedisCacheService(settings.redis_url)
    except redis.RedisError:
        logger.warning("Redis unavailable at %s, using in-process cache", settings.redis_url)
        return MemoryCacheService()
