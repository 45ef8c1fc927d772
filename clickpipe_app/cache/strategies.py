"""
Cache strategies using Strategy Pattern.
Allows switching between different cache backends (Redis, In-Memory, Null).

The resolver uses the cache for link snapshots only. It is a
performance layer; nothing reads it for correctness.
"""

import time
import threading
from abc import ABC, abstractmethod
from typing import Optional, Dict, Tuple

from loguru import logger


class CacheStrategy(ABC):
    """
    Abstract base class for cache strategies.

    All methods are async because cache operations involve I/O (network for Redis).
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get value from cache, None if missing or expired"""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = 60) -> bool:
        """Set value with TTL (seconds)"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key, True if it existed"""
        pass


class RedisCache(CacheStrategy):
    """
    Redis cache implementation.

    Errors are logged and reported as a miss; a broken cache only makes
    resolution slower.
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis.get(key)
            return value.decode('utf-8') if value else None
        except Exception as e:
            logger.warning(f"Redis get error: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 60) -> bool:
        try:
            return bool(self.redis.setex(key, ttl, value))
        except Exception as e:
            logger.warning(f"Redis set error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(key))
        except Exception as e:
            logger.warning(f"Redis delete error: {e}")
            return False


class InMemoryCache(CacheStrategy):
    """
    In-memory cache using a dict of (expires_at, value).

    Expired entries are evicted lazily on read.
    Not distributed: each process has its own cache.
    """

    def __init__(self, clock=time.monotonic):
        self._cache: Dict[str, Tuple[float, str]] = {}
        self._clock = clock
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._cache[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl: int = 60) -> bool:
        with self._lock:
            self._cache[key] = (self._clock() + ttl, value)
        return True

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None


class NullCache(CacheStrategy):
    """
    Null Object Pattern - cache that does nothing.

    Used when caching is disabled and in tests that must always hit the
    link store.
    """

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl: int = 60) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return True
