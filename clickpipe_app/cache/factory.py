"""
Factory for creating cache instances.
"""

from enum import Enum

from loguru import logger

from clickpipe_app.config import Settings
from .strategies import CacheStrategy, RedisCache, InMemoryCache, NullCache


class CacheBackend(Enum):
    """Available cache backends"""
    REDIS = "redis"
    MEMORY = "memory"
    NULL = "null"


class CacheFactory:
    """
    Factory for creating cache instances.

    A Redis cache that cannot be reached falls back to the in-memory
    cache; the cache is optional, so this is not fatal.
    """

    @staticmethod
    def create(config: Settings, backend: CacheBackend = None) -> CacheStrategy:
        """
        Create a cache instance.

        Args:
            config: Application settings
            backend: Type of cache backend (defaults to config.cache_backend)
        """
        if backend is None:
            backend = CacheBackend(config.cache_backend)

        if backend == CacheBackend.REDIS:
            import redis

            try:
                redis_client = redis.from_url(
                    config.redis_url,
                    decode_responses=False,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
                redis_client.ping()
                logger.info("Redis cache initialized")
                return RedisCache(redis_client)
            except Exception as e:
                logger.warning(f"Redis connection failed: {e}; falling back to in-memory cache")
                return InMemoryCache()

        if backend == CacheBackend.MEMORY:
            logger.info("In-memory cache initialized")
            return InMemoryCache()

        if backend == CacheBackend.NULL:
            logger.info("Null cache initialized")
            return NullCache()

        raise ValueError(f"Unknown cache backend: {backend}")
