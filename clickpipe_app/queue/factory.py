"""
Factory for creating ingestion channel instances.
"""

from enum import Enum

from loguru import logger

from clickpipe_app.config import Settings
from clickpipe_app.errors import ChannelUnavailable
from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue


class QueueBackend(Enum):
    """Available queue backends"""
    MEMORY = "memory"
    REDIS_STREAMS = "redis_streams"


class QueueFactory:
    """
    Factory for creating queue instances.

    Unlike the cache there is no silent fallback: a channel that cannot
    be opened at startup is fatal, so the process fails loudly instead of
    quietly buffering clicks in a per-process queue.
    """

    @staticmethod
    def create(config: Settings, backend: QueueBackend = None) -> QueueStrategy:
        """
        Create a queue instance.

        Args:
            config: Application settings
            backend: Type of queue backend (defaults to config.queue_backend)

        Raises:
            ChannelUnavailable: If the channel cannot be opened
        """
        if backend is None:
            backend = QueueBackend(config.queue_backend)

        if backend == QueueBackend.MEMORY:
            logger.info(f"In-memory queue initialized (capacity={config.queue_capacity})")
            return InMemoryQueue(config.queue_name, capacity=config.queue_capacity)

        if backend == QueueBackend.REDIS_STREAMS:
            import redis

            try:
                redis_client = redis.from_url(
                    config.redis_url,
                    decode_responses=False,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
                redis_client.ping()
                queue = RedisStreamQueue(
                    redis_client,
                    queue_name=config.queue_name,
                    consumer_group=config.queue_consumer_group,
                    capacity=config.queue_capacity,
                    claim_idle_ms=config.queue_claim_idle_ms,
                )
            except Exception as e:
                raise ChannelUnavailable(f"Cannot open Redis stream {config.queue_name}: {e}") from e

            logger.info(f"Redis stream queue initialized ({config.queue_name})")
            return queue

        raise ValueError(f"Unknown queue backend: {backend}")
