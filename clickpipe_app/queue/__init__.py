"""
Ingestion channel for click events.
Implements Strategy Pattern for flexible queue backends.
"""

from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue
from .factory import QueueFactory, QueueBackend
from .models import ClickEvent, ClickFact, UNKNOWN
from .producer import ClickEventProducer

__all__ = [
    "QueueStrategy",
    "RedisStreamQueue",
    "InMemoryQueue",
    "QueueFactory",
    "QueueBackend",
    "ClickEvent",
    "ClickFact",
    "UNKNOWN",
    "ClickEventProducer",
]
