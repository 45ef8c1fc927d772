"""
Queue strategies using Strategy Pattern.
Allows switching between different ingestion channels (In-Memory, Redis Streams).

Every channel is bounded. publish() is synchronous and never waits:
when the channel is full or closed it returns False and the caller
decides what to do with the event (the producer drops it).
"""

import asyncio
import json
import os
import socket
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, List

from loguru import logger

from .models import ClickEvent


class QueueStrategy(ABC):
    """
    Abstract base class for queue strategies.

    This is the Strategy Pattern interface - allows multiple channel
    implementations without changing the producer/consumer code.
    """

    def __init__(self, queue_name: str, capacity: int):
        self.queue_name = queue_name
        self.capacity = capacity
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Stop accepting new events. Already queued events can still be consumed."""
        self._closed = True

    @abstractmethod
    def publish(self, message: ClickEvent) -> bool:
        """
        Enqueue a message without waiting.

        Returns:
            True if accepted, False if the channel is full or closed
        """
        pass

    @abstractmethod
    async def consume(self, batch_size: int = 1, block_time: int = 1000) -> List[ClickEvent]:
        """
        Take up to batch_size messages. Each message is handed to exactly
        one caller.

        Args:
            batch_size: Maximum number of messages to retrieve
            block_time: Time to wait for messages (milliseconds)
        """
        pass

    @abstractmethod
    async def ack(self, message_ids: List[str]) -> bool:
        """Acknowledge messages (mark as processed)"""
        pass

    @abstractmethod
    async def get_queue_length(self) -> int:
        """Number of messages waiting to be processed"""
        pass

    async def consume_batch(self, batch_size: int = 100, block_time: int = 1000) -> List[ClickEvent]:
        """Alias for consume with a larger default batch size"""
        return await self.consume(batch_size, block_time)


class InMemoryQueue(QueueStrategy):
    """
    Bounded in-memory channel built on a deque.

    Pros:
    - No external dependencies
    - publish() is a lock-protected append, no I/O

    Cons:
    - Not persistent (undrained events are lost on restart)
    - Not distributed (each process has its own channel)

    block_time is ignored; workers poll and sleep when it is empty.
    """

    def __init__(self, queue_name: str = "click_events", capacity: int = 10000):
        super().__init__(queue_name, capacity)
        self._queue: Deque[ClickEvent] = deque()
        self._lock = threading.Lock()

    def publish(self, message: ClickEvent) -> bool:
        with self._lock:
            if self._closed or len(self._queue) >= self.capacity:
                return False
            self._queue.append(message)
            return True

    async def consume(self, batch_size: int = 1, block_time: int = 1000) -> List[ClickEvent]:
        messages = []
        with self._lock:
            while self._queue and len(messages) < batch_size:
                messages.append(self._queue.popleft())
        return messages

    async def ack(self, message_ids: List[str]) -> bool:
        """Messages are removed on consume, nothing to acknowledge"""
        return True

    async def get_queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def drain(self) -> List[ClickEvent]:
        """Remove and return everything still queued (used on shutdown)"""
        with self._lock:
            remaining = list(self._queue)
            self._queue.clear()
        return remaining


# Checks the stream length and appends in one step, so concurrent
# publishers cannot push the stream past its capacity
PUBLISH_SCRIPT = """
if redis.call('XLEN', KEYS[1]) >= tonumber(ARGV[1]) then
    return 0
end
redis.call('XADD', KEYS[1], '*', 'data', ARGV[2])
return 1
"""


class RedisStreamQueue(QueueStrategy):
    """
    Redis Streams implementation for the ingestion channel.

    How it works:
    1. Producer runs a Lua script that checks XLEN against capacity and
       appends with XADD atomically
    2. Workers first reclaim entries another consumer left pending for
       longer than claim_idle_ms (XAUTOCLAIM), then read new ones with
       XREADGROUP (each entry goes to one consumer)
    3. Workers acknowledge with XACK and delete the entry with XDEL,
       so XLEN only counts undelivered and unacknowledged events

    Reads and acks run in a thread so a blocking XREADGROUP does not
    stall the event loop. publish() is a short synchronous round trip
    bounded by the client's socket timeout.
    """

    def __init__(
        self,
        redis_client,
        queue_name: str = "click_events",
        consumer_group: str = "click_workers",
        capacity: int = 10000,
        claim_idle_ms: int = 60000,
    ):
        super().__init__(queue_name, capacity)
        self.redis = redis_client
        self.consumer_group = consumer_group
        self.consumer_name = f"worker-{socket.gethostname()}-{os.getpid()}"
        self.claim_idle_ms = claim_idle_ms
        self._publish_script = redis_client.register_script(PUBLISH_SCRIPT)
        self._ensure_stream_exists()

    def _ensure_stream_exists(self):
        """Create stream and consumer group if missing"""
        try:
            self.redis.xgroup_create(
                name=self.queue_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True
            )
            logger.info(f"Created Redis stream {self.queue_name}")
        except Exception as e:
            # Group might already exist, that's OK
            if "BUSYGROUP" not in str(e):
                raise

    def publish(self, message: ClickEvent) -> bool:
        if self._closed:
            return False
        try:
            added = self._publish_script(
                keys=[self.queue_name],
                args=[self.capacity, message.model_dump_json()],
            )
            return bool(added)
        except Exception as e:
            logger.warning(f"Redis publish error: {e}")
            return False

    async def _reclaim(self, batch_size: int) -> list:
        """Entries left pending by a consumer that died before acking"""
        try:
            response = await asyncio.to_thread(
                self.redis.xautoclaim,
                self.queue_name,
                self.consumer_group,
                self.consumer_name,
                min_idle_time=self.claim_idle_ms,
                start_id="0-0",
                count=batch_size,
            )
        except Exception as e:
            logger.error(f"Redis reclaim error: {e}")
            return []
        entries = list(response[1]) if response and len(response) > 1 else []
        if entries:
            logger.info(f"Reclaimed {len(entries)} stale click event(s) from {self.queue_name}")
        return entries

    async def consume(self, batch_size: int = 1, block_time: int = 1000) -> List[ClickEvent]:
        entries = await self._reclaim(batch_size)

        if not entries:
            try:
                response = await asyncio.to_thread(
                    self.redis.xreadgroup,
                    groupname=self.consumer_group,
                    consumername=self.consumer_name,
                    streams={self.queue_name: ">"},
                    count=batch_size,
                    block=block_time,
                )
            except Exception as e:
                logger.error(f"Redis consume error: {e}")
                return []
            for _stream_name, stream_messages in response or []:
                entries.extend(stream_messages)

        events = []
        for message_id, message_data in entries:
            if isinstance(message_id, bytes):
                message_id = message_id.decode("utf-8")
            try:
                raw = message_data.get(b"data") or message_data.get("data")
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8")
                event = ClickEvent(**json.loads(raw))
            except Exception as e:
                # Malformed (or trimmed) entry: ack it away so it is not redelivered forever
                logger.warning(f"Skipping malformed message {message_id}: {e}")
                await self.ack([message_id])
                continue
            event._message_id = message_id
            events.append(event)

        return events

    async def ack(self, message_ids: List[str]) -> bool:
        if not message_ids:
            return True
        try:
            await asyncio.to_thread(self.redis.xack, self.queue_name, self.consumer_group, *message_ids)
            await asyncio.to_thread(self.redis.xdel, self.queue_name, *message_ids)
            return True
        except Exception as e:
            logger.error(f"Redis ack error: {e}")
            return False

    async def get_queue_length(self) -> int:
        try:
            return int(await asyncio.to_thread(self.redis.xlen, self.queue_name))
        except Exception:
            return 0
