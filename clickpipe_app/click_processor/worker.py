"""
Click Event Consumer

Drains the ingestion channel, enriches each event and persists it as a
click fact.

Architecture:
- A pool of asyncio worker tasks pulls batches from the channel
- Each event is enriched (user agent + GeoIP) and stored on its own
- Persistence is bounded by a timeout and retried with backoff
- After the last attempt the event is logged as dropped, never re-queued
"""

import asyncio
import signal
import sys
from collections import deque
from typing import Deque, Dict, List, Optional

from loguru import logger
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from clickpipe_app.config import Settings
from clickpipe_app.errors import IngestionDropped
from clickpipe_app.queue.models import ClickEvent, ClickFact
from clickpipe_app.queue.strategies import InMemoryQueue, QueueStrategy
from clickpipe_app.storage.strategies import ClickStorageStrategy
from .enrichment import enrich_event
from .geoip import GeoIPService


class ClickEventConsumer:
    """
    Pool of workers turning queued click events into stored facts.

    A single bad event is skipped and a single failed write is dropped;
    neither stops a worker. A long run of failed writes flips `healthy`
    so the surrounding process can report it.
    """

    def __init__(
        self,
        queue: QueueStrategy,
        storage: ClickStorageStrategy,
        config: Settings,
        geoip: Optional[GeoIPService] = None,
    ):
        self.queue = queue
        self.storage = storage
        self.config = config
        self.geoip = geoip or GeoIPService(config.geoip_city_db_path)

        self.persisted = 0
        self.dropped = 0
        self.skipped = 0
        self.consecutive_failures = 0

        self._tasks: List[asyncio.Task] = []
        # Events a worker has taken off the channel but not finished yet
        self._inflight: Dict[int, Deque[ClickEvent]] = {}
        self._stopping = False

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def healthy(self) -> bool:
        return self.consecutive_failures < self.config.unhealthy_after_failures

    def stats(self) -> dict:
        return {
            "persisted": self.persisted,
            "dropped": self.dropped,
            "skipped": self.skipped,
            "consecutive_failures": self.consecutive_failures,
            "healthy": self.healthy,
        }

    def start(self, workers: Optional[int] = None):
        """Spawn the worker tasks on the running event loop"""
        count = workers or self.config.consumer_workers
        self._stopping = False
        self._tasks = [
            asyncio.create_task(self._run_worker(i), name=f"click-worker-{i}")
            for i in range(count)
        ]
        logger.info(f"Click consumer started with {count} worker(s)")

    async def stop(self, grace_period: Optional[float] = None):
        """
        Graceful shutdown.

        Closes the channel to new events, lets the workers drain it for
        up to grace_period seconds, then cancels them. Anything still
        queued or still held by a cancelled worker after that is logged as
        dropped.
        """
        grace = self.config.shutdown_grace_period if grace_period is None else grace_period
        self.queue.close()
        self._stopping = True

        if self._tasks:
            _done, pending = await asyncio.wait(self._tasks, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

        unfinished = [event for batch in self._inflight.values() for event in batch]
        self._inflight = {}
        if unfinished:
            if isinstance(self.queue, InMemoryQueue):
                self.dropped += len(unfinished)
                logger.warning(
                    f"{IngestionDropped.__name__}: {len(unfinished)} in-flight click event(s) "
                    f"dropped at shutdown after {grace}s grace period"
                )
            else:
                # Never acked, so they stay pending and are reclaimed on the next start
                logger.warning(
                    f"{len(unfinished)} in-flight click event(s) left pending in "
                    f"{self.queue.queue_name} for redelivery"
                )

        if isinstance(self.queue, InMemoryQueue):
            leftover = self.queue.drain()
            if leftover:
                self.dropped += len(leftover)
                logger.warning(
                    f"{IngestionDropped.__name__}: {len(leftover)} undrained click event(s) "
                    f"dropped at shutdown after {grace}s grace period"
                )
        else:
            remaining = await self.queue.get_queue_length()
            if remaining:
                logger.warning(f"{remaining} click event(s) left in {self.queue.queue_name} at shutdown")

        logger.info(f"Click consumer stopped: {self.stats()}")

    async def _run_worker(self, worker_id: int):
        while True:
            try:
                messages = await self.queue.consume_batch(
                    batch_size=self.config.queue_batch_size,
                    block_time=int(self.config.queue_poll_interval * 1000),
                )

                if not messages:
                    if self._stopping:
                        break
                    await asyncio.sleep(self.config.queue_poll_interval)
                    continue

                batch = self._inflight[worker_id] = deque(messages)
                while batch:
                    await self.process_event(batch[0])
                    batch.popleft()
                del self._inflight[worker_id]

                # Dropped events are acknowledged too; nothing is retried via the queue
                message_ids = [msg.message_id for msg in messages if msg.message_id]
                if message_ids:
                    await self.queue.ack(message_ids)

            except asyncio.CancelledError:
                logger.debug(f"Worker {worker_id} cancelled")
                raise
            except Exception as e:
                logger.exception(f"Worker {worker_id} loop error: {e}")
                await asyncio.sleep(self.config.queue_poll_interval)

    async def process_event(self, event: ClickEvent) -> bool:
        """
        Enrich and persist one event.

        Returns:
            True if a fact was stored, False if the event was skipped or dropped
        """
        try:
            location = self.geoip.lookup(event.ip_address)
            fact = enrich_event(event, location)
        except Exception as e:
            self.skipped += 1
            logger.warning(f"Skipping malformed click event: {e}")
            return False

        try:
            await self._persist(fact)
        except Exception as e:
            self.dropped += 1
            self.consecutive_failures += 1
            logger.error(
                f"{IngestionDropped.__name__}: click {fact.id} for {fact.link_key} dropped after "
                f"{self.config.persist_max_attempts} attempt(s): {e!r}"
            )
            if self.consecutive_failures == self.config.unhealthy_after_failures:
                logger.critical(
                    f"Click store failing: {self.consecutive_failures} consecutive writes lost"
                )
            return False

        self.persisted += 1
        if self.consecutive_failures:
            logger.info(f"Click store recovered after {self.consecutive_failures} failure(s)")
        self.consecutive_failures = 0
        return True

    async def _persist(self, fact: ClickFact):
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.persist_max_attempts),
            wait=wait_exponential(
                multiplier=self.config.persist_backoff_min,
                min=self.config.persist_backoff_min,
                max=self.config.persist_backoff_max,
            ),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await asyncio.wait_for(
                    self.storage.store_fact(fact),
                    timeout=self.config.persist_timeout,
                )

    @staticmethod
    def _log_retry(retry_state):
        logger.warning(
            f"Click persist attempt {retry_state.attempt_number} failed: "
            f"{retry_state.outcome.exception()!r}; retrying"
        )


async def main():
    """
    Main entry point for the standalone consumer.

    Usage:
        python -m clickpipe_app.click_processor.worker
    """
    from clickpipe_app.config import settings
    from clickpipe_app.errors import ChannelUnavailable
    from clickpipe_app.logging_config import setup_logging
    from clickpipe_app.queue.factory import QueueFactory
    from clickpipe_app.storage.factory import ClickStorageFactory

    setup_logging(settings)
    logger.info(
        f"Clickpipe consumer | env={settings.environment} "
        f"queue={settings.queue_backend} storage={settings.click_storage_backend}"
    )
    if settings.queue_backend == "memory":
        logger.warning("In-memory queue is per-process; a standalone consumer will see no events")

    try:
        queue = QueueFactory.create(settings)
    except ChannelUnavailable as e:
        logger.critical(str(e))
        sys.exit(1)

    storage = ClickStorageFactory.create(settings)
    consumer = ClickEventConsumer(queue=queue, storage=storage, config=settings)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    consumer.start()
    await stop_requested.wait()
    logger.info("Shutdown signal received")
    await consumer.stop()


if __name__ == "__main__":
    asyncio.run(main())
