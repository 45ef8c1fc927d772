"""
Tests for the click consumer: persistence, retries, health and shutdown.
"""
import asyncio
from collections import Counter

from clickpipe_app.click_processor.geoip import GeoIPService
from clickpipe_app.click_processor.worker import ClickEventConsumer
from clickpipe_app.queue.models import ClickEvent
from clickpipe_app.queue.producer import ClickEventProducer
from clickpipe_app.queue.strategies import InMemoryQueue
from clickpipe_app.storage.strategies import InMemoryClickStorage


class FlakyStorage(InMemoryClickStorage):
    """Fails the first `failures` writes, then behaves"""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.calls = 0

    async def store_facts(self, facts):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("analytics store unreachable")
        await super().store_facts(facts)


class SlowStorage(InMemoryClickStorage):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def store_facts(self, facts):
        await asyncio.sleep(self.delay)
        await super().store_facts(facts)


def make_consumer(config, storage, queue=None):
    queue = queue or InMemoryQueue(capacity=config.queue_capacity)
    geoip = GeoIPService(config.geoip_city_db_path)
    return ClickEventConsumer(queue, storage, config, geoip=geoip), queue


async def wait_until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestProcessEvent:

    def test_event_is_persisted_as_fact(self, config, storage):
        consumer, _ = make_consumer(config, storage)

        ok = asyncio.run(consumer.process_event(ClickEvent(link_key="abc1", referer="https://t.co")))

        assert ok is True
        assert consumer.persisted == 1
        assert asyncio.run(storage.count_facts("abc1")) == 1

    def test_transient_failures_are_retried(self, config):
        storage = FlakyStorage(failures=config.persist_max_attempts - 1)
        consumer, _ = make_consumer(config, storage)

        ok = asyncio.run(consumer.process_event(ClickEvent(link_key="abc1")))

        assert ok is True
        assert storage.calls == config.persist_max_attempts
        assert asyncio.run(storage.count_facts("abc1")) == 1
        assert consumer.consecutive_failures == 0

    def test_event_dropped_after_last_attempt(self, config):
        storage = FlakyStorage(failures=10_000)
        consumer, _ = make_consumer(config, storage)

        ok = asyncio.run(consumer.process_event(ClickEvent(link_key="abc1")))

        assert ok is False
        assert storage.calls == config.persist_max_attempts
        assert consumer.dropped == 1
        assert consumer.persisted == 0

    def test_slow_store_times_out_and_drops(self, config):
        fast_timeout = config.model_copy(update={"persist_timeout": 0.05, "persist_max_attempts": 2})
        consumer, _ = make_consumer(fast_timeout, SlowStorage(delay=1.0))

        ok = asyncio.run(consumer.process_event(ClickEvent(link_key="abc1")))

        assert ok is False
        assert consumer.dropped == 1

    def test_malformed_event_is_skipped(self, config, storage):
        consumer, _ = make_consumer(config, storage)
        broken = ClickEvent.model_construct(
            link_key="abc1", timestamp="not a timestamp", ip_address=None, user_agent=None, referer=None
        )

        ok = asyncio.run(consumer.process_event(broken))

        assert ok is False
        assert consumer.skipped == 1
        assert consumer.dropped == 0
        assert asyncio.run(storage.count_facts()) == 0


class TestHealth:

    def test_repeated_failures_flip_health_and_recover(self, config):
        storage = FlakyStorage(failures=config.unhealthy_after_failures * config.persist_max_attempts)
        consumer, _ = make_consumer(config, storage)

        async def scenario():
            for _ in range(config.unhealthy_after_failures):
                await consumer.process_event(ClickEvent(link_key="abc1"))
            unhealthy = consumer.healthy
            await consumer.process_event(ClickEvent(link_key="abc1"))
            return unhealthy

        was_healthy = asyncio.run(scenario())

        assert was_healthy is False
        assert consumer.healthy is True
        assert consumer.stats()["dropped"] == config.unhealthy_after_failures
        assert consumer.stats()["persisted"] == 1


class TestWorkerPool:

    def test_workers_drain_channel_without_loss_or_duplication(self, config, storage):
        queue = InMemoryQueue(capacity=1000)
        consumer, _ = make_consumer(config, storage, queue=queue)
        producer = ClickEventProducer(queue)
        keys = [f"k{i:04d}" for i in range(300)]

        async def scenario():
            consumer.start(workers=4)
            for key in keys:
                assert producer.publish(ClickEvent(link_key=key))
            await wait_until(lambda: consumer.persisted == len(keys))
            await consumer.stop()

        asyncio.run(scenario())

        stored = Counter(fact.link_key for fact in storage._facts)
        assert sorted(stored) == keys
        assert set(stored.values()) == {1}
        assert not consumer.running

    def test_stop_drains_queued_events_within_grace(self, config, storage):
        consumer, queue = make_consumer(config, storage)
        producer = ClickEventProducer(queue)

        async def scenario():
            consumer.start()
            for _ in range(20):
                producer.publish(ClickEvent(link_key="abc1"))
            await consumer.stop(grace_period=2.0)

        asyncio.run(scenario())

        assert consumer.persisted == 20
        assert consumer.dropped == 0
        assert asyncio.run(storage.count_facts("abc1")) == 20

    def test_leftovers_at_shutdown_are_counted_as_dropped(self, config, storage):
        consumer, queue = make_consumer(config, storage)
        producer = ClickEventProducer(queue)
        for _ in range(5):
            producer.publish(ClickEvent(link_key="abc1"))

        # Never started: nothing drains the channel before the grace period ends
        asyncio.run(consumer.stop(grace_period=0))

        assert consumer.dropped == 5
        assert asyncio.run(queue.get_queue_length()) == 0

    def test_channel_rejects_events_after_stop(self, config, storage):
        consumer, queue = make_consumer(config, storage)
        producer = ClickEventProducer(queue)

        async def scenario():
            consumer.start()
            await consumer.stop()

        asyncio.run(scenario())

        assert producer.publish(ClickEvent(link_key="abc1")) is False
        assert producer.stats()["dropped"] == 1

    def test_batch_held_by_cancelled_worker_is_accounted_for(self, config):
        """Events a worker took off the channel are counted even if it is cancelled mid-batch"""
        storage = SlowStorage(delay=1.0)
        slow = config.model_copy(update={"persist_timeout": 5.0, "queue_batch_size": 10})
        consumer, queue = make_consumer(slow, storage)
        producer = ClickEventProducer(queue)
        for _ in range(10):
            producer.publish(ClickEvent(link_key="abc1"))

        async def scenario():
            consumer.start(workers=1)
            # The single worker has taken the whole batch and is stuck on the first write
            await wait_until(lambda: 0 in consumer._inflight)
            await consumer.stop(grace_period=0.1)

        asyncio.run(scenario())

        stats = consumer.stats()
        assert stats["persisted"] + stats["dropped"] + stats["skipped"] == 10
        assert stats["dropped"] == 10
        assert asyncio.run(queue.get_queue_length()) == 0
