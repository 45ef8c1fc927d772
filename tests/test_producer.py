"""
Tests for the non-blocking click producer.
"""
import time

from clickpipe_app.queue.models import ClickEvent
from clickpipe_app.queue.producer import ClickEventProducer
from clickpipe_app.queue.strategies import InMemoryQueue


def make_event(key="abc1"):
    return ClickEvent(link_key=key)


class TestBackpressure:
    """When nothing drains the channel, overflow is dropped, not queued"""

    def test_overflow_is_dropped_and_counted(self):
        capacity, published = 50, 500
        queue = InMemoryQueue(capacity=capacity)
        producer = ClickEventProducer(queue)

        started = time.monotonic()
        results = [producer.publish(make_event()) for _ in range(published)]
        elapsed = time.monotonic() - started

        assert results.count(True) == capacity
        assert results.count(False) == published - capacity
        assert producer.stats() == {"accepted": capacity, "dropped": published - capacity}
        # Publishing never waits for space
        assert elapsed < 2.0

    def test_accepted_events_are_the_first_ones(self):
        queue = InMemoryQueue(capacity=2)
        producer = ClickEventProducer(queue)

        for key in ("k001", "k002", "k003"):
            producer.publish(make_event(key))

        assert [event.link_key for event in queue.drain()] == ["k001", "k002"]

    def test_space_frees_up_after_consumption(self):
        queue = InMemoryQueue(capacity=1)
        producer = ClickEventProducer(queue)

        assert producer.publish(make_event()) is True
        assert producer.publish(make_event()) is False
        queue.drain()
        assert producer.publish(make_event()) is True


class TestClosedChannel:

    def test_closed_channel_drops_everything(self):
        queue = InMemoryQueue(capacity=10)
        producer = ClickEventProducer(queue)
        queue.close()

        assert producer.publish(make_event()) is False
        assert producer.stats() == {"accepted": 0, "dropped": 1}

    def test_queue_exception_is_counted_as_drop(self):
        class BrokenQueue(InMemoryQueue):
            def publish(self, message):
                raise ConnectionError("no route to broker")

        producer = ClickEventProducer(BrokenQueue())

        assert producer.publish(make_event()) is False
        assert producer.stats()["dropped"] == 1
