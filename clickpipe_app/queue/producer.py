"""
Fire-and-forget hand-off of click events to the ingestion channel.
"""

import threading

from loguru import logger

from clickpipe_app.errors import IngestionDropped
from .models import ClickEvent
from .strategies import QueueStrategy


class ClickEventProducer:
    """
    Publishes click events without ever blocking or failing the caller.

    Backpressure policy: when the channel is full (or closed) the event
    is dropped and counted. Redirect latency never depends on channel
    depth. There are no retries here; retrying belongs to the consumer's
    persistence step.
    """

    def __init__(self, queue: QueueStrategy):
        self.queue = queue
        self.accepted = 0
        self.dropped = 0
        self._lock = threading.Lock()

    def publish(self, event: ClickEvent) -> bool:
        """
        Hand the event to the channel.

        Returns:
            True if the channel accepted it, False if it was dropped
        """
        try:
            ok = self.queue.publish(event)
        except Exception as e:
            logger.error(f"Click publish failed for {event.link_key}: {e}")
            ok = False

        with self._lock:
            if ok:
                self.accepted += 1
            else:
                self.dropped += 1
                dropped = self.dropped

        if not ok:
            reason = "channel closed" if self.queue.closed else "channel full"
            logger.warning(f"{IngestionDropped.__name__}: click for {event.link_key} dropped ({reason}), total dropped={dropped}")
        return ok

    def stats(self) -> dict:
        with self._lock:
            return {"accepted": self.accepted, "dropped": self.dropped}
