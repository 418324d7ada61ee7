"""
Live Update Publisher

Fire-and-forget fan-out of completed readings. Publishing never awaits a
subscriber: each subscriber has a bounded queue and loses its oldest
reading when it falls behind.
"""

import asyncio
from typing import Callable, Protocol

from common.logging_setup import get_service_logger
from .models import Reading

logger = get_service_logger("acquisition.publisher")


class LiveUpdatePublisher(Protocol):
    """Sink for completed readings"""

    def publish(self, reading: Reading) -> None:
        ...


class NullPublisher:
    """Publisher that drops every reading"""

    def publish(self, reading: Reading) -> None:
        pass


class SubscriberHub:
    """
    In-process publish/subscribe hub.

    - Queue subscribers: subscribe() returns an asyncio.Queue of Readings
    - Callback subscribers: add_callback() registers a plain function
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._queues: list[asyncio.Queue] = []
        self._callbacks: list[Callable[[Reading], None]] = []
        self._published = 0
        self._dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._callbacks)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def add_callback(self, callback: Callable[[Reading], None]) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[Reading], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def publish(self, reading: Reading) -> None:
        """Deliver a reading to every subscriber without blocking"""
        self._published += 1

        for queue in list(self._queues):
            if queue.full():
                # Slow consumer: drop its oldest reading
                try:
                    queue.get_nowait()
                    self._dropped += 1
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(reading)

        for callback in list(self._callbacks):
            try:
                callback(reading)
            except Exception as e:
                logger.warning(f"Live update callback failed: {e}")

    def get_stats(self) -> dict:
        return {
            "subscribers": self.subscriber_count,
            "published": self._published,
            "dropped": self._dropped,
        }
