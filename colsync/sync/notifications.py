"""Fan-out channel for file change events.

Delivery is fire-and-forget: publishing never blocks and never reports back.
Queue subscribers that fall behind lose events rather than stalling watchers.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from colsync import config
from colsync.models import FileChangeEvent

logger = logging.getLogger("colsync.notifications")

NotifySink = Callable[[FileChangeEvent], None]


class EventBroadcaster:
    """Notification sink: call it with an event to push it to every subscriber."""

    def __init__(self, queue_size: Optional[int] = None):
        self._queue_size = config.EVENT_QUEUE_SIZE if queue_size is None else queue_size
        self._queues: set[asyncio.Queue] = set()
        self._listeners: list[NotifySink] = []

    def __call__(self, event: FileChangeEvent) -> None:
        self.publish(event)

    def publish(self, event: FileChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"File change listener failed for {event.path}: {e}")

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.type} event for {event.path}: subscriber queue full")

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)

    def add_listener(self, listener: NotifySink) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: NotifySink) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)
