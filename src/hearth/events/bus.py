"""
Event Bus — lightweight async pub/sub for in-process events.

Used on both sides of the engine:
- inbound: transports publish DeviceEvents on ``device.events``; the
  proactive engine subscribes
- outbound: the EventPublisher forwards analytics events to
  ``dialog.completed`` / ``proactive.triggered``; SSE or test
  listeners subscribe

Design:
- Topic-based: publishers write to topics, subscribers listen on topics
- Each subscriber gets its own asyncio.Queue (no cross-talk)
- Non-blocking: publish() never blocks the publisher; full queues drop

Usage:
    bus = EventBus()
    queue = bus.subscribe("device.events")
    await bus.publish("device.events", event)
    async for event in bus.listen(queue):
        ...
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncGenerator

from hearth.core.metrics import metrics

logger = logging.getLogger(__name__)

DEVICE_EVENTS_TOPIC = "device.events"

# Sentinel to signal end of stream
_STREAM_END = object()


class EventBus:
    """Topic-based async pub/sub. One queue per subscriber."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)

    async def publish(self, topic: str, event: Any) -> int:
        """Deliver *event* to every subscriber of *topic*.

        Returns the number of subscribers that received it.
        """
        return self.publish_nowait(topic, event)

    def publish_nowait(self, topic: str, event: Any) -> int:
        delivered = 0
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Event bus: subscriber queue full for topic %s, dropping event",
                    topic,
                )
                metrics.inc("bus.dropped", labels={"topic": topic})
        return delivered

    def subscribe(self, topic: str, maxsize: int = 1000) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[topic].append(queue)
        logger.debug(
            "Subscribed to topic: %s (total: %d)", topic, len(self._subscribers[topic])
        )
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """Safe to call even if the queue was already removed."""
        queues = self._subscribers.get(topic, [])
        try:
            queues.remove(queue)
            if not queues:
                del self._subscribers[topic]
        except ValueError:
            pass

    async def publish_end(self, topic: str) -> None:
        """Signal end-of-stream to all subscribers of a topic."""
        for queue in self._subscribers.get(topic, []):
            try:
                queue.put_nowait(_STREAM_END)
            except asyncio.QueueFull:
                pass

    async def listen(self, queue: asyncio.Queue) -> AsyncGenerator[Any, None]:
        """Yield events until publish_end() is called for the topic."""
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                break
            yield item

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    def active_topics(self) -> list[str]:
        return [t for t, subs in self._subscribers.items() if subs]
