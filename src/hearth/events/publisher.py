"""
Event Publisher — fire-and-forget analytics events.

emit() is synchronous and never raises: it drops the event into a
bounded queue and returns. A background worker hands each event to the
configured sinks. A full queue drops the event (logged and counted); a
failing sink is logged and skipped. Nothing here can fail or slow down
a dialog turn.

Event kinds:
    dialog.completed      one per user turn
    proactive.triggered   one per fired proactive rule
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from hearth.core.metrics import metrics
from hearth.events.bus import EventBus

logger = logging.getLogger(__name__)

DIALOG_COMPLETED = "dialog.completed"
PROACTIVE_TRIGGERED = "proactive.triggered"

_STOP = object()


@dataclass(frozen=True)
class AnalyticsEvent:
    kind: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    emitted_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "kind": self.kind,
            "emitted_at": self.emitted_at,
            "payload": self.payload,
        }


class EventSink(Protocol):
    name: str

    async def send(self, event: AnalyticsEvent) -> None: ...


class BusSink:
    """Republishes analytics events on the in-process bus, topic = kind."""

    name = "bus"

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    async def send(self, event: AnalyticsEvent) -> None:
        await self._bus.publish(event.kind, event)


class WebhookSink:
    """POSTs each event as JSON to a downstream collector."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._client = client

    async def send(self, event: AnalyticsEvent) -> None:
        if self._client is not None:
            resp = await self._client.post(
                self._url, json=event.to_dict(), timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=event.to_dict())
        resp.raise_for_status()


class EventPublisher:
    """Bounded queue + single background worker."""

    def __init__(self, sinks: list[EventSink] | None = None, queue_size: int = 1000):
        self._sinks = list(sinks or [])
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.create_task(self._run(), name="event-publisher")
        logger.info(
            "EventPublisher started (sinks=%s)", [s.name for s in self._sinks]
        )

    async def stop(self, timeout: float = 5.0) -> None:
        """Deliver what is queued (up to *timeout*), then stop the worker."""
        if self._worker is None:
            return
        try:
            self._queue.put_nowait(_STOP)
            await asyncio.wait_for(asyncio.shield(self._worker), timeout=timeout)
        except (asyncio.QueueFull, asyncio.TimeoutError):
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None

    # ─── Emit ─────────────────────────────────────────────────────

    def emit(self, kind: str, payload: dict[str, Any]) -> bool:
        """Queue an event. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(AnalyticsEvent(kind=kind, payload=payload))
        except asyncio.QueueFull:
            logger.warning("Event queue full, dropping %s event", kind)
            metrics.inc("events.dropped", labels={"kind": kind})
            return False
        metrics.gauge_set("events.queue_depth", self._queue.qsize())
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been handed to the sinks."""
        await self._queue.join()

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    # ─── Worker ───────────────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                await self._deliver(item)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: AnalyticsEvent) -> None:
        for sink in self._sinks:
            try:
                await sink.send(event)
            except Exception as e:
                logger.warning(
                    "Event sink %s failed for %s: %s", sink.name, event.kind, e
                )
                metrics.inc("events.sink_failed", labels={"sink": sink.name})
            else:
                metrics.inc("events.delivered", labels={"kind": event.kind, "sink": sink.name})
