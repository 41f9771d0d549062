"""In-process event bus and the fire-and-forget analytics publisher."""

from hearth.events.bus import DEVICE_EVENTS_TOPIC, EventBus
from hearth.events.publisher import (
    DIALOG_COMPLETED,
    PROACTIVE_TRIGGERED,
    AnalyticsEvent,
    BusSink,
    EventPublisher,
    WebhookSink,
)

__all__ = [
    "AnalyticsEvent",
    "BusSink",
    "DEVICE_EVENTS_TOPIC",
    "DIALOG_COMPLETED",
    "EventBus",
    "EventPublisher",
    "PROACTIVE_TRIGGERED",
    "WebhookSink",
]
