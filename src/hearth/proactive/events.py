"""
Standard inbound device/environment event.

Every transport normalizes what it receives (MQTT message, webhook,
sensor poll) into a DeviceEvent before handing it to the engine.
Events are transient: the engine never persists them.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DeviceEvent:
    device_id: str  # "livingroom-sensor-1"
    type: str  # "motion.detected", "environment.reading", "presence.arrived"
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    # Transports that retry reuse the same id; the cooldown makes duplicates harmless
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "device_id": self.device_id,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DeviceEvent:
        return cls(
            event_id=data.get("event_id") or uuid.uuid4().hex[:16],
            device_id=data["device_id"],
            type=data["type"],
            payload=dict(data.get("payload") or {}),
            timestamp=float(data.get("timestamp") or time.time()),
        )
