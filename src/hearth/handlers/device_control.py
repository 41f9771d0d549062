"""
Device control — turns lights, air conditioners and the like on and off.

The handler never talks to devices itself: it returns ``device.command``
actions for the caller (hub, app) to execute, and records the expected
device state in the context.

Proactive: motion at night in a dark room turns that room's light on.
"""

from __future__ import annotations

import datetime as dt

from hearth.context.models import ConversationContext
from hearth.handlers.common import in_hours, local_hour, number
from hearth.intent.models import Intent
from hearth.plugins.base import CapabilityHandler, PluginResponse, ProactiveRule, RulePriority

DEVICE_NAMES = {
    "light": "조명",
    "air_conditioner": "에어컨",
    "heater": "난방",
    "curtain": "커튼",
    "tv": "TV",
}

ROOM_NAMES = {
    "living_room": "거실",
    "bedroom": "안방",
    "kitchen": "주방",
    "bathroom": "욕실",
}

DARK_LUX = 10.0


def _target(room: str | None, device: str) -> str:
    return f"{room}.{device}" if room else device


class DeviceControlHandler(CapabilityHandler):
    name = "device_control"
    intents = frozenset({"device.on", "device.off", "device.control", "proactive.night_light"})
    rank = 20
    timeout = 2.0

    def __init__(self, utc_offset_hours: float = 9.0, night_hours: tuple[int, int] = (22, 6)):
        self._utc_offset = utc_offset_hours
        self._night = night_hours

    def can_handle(self, intent: Intent, context: ConversationContext) -> bool:
        if intent.is_proactive:
            return True
        return bool(intent.parameters.get("device"))

    async def execute(self, intent: Intent, context: ConversationContext) -> PluginResponse:
        params = intent.parameters
        device = str(params.get("device") or "light")
        room = params.get("room") or context.user_state.location
        command = self._command(intent)
        target = _target(room, device)

        action = {
            "type": "device.command",
            "device": device,
            "room": room,
            "command": command,
        }
        if command == "set" and "value" in params:
            action["value"] = params["value"]

        room_name = ROOM_NAMES.get(room or "", "")
        device_name = DEVICE_NAMES.get(device, device)
        label = f"{room_name} {device_name}".strip()
        if intent.is_proactive:
            speech = intent.original_text or f"{label}을 켤게요."
        elif command == "on":
            speech = f"{label}을 켤게요."
        elif command == "off":
            speech = f"{label}을 끌게요."
        else:
            speech = f"{label}을 {params.get('value', '')}(으)로 설정할게요."

        return PluginResponse(
            speech=speech,
            display_text=f"{target} → {command}",
            actions=(action,),
            confidence=0.85 if not intent.is_proactive else 1.0,
            context_update={
                "device_attributes": {target: {"power": command if command != "set" else "on"}},
                "short_term": {"last_device": target},
            },
        )

    @staticmethod
    def _command(intent: Intent) -> str:
        if intent.name == "device.off":
            return "off"
        if intent.name == "device.control":
            return str(intent.parameters.get("command") or "set")
        return "on"

    # ─── Proactive ────────────────────────────────────────────────

    def proactive_rules(self) -> list[ProactiveRule]:
        return [
            ProactiveRule(
                name="night_light",
                trigger=self._dark_motion_at_night,
                message_template="어두워서 조명을 켤게요.",
                cooldown=dt.timedelta(minutes=30),
                priority=RulePriority.HIGH,
                event_types=frozenset({"motion.detected"}),
            )
        ]

    def _dark_motion_at_night(self, event, context: ConversationContext) -> bool:
        if not in_hours(local_hour(event.timestamp, self._utc_offset), *self._night):
            return False
        lux = number(event.payload.get("light_level"))
        if lux is None:
            lux = context.environment_state.light_level
        return lux is None or lux < DARK_LUX
