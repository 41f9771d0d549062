"""
Indoor climate — answers ``environment.query`` from the context's
environment state and raises heat / humidity alerts from sensor readings.
"""

from __future__ import annotations

import datetime as dt

from hearth.context.models import ConversationContext
from hearth.handlers.common import number
from hearth.intent.models import Intent
from hearth.plugins.base import CapabilityHandler, PluginResponse, ProactiveRule, RulePriority

READING_EVENTS = frozenset({"environment.reading"})


class ClimateHandler(CapabilityHandler):
    name = "climate"
    intents = frozenset(
        {"environment.query", "proactive.high_temperature", "proactive.high_humidity"}
    )
    rank = 10

    def __init__(self, max_temperature: float = 28.0, max_humidity: float = 70.0):
        self.max_temperature = max_temperature
        self.max_humidity = max_humidity

    async def execute(self, intent: Intent, context: ConversationContext) -> PluginResponse:
        if intent.is_proactive:
            return self._alert(intent)

        env = context.environment_state
        if env.temperature is None and env.humidity is None:
            return PluginResponse(
                speech="아직 실내 환경 정보가 없어요.",
                confidence=0.4,
            )

        parts, display = [], []
        if env.temperature is not None:
            parts.append(f"실내 온도는 {env.temperature:g}도")
            display.append(f"{env.temperature:g}°C")
        if env.humidity is not None:
            parts.append(f"습도는 {env.humidity:g}%")
            display.append(f"{env.humidity:g}%")
        speech = ", ".join(parts) + "예요."
        if env.temperature is not None and env.temperature >= self.max_temperature:
            speech += " 조금 덥네요. 에어컨을 켜 드릴까요?"
        return PluginResponse(
            speech=speech,
            display_text=" / ".join(display),
            confidence=0.9,
        )

    def _alert(self, intent: Intent) -> PluginResponse:
        params = intent.parameters
        environment = {}
        actions = []
        if intent.name == "proactive.high_temperature":
            environment["temperature"] = number(params.get("temperature"))
            actions.append(
                {"type": "suggestion", "device": "air_conditioner", "command": "on", "room": params.get("room")}
            )
            suggestions = ("에어컨 켜 줘",)
        else:
            environment["humidity"] = number(params.get("humidity"))
            actions.append(
                {"type": "suggestion", "device": "dehumidifier", "command": "on", "room": params.get("room")}
            )
            suggestions = ("제습기 켜 줘",)
        return PluginResponse(
            speech=intent.original_text,
            actions=tuple(actions),
            confidence=1.0,
            context_update={"environment": {k: v for k, v in environment.items() if v is not None}},
            suggestions=suggestions,
        )

    # ─── Proactive ────────────────────────────────────────────────

    def proactive_rules(self) -> list[ProactiveRule]:
        return [
            ProactiveRule(
                name="high_temperature",
                trigger=self._too_hot,
                message_template="실내 온도가 {temperature}도예요. 에어컨을 켤까요?",
                cooldown=dt.timedelta(hours=1),
                priority=RulePriority.HIGH,
                event_types=READING_EVENTS,
            ),
            ProactiveRule(
                name="high_humidity",
                trigger=self._too_humid,
                message_template="습도가 {humidity}%로 높아요. 환기나 제습을 추천해요.",
                cooldown=dt.timedelta(hours=2),
                priority=RulePriority.LOW,
                event_types=READING_EVENTS,
            ),
        ]

    def _too_hot(self, event, context: ConversationContext) -> bool:
        temp = number(event.payload.get("temperature"))
        return temp is not None and temp >= self.max_temperature

    def _too_humid(self, event, context: ConversationContext) -> bool:
        humidity = number(event.payload.get("humidity"))
        return humidity is not None and humidity >= self.max_humidity
