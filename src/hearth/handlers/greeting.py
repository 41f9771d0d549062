"""Greetings, spoken and proactive."""

from __future__ import annotations

from hearth.context.models import ConversationContext
from hearth.handlers.common import in_hours, local_hour
from hearth.intent.models import Intent
from hearth.plugins.base import (
    CALENDAR_DAY,
    CapabilityHandler,
    PluginResponse,
    ProactiveRule,
    RulePriority,
)


class GreetingHandler(CapabilityHandler):
    name = "greeting"
    intents = frozenset({"greeting.hello", "proactive.morning_greeting"})
    rank = 0

    def __init__(self, utc_offset_hours: float = 9.0) -> None:
        self._utc_offset = utc_offset_hours

    async def execute(self, intent: Intent, context: ConversationContext) -> PluginResponse:
        profile = context.long_term_memory.get("profile") or {}
        name = profile.get("name")
        if intent.is_proactive:
            speech = intent.original_text
        elif name:
            speech = f"안녕하세요, {name}님! 무엇을 도와드릴까요?"
        else:
            speech = "안녕하세요! 무엇을 도와드릴까요?"
        return PluginResponse(
            speech=speech,
            confidence=0.8,
            suggestions=("오늘 날씨 어때?", "거실 불 켜 줘"),
        )

    def proactive_rules(self) -> list[ProactiveRule]:
        return [
            ProactiveRule(
                name="morning_greeting",
                trigger=self._first_motion_in_morning,
                message_template="좋은 아침이에요! 잘 주무셨어요?",
                cooldown=CALENDAR_DAY,
                priority=RulePriority.LOW,
                event_types=frozenset({"motion.detected", "presence.detected"}),
            )
        ]

    def _first_motion_in_morning(self, event, context: ConversationContext) -> bool:
        return in_hours(local_hour(event.timestamp, self._utc_offset), 5, 10)
