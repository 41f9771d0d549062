"""
CapabilityHandler — the base class for every plugin.

A handler declares which intents it answers and how important it is;
the registry and dispatcher decide when it runs. Handlers never pick
themselves and never write context directly: they return a
PluginResponse and the pipeline merges ``context_update`` for the
primary result only.

Subclass this, set the class attributes, implement execute().
Optionally override can_handle() for context-dependent refusal and
proactive_rules() to contribute event-driven triggers.
"""

from __future__ import annotations

import datetime as dt
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Union

if TYPE_CHECKING:
    from hearth.context.models import ConversationContext
    from hearth.intent.models import Intent
    from hearth.proactive.events import DeviceEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginResponse:
    """What one handler invocation produced. Never mutated after return."""

    speech: str
    display_text: str | None = None
    actions: tuple[dict[str, Any], ...] = ()
    context_update: Mapping[str, Any] = field(default_factory=dict)
    confidence: float = 1.0
    suggestions: tuple[str, ...] = ()
    end_conversation: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", tuple(self.actions))
        object.__setattr__(self, "suggestions", tuple(self.suggestions))
        object.__setattr__(
            self, "confidence", min(1.0, max(0.0, float(self.confidence)))
        )

    def to_dict(self) -> dict:
        return {
            "speech": self.speech,
            "display_text": self.display_text,
            "actions": list(self.actions),
            "confidence": self.confidence,
            "suggestions": list(self.suggestions),
            "end_conversation": self.end_conversation,
        }


# ─── Proactive rules ──────────────────────────────────────────────


class RulePriority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


class CalendarDay:
    """Cooldown marker: fire at most once per local calendar day."""

    def __repr__(self) -> str:
        return "CALENDAR_DAY"


CALENDAR_DAY = CalendarDay()

Cooldown = Union[dt.timedelta, CalendarDay]

TriggerFn = Callable[
    ["DeviceEvent", "ConversationContext"], Union[bool, Awaitable[bool]]
]


@dataclass(frozen=True)
class ProactiveRule:
    """An event-driven trigger contributed by a handler.

    ``cooldown`` is mandatory: there is no sensible global default for how
    often a house should speak up unprompted.
    """

    name: str
    trigger: TriggerFn
    message_template: str
    cooldown: Cooldown
    priority: RulePriority = RulePriority.MEDIUM
    event_types: frozenset[str] = frozenset()  # Empty → every event type
    cooldown_key: str | None = None  # Rules sharing a key share a cooldown

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ProactiveRule needs a name")
        if self.cooldown is None:
            raise ValueError(f"ProactiveRule '{self.name}' needs a cooldown")
        if isinstance(self.cooldown, dt.timedelta) and self.cooldown <= dt.timedelta(0):
            raise ValueError(f"ProactiveRule '{self.name}' cooldown must be positive")
        if not isinstance(self.cooldown, (dt.timedelta, CalendarDay)):
            raise TypeError(
                f"ProactiveRule '{self.name}' cooldown must be a timedelta or CALENDAR_DAY"
            )
        object.__setattr__(self, "event_types", frozenset(self.event_types))

    @property
    def effective_cooldown_key(self) -> str:
        return self.cooldown_key or self.name

    def accepts(self, event: "DeviceEvent") -> bool:
        return not self.event_types or event.type in self.event_types

    async def evaluate(self, event: "DeviceEvent", context: "ConversationContext") -> bool:
        result = self.trigger(event, context)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def render(self, event: "DeviceEvent", context: "ConversationContext") -> str:
        """Fill ``message_template`` from the event payload and context.

        Missing fields render as empty strings. A template that still cannot
        be formatted (format spec on a missing field, attribute lookup) is
        returned as written rather than failing a rule that already fired.
        """
        values = _TemplateValues(
            {
                "device_id": event.device_id,
                "event_type": event.type,
                "user_id": context.user_id,
                "location": context.user_state.location or "",
                **context.environment_state.to_dict(),
                **{k: v for k, v in context.short_term_memory.items() if isinstance(k, str)},
                **event.payload,
            }
        )
        try:
            return self.message_template.format_map(values)
        except (ValueError, TypeError, AttributeError, IndexError, KeyError) as e:
            logger.warning("Cannot render template for rule %s: %s", self.name, e)
            return self.message_template


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return ""


# ─── Handler contract ─────────────────────────────────────────────


class CapabilityHandler(ABC):
    """
    Base class for all capability handlers.

    Class attributes:
        name      unique handler name
        intents   intent names this handler answers; ``capability.*`` matches
                  every action of a capability
        rank      numeric priority, higher runs first in tie-breaks
        timeout   per-handler deadline override (seconds), None → dispatcher default
    """

    name: str = ""
    intents: frozenset[str] = frozenset()
    rank: int = 0
    timeout: float | None = None

    def supported_intents(self) -> frozenset[str]:
        return frozenset(self.intents)

    def priority(self) -> int:
        return self.rank

    def can_handle(self, intent: "Intent", context: "ConversationContext") -> bool:
        return True

    def proactive_rules(self) -> list[ProactiveRule]:
        return []

    @abstractmethod
    async def execute(
        self, intent: "Intent", context: "ConversationContext"
    ) -> PluginResponse:
        """Answer the intent. May raise; the dispatcher isolates failures."""
        ...

    def matches(self, intent_name: str) -> bool:
        for pattern in self.supported_intents():
            if pattern == intent_name:
                return True
            if pattern.endswith(".*") and intent_name.startswith(pattern[:-1]):
                return True
        return False

    def __repr__(self) -> str:
        return f"<Handler:{self.name} rank={self.priority()}>"
