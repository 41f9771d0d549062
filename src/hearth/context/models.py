"""
Context Models — conversational state for a (user_id, session_id) pair.

ConversationContext is the unit stored in both tiers. It is a plain
mutable dataclass, but only the ContextManager mutates it; every other
component treats it as read-only.

ContextDelta is what the rest of the pipeline hands to the manager:
new turns plus memory/state patches. Deltas are applied to the latest
stored state under the per-session lock, never to a stale copy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

HISTORY_LIMIT = 100


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"  # Proactive, system-initiated turns


@dataclass(frozen=True)
class ContextKey:
    """Composite address of a context. A context is never looked up by anything else."""

    user_id: str
    session_id: str

    def __str__(self) -> str:
        return f"{self.user_id}:{self.session_id}"


@dataclass(frozen=True)
class Turn:
    """One entry in a context's history."""

    role: str = TurnRole.USER.value
    text: str = ""
    intent: str | None = None
    confidence: float | None = None
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "text": self.text,
            "intent": self.intent,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Turn:
        return cls(
            role=data.get("role", TurnRole.USER.value),
            text=data.get("text", ""),
            intent=data.get("intent"),
            confidence=data.get("confidence"),
            timestamp=data.get("timestamp", time.time()),
            metadata=data.get("metadata", {}),
        )


@dataclass
class UserState:
    activity: str | None = None  # "sleeping", "cooking", "away", ...
    mood: str | None = None
    location: str | None = None  # Room name
    recent_topics: list[str] = field(default_factory=list)
    language: str | None = None

    def to_dict(self) -> dict:
        return {
            "activity": self.activity,
            "mood": self.mood,
            "location": self.location,
            "recent_topics": list(self.recent_topics),
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict) -> UserState:
        return cls(
            activity=data.get("activity"),
            mood=data.get("mood"),
            location=data.get("location"),
            recent_topics=list(data.get("recent_topics", [])),
            language=data.get("language"),
        )


@dataclass
class EnvironmentState:
    temperature: float | None = None  # °C
    humidity: float | None = None  # %
    light_level: float | None = None  # lux
    noise_level: float | None = None  # dB
    last_motion_at: float | None = None

    def to_dict(self) -> dict:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "light_level": self.light_level,
            "noise_level": self.noise_level,
            "last_motion_at": self.last_motion_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EnvironmentState:
        return cls(
            temperature=data.get("temperature"),
            humidity=data.get("humidity"),
            light_level=data.get("light_level"),
            noise_level=data.get("noise_level"),
            last_motion_at=data.get("last_motion_at"),
        )


@dataclass
class DeviceState:
    active_devices: set[str] = field(default_factory=set)
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "active_devices": sorted(self.active_devices),
            "attributes": self.attributes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DeviceState:
        return cls(
            active_devices=set(data.get("active_devices", [])),
            attributes=dict(data.get("attributes", {})),
        )


@dataclass
class ConversationContext:
    """Durable-plus-cached conversational state for one session."""

    user_id: str
    session_id: str
    history: list[Turn] = field(default_factory=list)
    short_term_memory: dict[str, Any] = field(default_factory=dict)
    long_term_memory: dict[str, Any] = field(default_factory=dict)
    user_state: UserState = field(default_factory=UserState)
    environment_state: EnvironmentState = field(default_factory=EnvironmentState)
    device_state: DeviceState = field(default_factory=DeviceState)
    created_at: float = field(default_factory=time.time)
    last_interaction_at: float = field(default_factory=time.time)
    expires_at: float = 0.0
    version: int = 0  # Bumped on every update; durable writes never go backwards
    # Enrichment bookkeeping: pattern data + which sources answered last load.
    # Not part of the persisted record.
    patterns: dict[str, Any] = field(default_factory=dict)
    enrichment_sources: dict[str, bool] = field(default_factory=dict)

    @property
    def key(self) -> ContextKey:
        return ContextKey(self.user_id, self.session_id)

    def recent_turns(self, n: int = 5) -> list[Turn]:
        return self.history[-n:] if n > 0 else []

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "history": [t.to_dict() for t in self.history],
            "short_term_memory": self.short_term_memory,
            "long_term_memory": self.long_term_memory,
            "user_state": self.user_state.to_dict(),
            "environment_state": self.environment_state.to_dict(),
            "device_state": self.device_state.to_dict(),
            "created_at": self.created_at,
            "last_interaction_at": self.last_interaction_at,
            "expires_at": self.expires_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConversationContext:
        history = [Turn.from_dict(t) for t in data.get("history", [])]
        return cls(
            user_id=data["user_id"],
            session_id=data["session_id"],
            history=history[-HISTORY_LIMIT:],
            short_term_memory=dict(data.get("short_term_memory", {})),
            long_term_memory=dict(data.get("long_term_memory", {})),
            user_state=UserState.from_dict(data.get("user_state", {})),
            environment_state=EnvironmentState.from_dict(
                data.get("environment_state", {})
            ),
            device_state=DeviceState.from_dict(data.get("device_state", {})),
            created_at=data.get("created_at", time.time()),
            last_interaction_at=data.get("last_interaction_at", time.time()),
            expires_at=data.get("expires_at", 0.0),
            version=data.get("version", 0),
        )

    @classmethod
    def new(cls, user_id: str, session_id: str, ttl_seconds: int) -> ConversationContext:
        now = time.time()
        return cls(
            user_id=user_id,
            session_id=session_id,
            created_at=now,
            last_interaction_at=now,
            expires_at=now + ttl_seconds,
        )


@dataclass(frozen=True)
class ContextDelta:
    """A change to apply to a context.

    Fields left at their defaults are no-ops. Patches on user/environment
    state only touch the keys they name.
    """

    turns: tuple[Turn, ...] = ()
    short_term: dict[str, Any] = field(default_factory=dict)
    long_term: dict[str, Any] = field(default_factory=dict)
    user_state: dict[str, Any] = field(default_factory=dict)
    environment: dict[str, Any] = field(default_factory=dict)
    devices_active: frozenset[str] = frozenset()
    devices_inactive: frozenset[str] = frozenset()
    device_attributes: dict[str, Any] = field(default_factory=dict)
    timestamp: float | None = None  # Defaults to "now" at apply time

    def is_empty(self) -> bool:
        return not (
            self.turns
            or self.short_term
            or self.long_term
            or self.user_state
            or self.environment
            or self.devices_active
            or self.devices_inactive
            or self.device_attributes
        )


def merge_long_term(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Accumulative merge: lists extend, dicts merge recursively, scalars overwrite.

    Nothing already present is dropped.
    """
    merged = dict(existing)
    for key, value in incoming.items():
        current = merged.get(key)
        if isinstance(current, list) and isinstance(value, list):
            merged[key] = current + [v for v in value if v not in current]
        elif isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_long_term(current, value)
        else:
            merged[key] = value
    return merged
