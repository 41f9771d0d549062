"""Intent — the resolved meaning of one utterance."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

UNKNOWN_INTENT = "unknown"
PROACTIVE_PREFIX = "proactive."


class IntentSource(str, Enum):
    NLU = "nlu"  # External NLU service
    LOCAL = "local"  # Local keyword matcher (NLU degraded)
    FALLBACK = "fallback"  # Nothing matched
    SYSTEM = "system"  # Synthesized by the proactive engine


@dataclass(frozen=True)
class Intent:
    """Immutable once created. ``parameters`` is exposed read-only."""

    name: str
    confidence: float = 0.0
    parameters: Mapping[str, Any] = field(default_factory=dict)
    original_text: str = ""
    source: str = IntentSource.NLU.value

    def __post_init__(self) -> None:
        confidence = min(1.0, max(0.0, float(self.confidence)))
        object.__setattr__(self, "confidence", confidence)
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @property
    def capability(self) -> str:
        """``weather`` for ``weather.query``."""
        return self.name.split(".", 1)[0]

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_INTENT

    @property
    def is_proactive(self) -> bool:
        return self.name.startswith(PROACTIVE_PREFIX)

    @classmethod
    def unknown(cls, text: str = "", confidence: float = 0.0) -> Intent:
        return cls(
            name=UNKNOWN_INTENT,
            confidence=confidence,
            original_text=text,
            source=IntentSource.FALLBACK.value,
        )

    @classmethod
    def proactive(cls, rule_name: str, parameters: Mapping[str, Any], text: str) -> Intent:
        return cls(
            name=f"{PROACTIVE_PREFIX}{rule_name}",
            confidence=1.0,
            parameters=parameters,
            original_text=text,
            source=IntentSource.SYSTEM.value,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "confidence": self.confidence,
            "parameters": dict(self.parameters),
            "original_text": self.original_text,
            "source": self.source,
        }
