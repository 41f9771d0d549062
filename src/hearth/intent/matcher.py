"""
Local intent matcher — keyword fallback for when the NLU service is down.

Deliberately small: a fixed set of unambiguous patterns (Korean and
English) for the handful of intents the house must still answer
without the network. Confidence is capped at LOCAL_CONFIDENCE_CAP so a
local match never outranks a real NLU result downstream.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

from hearth.intent.models import Intent, IntentSource

LOCAL_CONFIDENCE_CAP = 0.7

ROOMS = {
    "거실": "living_room",
    "안방": "bedroom",
    "침실": "bedroom",
    "주방": "kitchen",
    "부엌": "kitchen",
    "욕실": "bathroom",
    "화장실": "bathroom",
    "living room": "living_room",
    "bedroom": "bedroom",
    "kitchen": "kitchen",
    "bathroom": "bathroom",
}

DEVICES = {
    "조명": "light",
    "불": "light",
    "전등": "light",
    "에어컨": "air_conditioner",
    "난방": "heater",
    "보일러": "heater",
    "커튼": "curtain",
    "tv": "tv",
    "티비": "tv",
    "light": "light",
    "lights": "light",
    "air conditioner": "air_conditioner",
    "heater": "heater",
    "curtain": "curtain",
    "curtains": "curtain",
}

_DEVICE_RE = re.compile(
    "|".join(sorted((re.escape(k) for k in DEVICES), key=len, reverse=True))
)
_ROOM_RE = re.compile(
    "|".join(sorted((re.escape(k) for k in ROOMS), key=len, reverse=True))
)


def _device_entities(text: str) -> dict[str, str]:
    entities: dict[str, str] = {}
    if m := _DEVICE_RE.search(text):
        entities["device"] = DEVICES[m.group(0)]
    if m := _ROOM_RE.search(text):
        entities["room"] = ROOMS[m.group(0)]
    return entities


@dataclass(frozen=True)
class LocalPattern:
    intent: str
    pattern: re.Pattern
    confidence: float
    entities: Callable[[str], dict[str, str]] = field(default=lambda _text: {})


DEFAULT_PATTERNS: tuple[LocalPattern, ...] = (
    LocalPattern(
        "device.on",
        re.compile(r"(켜|틀어|on\b|turn on|switch on|open)"),
        0.7,
        _device_entities,
    ),
    LocalPattern(
        "device.off",
        re.compile(r"(꺼|끄|off\b|turn off|switch off|close)"),
        0.7,
        _device_entities,
    ),
    LocalPattern(
        "weather.query",
        re.compile(r"(날씨|비\s*와|비가|눈\s*와|weather|forecast|rain)"),
        0.65,
    ),
    LocalPattern(
        "environment.query",
        re.compile(r"(실내\s*온도|온도|습도|temperature|humidity)"),
        0.6,
    ),
    LocalPattern(
        "greeting.hello",
        re.compile(r"^(안녕|하이|좋은 아침|hi\b|hello|hey|good morning)"),
        0.6,
    ),
)


class LocalIntentMatcher:
    """First matching pattern wins; device patterns also need a device word."""

    def __init__(self, patterns: tuple[LocalPattern, ...] = DEFAULT_PATTERNS):
        self._patterns = patterns

    def match(self, text: str) -> Intent | None:
        normalized = text.strip().lower()
        if not normalized:
            return None

        for p in self._patterns:
            if not p.pattern.search(normalized):
                continue
            entities = p.entities(normalized)
            if p.intent.startswith("device.") and "device" not in entities:
                continue
            return Intent(
                name=p.intent,
                confidence=min(p.confidence, LOCAL_CONFIDENCE_CAP),
                parameters=entities,
                original_text=text,
                source=IntentSource.LOCAL.value,
            )
        return None
