"""Weather handler using the Open-Meteo API (free, no API key required).

Answers ``weather.query`` with current conditions and contributes the
morning briefing rule: the first wake-up event of the day gets a short
weather summary. Location comes from the intent (``location`` entity),
then the user's profile, then the configured default city.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

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

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
WEATHER_URL = "https://api.open-meteo.com/v1/forecast"

# WMO weather codes → spoken descriptions
WMO_CODES = {
    0: "맑음",
    1: "대체로 맑음",
    2: "구름 조금",
    3: "흐림",
    45: "안개",
    48: "짙은 안개",
    51: "약한 이슬비",
    53: "이슬비",
    55: "강한 이슬비",
    61: "약한 비",
    63: "비",
    65: "강한 비",
    71: "약한 눈",
    73: "눈",
    75: "많은 눈",
    77: "싸락눈",
    80: "약한 소나기",
    81: "소나기",
    82: "강한 소나기",
    85: "약한 눈 소나기",
    86: "강한 눈 소나기",
    95: "뇌우",
    96: "약한 우박을 동반한 뇌우",
    99: "강한 우박을 동반한 뇌우",
}

WAKE_EVENTS = frozenset({"alarm.dismissed", "routine.wake"})


class WeatherHandler(CapabilityHandler):
    name = "weather"
    intents = frozenset({"weather.query", "proactive.morning_briefing"})
    rank = 10

    def __init__(
        self,
        default_location: str = "Seoul",
        *,
        client: httpx.AsyncClient | None = None,
        utc_offset_hours: float = 9.0,
    ) -> None:
        self._default_location = default_location
        self._client = client
        self._utc_offset = utc_offset_hours

    async def execute(self, intent: Intent, context: ConversationContext) -> PluginResponse:
        location = self._location(intent, context)
        try:
            geo = await self._geocode(location)
            if not geo:
                return PluginResponse(
                    speech=f"{location}의 위치를 찾지 못했어요.",
                    confidence=0.3,
                    suggestions=("서울 날씨 알려줘",),
                )
            current = await self._current(geo)
        except httpx.HTTPError as e:
            logger.error("Error fetching weather for %s: %s", location, e)
            return PluginResponse(
                speech="지금은 날씨 정보를 가져올 수 없어요. 잠시 후에 다시 물어봐 주세요.",
                confidence=0.2,
            )

        temp = current.get("temperature_2m")
        humidity = current.get("relative_humidity_2m")
        feels_like = current.get("apparent_temperature")
        condition = WMO_CODES.get(current.get("weather_code", 0), "알 수 없음")
        label = geo["name"]

        if intent.is_proactive:
            speech = f"좋은 아침이에요. 오늘 {label} 날씨는 {condition}, 기온은 {temp}도예요."
        else:
            speech = (
                f"{label}은 지금 {condition}이고 기온은 {temp}도, "
                f"체감 {feels_like}도예요. 습도는 {humidity}%예요."
            )

        return PluginResponse(
            speech=speech,
            display_text=f"{label}: {condition} | {temp}°C (feels like {feels_like}°C) | {humidity}%",
            confidence=0.9,
            context_update={
                "short_term": {
                    "last_weather": {
                        "location": label,
                        "condition": condition,
                        "temperature": temp,
                    }
                }
            },
            suggestions=("내일 날씨는?",),
        )

    def proactive_rules(self) -> list[ProactiveRule]:
        return [
            ProactiveRule(
                name="morning_briefing",
                trigger=self._is_wake_up,
                message_template="좋은 아침이에요. 오늘 날씨를 알려드릴게요.",
                cooldown=CALENDAR_DAY,
                priority=RulePriority.MEDIUM,
                event_types=WAKE_EVENTS,
            )
        ]

    def _is_wake_up(self, event, context: ConversationContext) -> bool:
        return in_hours(local_hour(event.timestamp, self._utc_offset), 5, 11)

    def _location(self, intent: Intent, context: ConversationContext) -> str:
        if intent.parameters.get("location"):
            return str(intent.parameters["location"])
        profile = context.long_term_memory.get("profile") or {}
        return profile.get("city") or self._default_location

    # ─── Open-Meteo ───────────────────────────────────────────────

    async def _get(self, url: str, params: dict[str, Any]) -> dict:
        if self._client is not None:
            resp = await self._client.get(url, params=params)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()

    async def _geocode(self, location: str) -> dict | None:
        """Resolve a location name to lat/lon coordinates."""
        data = await self._get(
            GEOCODE_URL, {"name": location, "count": 1, "language": "ko"}
        )
        results = data.get("results") or []
        if not results:
            return None
        r = results[0]
        return {
            "name": r.get("name", location),
            "lat": r["latitude"],
            "lon": r["longitude"],
            "timezone": r.get("timezone", "auto"),
        }

    async def _current(self, geo: dict) -> dict:
        data = await self._get(
            WEATHER_URL,
            {
                "latitude": geo["lat"],
                "longitude": geo["lon"],
                "current": "temperature_2m,relative_humidity_2m,apparent_temperature,weather_code",
                "timezone": geo["timezone"],
            },
        )
        return data.get("current", {})
