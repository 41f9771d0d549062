"""
Built-in capability handlers.

    weather          weather.query, morning briefing
    device_control   device.on / device.off / device.control, night light
    climate          environment.query, heat and humidity alerts
    greeting         greeting.hello, morning greeting
"""

from __future__ import annotations

import httpx

from hearth.handlers.climate import ClimateHandler
from hearth.handlers.device_control import DeviceControlHandler
from hearth.handlers.greeting import GreetingHandler
from hearth.handlers.weather import WeatherHandler
from hearth.plugins.base import CapabilityHandler


def default_handlers(
    *,
    utc_offset_hours: float = 9.0,
    default_location: str = "Seoul",
    http_client: httpx.AsyncClient | None = None,
) -> list[CapabilityHandler]:
    return [
        WeatherHandler(
            default_location,
            client=http_client,
            utc_offset_hours=utc_offset_hours,
        ),
        DeviceControlHandler(utc_offset_hours=utc_offset_hours),
        ClimateHandler(),
        GreetingHandler(utc_offset_hours=utc_offset_hours),
    ]


__all__ = [
    "ClimateHandler",
    "DeviceControlHandler",
    "GreetingHandler",
    "WeatherHandler",
    "default_handlers",
]
