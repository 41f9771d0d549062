"""Helpers shared by the built-in handlers' proactive rules."""

from __future__ import annotations

import datetime as dt


def local_hour(timestamp: float, utc_offset_hours: float) -> int:
    tz = dt.timezone(dt.timedelta(hours=utc_offset_hours))
    return dt.datetime.fromtimestamp(timestamp, tz).hour


def in_hours(hour: int, start: int, end: int) -> bool:
    """True if *hour* is in [start, end); wraps past midnight when start > end."""
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def number(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
