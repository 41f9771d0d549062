"""
Cooldown tracking for proactive rules.

One state machine per (cooldown key, user):

    IDLE ──trigger──▶ TRIGGERED ──fired──▶ COOLDOWN ──window passes──▶ IDLE

try_acquire() is the IDLE → TRIGGERED edge. It checks and records in a
single synchronous step (no await in between), so two deliveries of the
same event racing through the engine can never both fire the rule.
"""

from __future__ import annotations

import datetime as dt
import logging
from enum import Enum

from hearth.plugins.base import CalendarDay, ProactiveRule

logger = logging.getLogger(__name__)


class RuleState(str, Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    COOLDOWN = "cooldown"


class CooldownTracker:
    def __init__(self, utc_offset_hours: float = 9.0) -> None:
        self._tz = dt.timezone(dt.timedelta(hours=utc_offset_hours))
        self._fired: dict[tuple[str, str], dt.datetime] = {}
        self._in_flight: set[tuple[str, str]] = set()

    def state(self, rule: ProactiveRule, user_id: str, now: dt.datetime) -> RuleState:
        slot = (rule.effective_cooldown_key, user_id)
        if slot in self._in_flight:
            return RuleState.TRIGGERED
        last = self._fired.get(slot)
        if last is not None and self._cooling(rule, last, now):
            return RuleState.COOLDOWN
        return RuleState.IDLE

    def try_acquire(self, rule: ProactiveRule, user_id: str, now: dt.datetime) -> bool:
        """IDLE → TRIGGERED. False if the rule is triggered or cooling down."""
        if self.state(rule, user_id, now) is not RuleState.IDLE:
            return False
        slot = (rule.effective_cooldown_key, user_id)
        self._in_flight.add(slot)
        # The window starts now, not when the turn finishes
        self._fired[slot] = now
        return True

    def complete(self, rule: ProactiveRule, user_id: str) -> None:
        """TRIGGERED → COOLDOWN."""
        self._in_flight.discard((rule.effective_cooldown_key, user_id))

    def reset(self, rule: ProactiveRule | None = None, user_id: str | None = None) -> None:
        if rule is None:
            self._fired.clear()
            self._in_flight.clear()
            return
        slot = (rule.effective_cooldown_key, user_id or "")
        self._fired.pop(slot, None)
        self._in_flight.discard(slot)

    def prune(self, now: dt.datetime, max_age: dt.timedelta) -> int:
        """Forget firings older than *max_age*; pass at least the longest rule window."""
        stale = [slot for slot, at in self._fired.items() if now - at > max_age]
        for slot in stale:
            if slot not in self._in_flight:
                del self._fired[slot]
        return len(stale)

    def _cooling(self, rule: ProactiveRule, last: dt.datetime, now: dt.datetime) -> bool:
        if isinstance(rule.cooldown, CalendarDay):
            return last.astimezone(self._tz).date() == now.astimezone(self._tz).date()
        return now - last < rule.cooldown
