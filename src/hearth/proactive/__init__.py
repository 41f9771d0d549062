"""Proactive dialog — device events, rule cooldowns, the rule engine."""

from hearth.proactive.cooldown import CooldownTracker, RuleState
from hearth.proactive.engine import ProactiveRuleEngine
from hearth.proactive.events import DeviceEvent

__all__ = [
    "CooldownTracker",
    "DeviceEvent",
    "ProactiveRuleEngine",
    "RuleState",
]
