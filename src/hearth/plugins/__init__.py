"""
Capability handlers ("plugins") — contract, registry, dispatcher.

Architecture:
  IntentResolver → PluginRegistry.candidates_for → PluginDispatcher (fan-out,
  per-handler deadline) → DialogResult
"""

from hearth.plugins.base import (
    CALENDAR_DAY,
    CapabilityHandler,
    PluginResponse,
    ProactiveRule,
    RulePriority,
)
from hearth.plugins.dispatcher import (
    FALLBACK_RESPONSE,
    DialogResult,
    HandlerOutcome,
    OutcomeStatus,
    PluginDispatcher,
)
from hearth.plugins.registry import PluginRegistry

__all__ = [
    # Contract
    "CALENDAR_DAY",
    "CapabilityHandler",
    "PluginResponse",
    "ProactiveRule",
    "RulePriority",
    # Registry / dispatch
    "DialogResult",
    "FALLBACK_RESPONSE",
    "HandlerOutcome",
    "OutcomeStatus",
    "PluginDispatcher",
    "PluginRegistry",
]
