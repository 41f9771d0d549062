"""
Plugin Registry — register handlers, find candidates for an intent.

Explicitly constructed and passed to whoever needs it (dispatcher,
proactive engine). There is no process-wide default registry, so tests
can build as many isolated ones as they like.
"""

from __future__ import annotations

import logging

from hearth.context.models import ConversationContext
from hearth.intent.models import Intent
from hearth.plugins.base import CapabilityHandler, ProactiveRule

logger = logging.getLogger(__name__)


class PluginRegistry:
    """Ordered set of capability handlers."""

    def __init__(self, handlers: list[CapabilityHandler] | None = None):
        self._handlers: dict[str, CapabilityHandler] = {}  # insertion order = registration order
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: CapabilityHandler) -> None:
        """Register a handler. Names must be unique."""
        if not handler.name:
            raise ValueError(f"Handler must have a name: {handler!r}")
        if handler.name in self._handlers:
            raise ValueError(f"Handler already registered: {handler.name}")
        self._handlers[handler.name] = handler
        logger.info(
            "Registered handler: %s (intents=%s, priority=%d)",
            handler.name,
            sorted(handler.supported_intents()),
            handler.priority(),
        )

    def unregister(self, name: str) -> CapabilityHandler | None:
        return self._handlers.pop(name, None)

    def get(self, name: str) -> CapabilityHandler | None:
        return self._handlers.get(name)

    def handlers(self) -> list[CapabilityHandler]:
        return list(self._handlers.values())

    def names(self) -> list[str]:
        return list(self._handlers.keys())

    def candidates_for(
        self, intent: Intent, context: ConversationContext | None = None
    ) -> list[CapabilityHandler]:
        """Handlers that accept *intent*, highest priority first.

        Ties keep registration order (sorted() is stable). A handler whose
        can_handle() raises is skipped, not fatal.
        """
        matched: list[CapabilityHandler] = []
        for handler in self._handlers.values():
            if not handler.matches(intent.name):
                continue
            if context is not None:
                try:
                    if not handler.can_handle(intent, context):
                        continue
                except Exception as e:
                    logger.warning("can_handle failed for %s: %s", handler.name, e)
                    continue
            matched.append(handler)
        return sorted(matched, key=lambda h: h.priority(), reverse=True)

    def proactive_rules(self) -> list[tuple[CapabilityHandler, ProactiveRule]]:
        """Every handler's rules, paired with their owner. Rule names must be unique."""
        seen: dict[str, str] = {}
        rules: list[tuple[CapabilityHandler, ProactiveRule]] = []
        for handler in self._handlers.values():
            for rule in handler.proactive_rules():
                if rule.name in seen:
                    raise ValueError(
                        f"Duplicate proactive rule '{rule.name}' "
                        f"(from {handler.name} and {seen[rule.name]})"
                    )
                seen[rule.name] = handler.name
                rules.append((handler, rule))
        return rules

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers
