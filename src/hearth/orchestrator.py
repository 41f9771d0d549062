"""
Dialog Orchestrator — one user or proactive turn, end to end.

User turn:
    context (get_or_create) → intent (resolve) → dispatch → context update
    → dialog.completed event → DialogResult

Proactive turn (called by the ProactiveRuleEngine once a rule has won its
cooldown slot):
    render template → synthesize proactive intent → dispatch → context
    update (system turn) → proactive.triggered event → DialogResult

The steps of a turn never overlap or reorder. The whole turn runs under
an outer deadline; once it passes the canonical fallback is returned no
matter how many handlers are still outstanding. ContextUnavailable is
the only error that escapes; every other failure degrades.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Mapping

from hearth.context.manager import ContextManager
from hearth.context.models import ContextDelta, ConversationContext, Turn, TurnRole
from hearth.core.logging import PipelineTimer
from hearth.core.metrics import metrics
from hearth.events.publisher import DIALOG_COMPLETED, PROACTIVE_TRIGGERED, EventPublisher
from hearth.intent.models import Intent
from hearth.intent.resolver import IntentResolver
from hearth.plugins.base import PluginResponse, ProactiveRule
from hearth.plugins.dispatcher import DialogResult, PluginDispatcher, fallback_result
from hearth.proactive.events import DeviceEvent

logger = logging.getLogger(__name__)

ORIGIN_USER = "user"
ORIGIN_PROACTIVE = "proactive"

# A handler's context_update may be a plain short-term patch, or a mapping
# keyed by these names for finer control.
_STRUCTURED_KEYS = frozenset(
    {
        "short_term",
        "long_term",
        "user_state",
        "environment",
        "devices_active",
        "devices_inactive",
        "device_attributes",
    }
)


class DialogOrchestrator:
    def __init__(
        self,
        context_manager: ContextManager,
        resolver: IntentResolver,
        dispatcher: PluginDispatcher,
        publisher: EventPublisher | None = None,
        *,
        turn_timeout: float = 8.0,
    ) -> None:
        self._contexts = context_manager
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._publisher = publisher
        self._turn_timeout = turn_timeout

    # ─── User turns ───────────────────────────────────────────────

    async def handle_turn(
        self,
        user_id: str,
        session_id: str,
        text: str,
        device_id: str | None = None,
    ) -> DialogResult:
        """Answer one utterance.

        Raises ContextUnavailable if the session's context cannot be read
        or written; nothing else propagates.
        """
        timer = PipelineTimer()
        started = time.monotonic()
        log_extra = {"user_id": user_id, "session_id": session_id}

        context = await self._contexts.get_or_create(user_id, session_id)
        if device_id:
            await self._contexts.bind_device(device_id, user_id, session_id)
        timer.mark("context")

        result = await self._respond(text, context, started, timer)

        delta = self._turn_delta(text, result, device_id)
        await self._contexts.update(context, delta)
        timer.mark("update")

        result = dataclasses.replace(
            result,
            user_id=user_id,
            session_id=session_id,
            origin=ORIGIN_USER,
            duration_ms=timer.total_ms(),
        )
        self._emit(DIALOG_COMPLETED, result)

        logger.info(
            "Turn %s → %s (%s)",
            result.intent.name,
            result.handler or "fallback",
            timer.summary(),
            extra={
                **log_extra,
                "intent": result.intent.name,
                "handler": result.handler,
                "duration_ms": result.duration_ms,
                "status": "fallback" if result.fallback else "ok",
            },
        )
        metrics.inc(
            "dialog.turns",
            labels={"origin": ORIGIN_USER, "fallback": str(result.fallback).lower()},
        )
        metrics.observe("dialog.turn.duration_ms", result.duration_ms)
        return result

    async def _respond(
        self,
        text: str,
        context: ConversationContext,
        started: float,
        timer: PipelineTimer,
    ) -> DialogResult:
        intent = Intent.unknown(text)
        try:
            intent = await asyncio.wait_for(
                self._resolver.resolve(text, context),
                timeout=self._remaining(started),
            )
            timer.mark("intent")
            result = await self._dispatcher.dispatch(
                intent, context, deadline=self._remaining(started)
            )
            timer.mark("dispatch")
        except asyncio.TimeoutError:
            logger.warning(
                "Turn deadline of %.1fs exceeded, using fallback",
                self._turn_timeout,
                extra={"session_id": context.session_id, "intent": intent.name},
            )
            metrics.inc("dialog.deadline_exceeded")
            return fallback_result(intent)

        if time.monotonic() - started > self._turn_timeout:
            # Handlers answered, but too late to be used
            metrics.inc("dialog.deadline_exceeded")
            return fallback_result(intent, result.outcomes)
        return result

    def _remaining(self, started: float) -> float:
        return max(0.0, self._turn_timeout - (time.monotonic() - started))

    # ─── Proactive turns ──────────────────────────────────────────

    async def handle_proactive(
        self,
        rule: ProactiveRule,
        event: DeviceEvent,
        context: ConversationContext,
    ) -> DialogResult:
        """Deliver a fired rule as a system-initiated turn."""
        timer = PipelineTimer()
        started = time.monotonic()
        message = rule.render(event, context)
        intent = Intent.proactive(
            rule.name,
            {"device_id": event.device_id, "event_type": event.type, **event.payload},
            message,
        )

        result = await self._dispatcher.dispatch(
            intent, context, deadline=self._remaining(started)
        )
        timer.mark("dispatch")
        if result.fallback:
            # No handler took the rule: the rendered template is the answer
            result = dataclasses.replace(
                result,
                response=PluginResponse(speech=message, display_text=message),
                handler=None,
            )

        now = time.time()
        update = self._update_delta(result.context_update)
        delta = dataclasses.replace(
            update,
            turns=(
                Turn(
                    role=TurnRole.SYSTEM.value,
                    text=result.response.speech,
                    intent=intent.name,
                    confidence=result.response.confidence,
                    timestamp=now,
                    metadata={
                        "rule": rule.name,
                        "event_id": event.event_id,
                        "device_id": event.device_id,
                    },
                ),
            ),
            timestamp=now,
        )
        await self._contexts.update(context, delta)
        timer.mark("update")

        result = dataclasses.replace(
            result,
            user_id=context.user_id,
            session_id=context.session_id,
            origin=ORIGIN_PROACTIVE,
            duration_ms=timer.total_ms(),
        )
        self._emit(
            PROACTIVE_TRIGGERED,
            result,
            rule=rule.name,
            event_id=event.event_id,
            device_id=event.device_id,
        )
        metrics.inc(
            "dialog.turns",
            labels={"origin": ORIGIN_PROACTIVE, "fallback": str(result.fallback).lower()},
        )
        logger.debug("Proactive turn %s: %s", rule.name, timer.summary())
        return result

    # ─── Context deltas ───────────────────────────────────────────

    def _turn_delta(
        self, text: str, result: DialogResult, device_id: str | None
    ) -> ContextDelta:
        now = time.time()
        turns = (
            Turn(
                role=TurnRole.USER.value,
                text=text,
                intent=result.intent.name,
                confidence=result.intent.confidence,
                timestamp=now,
                metadata={"device_id": device_id} if device_id else {},
            ),
            Turn(
                role=TurnRole.ASSISTANT.value,
                text=result.response.speech,
                intent=result.intent.name,
                confidence=result.response.confidence,
                timestamp=now,
                metadata={"handler": result.handler} if result.handler else {},
            ),
        )
        update = self._update_delta(result.context_update)
        return dataclasses.replace(update, turns=turns, timestamp=now)

    @staticmethod
    def _update_delta(update: Mapping[str, Any]) -> ContextDelta:
        if not update:
            return ContextDelta()
        if not set(update) <= _STRUCTURED_KEYS:
            return ContextDelta(short_term=dict(update))
        return ContextDelta(
            short_term=dict(update.get("short_term") or {}),
            long_term=dict(update.get("long_term") or {}),
            user_state=dict(update.get("user_state") or {}),
            environment=dict(update.get("environment") or {}),
            devices_active=frozenset(update.get("devices_active") or ()),
            devices_inactive=frozenset(update.get("devices_inactive") or ()),
            device_attributes=dict(update.get("device_attributes") or {}),
        )

    # ─── Events ───────────────────────────────────────────────────

    def _emit(self, kind: str, result: DialogResult, **extra: Any) -> None:
        if self._publisher is None:
            return
        payload = {
            "user_id": result.user_id,
            "session_id": result.session_id,
            "origin": result.origin,
            "intent": result.intent.name,
            "intent_confidence": result.intent.confidence,
            "intent_source": result.intent.source,
            "handler": result.handler,
            "confidence": result.confidence,
            "fallback": result.fallback,
            "actions": len(result.actions),
            "duration_ms": result.duration_ms,
            "handlers": [o.to_dict() for o in result.outcomes],
            **extra,
        }
        self._publisher.emit(kind, payload)
