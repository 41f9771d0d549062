"""
Plugin Dispatcher — concurrent fan-out to candidate handlers.

For one resolved intent:
  1. Ask the registry for candidates (priority order).
  2. None → canonical fallback, no handler is called.
  3. Otherwise run every candidate concurrently. Each gets its own
     deadline and its own snapshot of the context, so a slow or broken
     handler can neither stall the turn nor leave partial writes behind.
  4. Aggregate: primary = highest confidence among successes (ties keep
     registry order); actions from every success are concatenated; only
     the primary's context_update survives.
  5. Every candidate failed → the same canonical fallback.

The whole fan-out also runs under an outer turn deadline; anything
still outstanding then is cancelled and counted as timed out.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from hearth.context.models import ConversationContext
from hearth.core.errors import NoCandidateHandler, PluginExecutionFailed, PluginTimeout
from hearth.core.metrics import metrics
from hearth.intent.models import Intent
from hearth.plugins.base import CapabilityHandler, PluginResponse
from hearth.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = PluginResponse(
    speech="죄송해요, 요청을 이해하거나 처리하지 못했어요. 다시 한 번 말씀해 주시겠어요?",
    display_text="Sorry, I couldn't understand or process that. Please try again.",
    confidence=0.0,
    suggestions=("다시 말씀해 주세요",),
)


class OutcomeStatus(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class HandlerOutcome:
    handler: str
    status: str
    duration_ms: int = 0
    response: PluginResponse | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK.value

    def to_dict(self) -> dict:
        return {
            "handler": self.handler,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "confidence": self.response.confidence if self.response else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class DialogResult:
    """Outcome of one turn (user or proactive)."""

    intent: Intent
    response: PluginResponse
    actions: tuple[dict[str, Any], ...] = ()
    handler: str | None = None  # Primary handler, None on fallback
    outcomes: tuple[HandlerOutcome, ...] = ()
    fallback: bool = False
    context_update: Mapping[str, Any] = field(default_factory=dict)
    user_id: str = ""
    session_id: str = ""
    origin: str = "user"  # user | proactive
    duration_ms: int = 0

    @property
    def confidence(self) -> float:
        return self.response.confidence

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "origin": self.origin,
            "intent": self.intent.to_dict(),
            "response": self.response.to_dict(),
            "actions": list(self.actions),
            "handler": self.handler,
            "fallback": self.fallback,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "duration_ms": self.duration_ms,
        }


def fallback_result(
    intent: Intent, outcomes: tuple[HandlerOutcome, ...] = ()
) -> DialogResult:
    return DialogResult(
        intent=intent,
        response=FALLBACK_RESPONSE,
        outcomes=outcomes,
        fallback=True,
    )


class PluginDispatcher:
    def __init__(
        self,
        registry: PluginRegistry,
        *,
        handler_timeout: float = 3.0,
        turn_timeout: float = 8.0,
        max_concurrency: int = 8,
    ) -> None:
        self.registry = registry
        self.handler_timeout = handler_timeout
        self.turn_timeout = turn_timeout
        self.max_concurrency = max(1, max_concurrency)

    async def dispatch(
        self,
        intent: Intent,
        context: ConversationContext,
        *,
        deadline: float | None = None,
    ) -> DialogResult:
        """Run the candidates for *intent* and aggregate their answers.

        ``deadline`` (seconds) tightens the outer turn deadline when the
        caller has already spent part of its budget.
        """
        candidates = self.registry.candidates_for(intent, context)
        if not candidates:
            err = NoCandidateHandler(intent.name)
            logger.info(
                "%s, using fallback",
                err,
                extra={"intent": intent.name, "session_id": context.session_id},
            )
            metrics.inc("dispatch.no_candidate")
            return fallback_result(intent)

        outer = self.turn_timeout if deadline is None else min(deadline, self.turn_timeout)
        outcomes = await self._fan_out(candidates, intent, context, max(0.0, outer))
        return self._aggregate(intent, outcomes)

    # ─── Fan-out ──────────────────────────────────────────────────

    async def _fan_out(
        self,
        candidates: list[CapabilityHandler],
        intent: Intent,
        context: ConversationContext,
        outer_timeout: float,
    ) -> list[HandlerOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(
                self._run_one(handler, intent, context, semaphore),
                name=f"handler-{handler.name}",
            )
            for handler in candidates
        ]

        started = time.monotonic()
        _, pending = await asyncio.wait(tasks, timeout=outer_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: list[HandlerOutcome] = []
        for handler, task in zip(candidates, tasks):
            if task in pending or task.cancelled():
                err = PluginTimeout(handler.name, outer_timeout)
                logger.warning(
                    "%s (turn deadline)", err, extra={"handler": handler.name}
                )
                outcome = HandlerOutcome(
                    handler=handler.name,
                    status=OutcomeStatus.TIMEOUT.value,
                    duration_ms=round((time.monotonic() - started) * 1000),
                    error=str(err),
                )
            else:
                outcome = task.result()
            metrics.inc(
                "dispatch.handler.outcome",
                labels={"handler": handler.name, "status": outcome.status},
            )
            metrics.observe(
                "dispatch.handler.duration_ms",
                outcome.duration_ms,
                labels={"handler": handler.name},
            )
            outcomes.append(outcome)
        return outcomes

    async def _run_one(
        self,
        handler: CapabilityHandler,
        intent: Intent,
        context: ConversationContext,
        semaphore: asyncio.Semaphore,
    ) -> HandlerOutcome:
        timeout = handler.timeout if handler.timeout is not None else self.handler_timeout
        # Private copy: whatever the handler does to it never reaches the store
        snapshot = copy.deepcopy(context)

        async with semaphore:
            started = time.monotonic()
            try:
                response = await asyncio.wait_for(
                    handler.execute(intent, snapshot), timeout=timeout
                )
            except asyncio.TimeoutError:
                err: Exception = PluginTimeout(handler.name, timeout)
                logger.warning("%s", err, extra={"handler": handler.name})
                return HandlerOutcome(
                    handler=handler.name,
                    status=OutcomeStatus.TIMEOUT.value,
                    duration_ms=_elapsed_ms(started),
                    error=str(err),
                )
            except Exception as e:
                err = PluginExecutionFailed(handler.name, e)
                logger.warning(
                    "%s", err, exc_info=True, extra={"handler": handler.name}
                )
                return HandlerOutcome(
                    handler=handler.name,
                    status=OutcomeStatus.FAILED.value,
                    duration_ms=_elapsed_ms(started),
                    error=str(err),
                )

        if not isinstance(response, PluginResponse):
            err = PluginExecutionFailed(
                handler.name, TypeError(f"returned {type(response).__name__}")
            )
            logger.warning("%s", err, extra={"handler": handler.name})
            return HandlerOutcome(
                handler=handler.name,
                status=OutcomeStatus.FAILED.value,
                duration_ms=_elapsed_ms(started),
                error=str(err),
            )

        return HandlerOutcome(
            handler=handler.name,
            status=OutcomeStatus.OK.value,
            duration_ms=_elapsed_ms(started),
            response=response,
        )

    # ─── Aggregation ──────────────────────────────────────────────

    @staticmethod
    def _aggregate(intent: Intent, outcomes: list[HandlerOutcome]) -> DialogResult:
        successes = [o for o in outcomes if o.ok and o.response is not None]
        if not successes:
            logger.info(
                "All %d handler(s) failed for %s, using fallback",
                len(outcomes),
                intent.name,
                extra={"intent": intent.name},
            )
            metrics.inc("dispatch.all_failed")
            return fallback_result(intent, tuple(outcomes))

        # Strictly greater keeps the earlier (higher priority) handler on ties
        primary = successes[0]
        for outcome in successes[1:]:
            if outcome.response.confidence > primary.response.confidence:
                primary = outcome

        actions: list[dict[str, Any]] = []
        for outcome in successes:
            actions.extend(outcome.response.actions)

        discarded = [o.handler for o in successes if o is not primary and o.response.context_update]
        if discarded:
            logger.debug("Discarding secondary context updates from %s", discarded)

        return DialogResult(
            intent=intent,
            response=primary.response,
            actions=tuple(actions),
            handler=primary.handler,
            outcomes=tuple(outcomes),
            fallback=False,
            context_update=dict(primary.response.context_update),
        )


def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)
