"""
Intent Resolver — NLU first, local matcher second, ``unknown`` last.

resolve() never raises. NLU failures are logged as
IntentResolutionDegraded and the local matcher takes over; if that
finds nothing either, the result is Intent("unknown", 0.0) and the
dispatcher's fallback answers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from hearth.context.models import ConversationContext
from hearth.core.errors import IntentResolutionDegraded, NLUError
from hearth.core.metrics import metrics
from hearth.intent.matcher import LocalIntentMatcher
from hearth.intent.models import Intent, IntentSource
from hearth.intent.nlu import NLUResult

logger = logging.getLogger(__name__)


class NLUService(Protocol):
    async def analyze(
        self, text: str, language_code: str, context_hints: dict
    ) -> NLUResult: ...


class IntentResolver:
    def __init__(
        self,
        nlu: NLUService | None = None,
        matcher: LocalIntentMatcher | None = None,
        *,
        default_language: str = "ko",
        timeout: float = 2.5,
    ) -> None:
        self._nlu = nlu
        self._timeout = timeout
        self._matcher = matcher or LocalIntentMatcher()
        self._default_language = default_language

    async def resolve(self, text: str, context: ConversationContext) -> Intent:
        if not text or not text.strip():
            return Intent.unknown(text)

        if self._nlu is not None:
            try:
                result = await asyncio.wait_for(
                    self._nlu.analyze(
                        text, self._language(context), self._hints(context)
                    ),
                    timeout=self._timeout,
                )
            except (NLUError, asyncio.TimeoutError) as e:
                degraded = IntentResolutionDegraded(str(e) or type(e).__name__)
                logger.warning(
                    "Intent resolution degraded, using local matcher: %s",
                    degraded,
                    extra={"user_id": context.user_id, "session_id": context.session_id},
                )
                metrics.inc("intent.degraded")
            except Exception as e:
                # Anything else from the collaborator is treated the same way
                logger.warning(
                    "NLU call failed unexpectedly, using local matcher: %r", e
                )
                metrics.inc("intent.degraded")
            else:
                metrics.inc("intent.resolved", labels={"source": IntentSource.NLU.value})
                if result.intent_name is None:
                    return Intent.unknown(text, confidence=result.confidence)
                return Intent(
                    name=result.intent_name,
                    confidence=result.confidence,
                    parameters=result.entities,
                    original_text=text,
                    source=IntentSource.NLU.value,
                )

        local = self._matcher.match(text)
        if local is not None:
            metrics.inc("intent.resolved", labels={"source": IntentSource.LOCAL.value})
            return local

        metrics.inc("intent.resolved", labels={"source": IntentSource.FALLBACK.value})
        return Intent.unknown(text)

    def _language(self, context: ConversationContext) -> str:
        return context.user_state.language or self._default_language

    @staticmethod
    def _hints(context: ConversationContext) -> dict:
        last_intent = next(
            (t.intent for t in reversed(context.history) if t.intent), None
        )
        return {
            "recent_topics": list(context.user_state.recent_topics[-5:]),
            "language": context.user_state.language,
            "location": context.user_state.location,
            "last_intent": last_intent,
        }
