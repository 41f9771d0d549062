"""
Context Manager — the only writer of ConversationContext.

Operations:
    get_or_create(user_id, session_id)  cache → durable → new, then enrich
    update(context, delta)              serialized per session, cache now,
                                        durable in the background
    get_by_device_id(device_id)         device binding → get_or_create

Every update re-reads the latest stored document under the session's
lock and applies the delta to that, so two racing turns for the same
session are serialized and neither delta is lost. The ``context``
argument only names the session; its in-memory contents are not
written back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import fields

from hearth.context.enrichment import ContextEnricher
from hearth.context.locks import KeyedLockTable
from hearth.context.models import (
    HISTORY_LIMIT,
    ContextDelta,
    ContextKey,
    ConversationContext,
    EnvironmentState,
    TurnRole,
    UserState,
    merge_long_term,
)
from hearth.context.store import TieredContextStore
from hearth.core.metrics import metrics

logger = logging.getLogger(__name__)

RECENT_TOPICS_LIMIT = 10

_USER_STATE_FIELDS = {f.name for f in fields(UserState)}
_ENVIRONMENT_FIELDS = {f.name for f in fields(EnvironmentState)}


class ContextManager:
    """Get-or-create, enrichment, serialized updates and persistence."""

    def __init__(
        self,
        store: TieredContextStore,
        enricher: ContextEnricher | None = None,
        *,
        history_limit: int = HISTORY_LIMIT,
        locks: KeyedLockTable | None = None,
    ) -> None:
        self._store = store
        self._enricher = enricher or ContextEnricher()
        self._history_limit = min(history_limit, HISTORY_LIMIT)
        self._locks = locks or KeyedLockTable()
        self._pending_writes: dict[ContextKey, set[asyncio.Task]] = {}

    @property
    def ttl_seconds(self) -> int:
        return self._store.ttl_seconds

    # ─── Read ─────────────────────────────────────────────────────

    async def get_or_create(self, user_id: str, session_id: str) -> ConversationContext:
        """Load the session's context (creating it on first use) and enrich it.

        Raises ContextUnavailable when neither tier can be reached.
        """
        key = ContextKey(user_id, session_id)
        doc = await self._store.load(key)
        if doc is not None:
            context = ConversationContext.from_dict(doc)
        else:
            context = await self._create(key)
        return await self._enricher.enrich(context)

    async def get_by_device_id(self, device_id: str) -> ConversationContext | None:
        """Context of the session a device is bound to, or None if unbound."""
        key = await self._store.lookup_device(device_id)
        if key is None:
            return None
        return await self.get_or_create(key.user_id, key.session_id)

    async def bind_device(self, device_id: str, user_id: str, session_id: str) -> None:
        await self._store.bind_device(device_id, ContextKey(user_id, session_id))

    async def _create(self, key: ContextKey) -> ConversationContext:
        # Under the lock so a creation can never overwrite a concurrent update
        async with self._locks.hold(str(key)):
            doc = await self._store.load(key, settle=lambda: self._settle(key))
            if doc is not None:
                return ConversationContext.from_dict(doc)
            context = ConversationContext.new(
                key.user_id, key.session_id, self._store.ttl_seconds
            )
            await self._store.save_fast(context.to_dict())
            metrics.inc("context.created")
            logger.info(
                "Created context %s",
                key,
                extra={"user_id": key.user_id, "session_id": key.session_id},
            )
            return context

    # ─── Write ────────────────────────────────────────────────────

    async def update(
        self, context: ConversationContext, delta: ContextDelta
    ) -> ConversationContext:
        """Apply *delta* to the latest stored state of *context*'s session.

        The cache tier is written before returning; the durable write runs
        in the background (see flush()).
        """
        key = context.key
        async with self._locks.hold(str(key)):
            doc = await self._store.load(key, settle=lambda: self._settle(key))
            if doc is not None:
                latest = ConversationContext.from_dict(doc)
            else:
                latest = ConversationContext.new(
                    key.user_id, key.session_id, self._store.ttl_seconds
                )

            self._apply(latest, delta)
            latest.version += 1
            document = latest.to_dict()

            cached = await self._store.save_fast(document)
            if cached:
                self._schedule_durable(key, document)

            for device_id in delta.devices_active:
                await self._store.bind_device(device_id, key)

        # Enrichment is per-load data and not persisted; carry it over
        latest.patterns = dict(context.patterns)
        latest.enrichment_sources = dict(context.enrichment_sources)
        metrics.inc("context.updated")
        return latest

    def _apply(self, ctx: ConversationContext, delta: ContextDelta) -> None:
        now = delta.timestamp if delta.timestamp is not None else time.time()

        if delta.turns:
            ctx.history.extend(delta.turns)
            if len(ctx.history) > self._history_limit:
                del ctx.history[: len(ctx.history) - self._history_limit]
            for turn in delta.turns:
                if turn.role == TurnRole.USER.value and turn.intent:
                    self._push_topic(ctx, turn.intent)

        if delta.short_term:
            ctx.short_term_memory.update(delta.short_term)
        if delta.long_term:
            ctx.long_term_memory = merge_long_term(ctx.long_term_memory, delta.long_term)

        for name, value in delta.user_state.items():
            if name in _USER_STATE_FIELDS:
                setattr(ctx.user_state, name, value)
            else:
                logger.debug("Ignoring unknown user_state field %r", name)
        for name, value in delta.environment.items():
            if name in _ENVIRONMENT_FIELDS:
                setattr(ctx.environment_state, name, value)
            else:
                logger.debug("Ignoring unknown environment field %r", name)

        ctx.device_state.active_devices |= set(delta.devices_active)
        ctx.device_state.active_devices -= set(delta.devices_inactive)
        ctx.device_state.attributes.update(delta.device_attributes)

        # Never move backwards, even if a delta carries an older timestamp
        ctx.last_interaction_at = max(ctx.last_interaction_at, now)
        ctx.expires_at = ctx.last_interaction_at + self._store.ttl_seconds

    @staticmethod
    def _push_topic(ctx: ConversationContext, intent_name: str) -> None:
        topic = intent_name.split(".", 1)[0]
        if topic in ("unknown", "proactive"):
            return
        topics = [t for t in ctx.user_state.recent_topics if t != topic]
        topics.append(topic)
        ctx.user_state.recent_topics = topics[-RECENT_TOPICS_LIMIT:]

    # ─── Background persistence ───────────────────────────────────

    def _schedule_durable(self, key: ContextKey, document: dict) -> None:
        task = asyncio.create_task(self._store.save_durable(document))
        pending = self._pending_writes.setdefault(key, set())
        pending.add(task)
        task.add_done_callback(lambda t: self._write_done(key, t))

    def _write_done(self, key: ContextKey, task: asyncio.Task) -> None:
        pending = self._pending_writes.get(key)
        if pending is None:
            return
        pending.discard(task)
        if not pending:
            del self._pending_writes[key]

    async def _settle(self, key: ContextKey) -> None:
        # The durable tier is about to be read for this session: earlier
        # acknowledged updates must be there first
        while key in self._pending_writes:
            await asyncio.gather(*list(self._pending_writes[key]), return_exceptions=True)

    async def flush(self) -> None:
        """Wait for all scheduled durable writes."""
        while self._pending_writes:
            tasks = [t for pending in self._pending_writes.values() for t in pending]
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return sum(len(pending) for pending in self._pending_writes.values())

