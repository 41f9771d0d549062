"""
Proactive Rule Engine — system-initiated dialog turns from device events.

Flow per event:
  1. ingest() queues the event and returns immediately; the transport
     is never held up by rule evaluation.
  2. A worker resolves the device's context (device binding).
  3. Every rule accepting the event type is evaluated concurrently,
     each under its own timeout. A slow or failing rule is logged and
     skipped; the others carry on.
  4. A rule whose trigger is true must win the cooldown slot for this
     user before it fires, so duplicate deliveries fire it at most once.
  5. The turn goes through the same response path as user speech
     (dispatcher → context update → analytics event), minus intent
     resolution: the intent is synthesized as ``proactive.<rule>``.

Rules come from the handlers in the registry (load_from_registry) and
are read-only once the engine starts.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import TYPE_CHECKING, Callable

from hearth.context.manager import ContextManager
from hearth.context.models import ConversationContext
from hearth.core.errors import ContextUnavailable
from hearth.core.metrics import metrics
from hearth.events.bus import DEVICE_EVENTS_TOPIC, EventBus
from hearth.plugins.base import ProactiveRule
from hearth.plugins.dispatcher import DialogResult
from hearth.plugins.registry import PluginRegistry
from hearth.proactive.cooldown import CooldownTracker
from hearth.proactive.events import DeviceEvent

if TYPE_CHECKING:
    from hearth.orchestrator import DialogOrchestrator

logger = logging.getLogger(__name__)

PRUNE_EVERY = 1000  # events between cooldown-table sweeps


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ProactiveRuleEngine:
    def __init__(
        self,
        context_manager: ContextManager,
        orchestrator: "DialogOrchestrator",
        *,
        cooldowns: CooldownTracker | None = None,
        bus: EventBus | None = None,
        rule_timeout: float = 5.0,
        queue_size: int = 500,
        workers: int = 2,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._contexts = context_manager
        self._orchestrator = orchestrator
        self._cooldowns = cooldowns or CooldownTracker()
        self._bus = bus
        self._rule_timeout = rule_timeout
        self._workers_count = max(1, workers)
        self._clock = clock
        self._rules: dict[str, ProactiveRule] = {}
        if bus is not None:
            # Transports publish on the bus; ingest() feeds the same queue
            self._queue = bus.subscribe(DEVICE_EVENTS_TOPIC, maxsize=queue_size)
        else:
            self._queue = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task] = []
        self._running = False
        self._evaluated = 0

    # ─── Rules ────────────────────────────────────────────────────

    def register_rule(self, rule: ProactiveRule) -> None:
        if self._running:
            raise RuntimeError("Rules are read-only while the engine is running")
        if rule.name in self._rules:
            raise ValueError(f"Proactive rule already registered: {rule.name}")
        self._rules[rule.name] = rule
        logger.info(
            "Registered proactive rule: %s (priority=%s, cooldown=%s)",
            rule.name,
            rule.priority.name,
            rule.cooldown,
            extra={"rule": rule.name},
        )

    def load_from_registry(self, registry: PluginRegistry) -> int:
        pairs = registry.proactive_rules()
        for _handler, rule in pairs:
            self.register_rule(rule)
        return len(pairs)

    @property
    def rules(self) -> list[ProactiveRule]:
        return list(self._rules.values())

    @property
    def cooldowns(self) -> CooldownTracker:
        return self._cooldowns

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for i in range(self._workers_count):
            self._workers.append(
                asyncio.create_task(self._worker_loop(i), name=f"proactive-worker-{i}")
            )
        logger.info(
            "ProactiveRuleEngine started: %d rule(s), %d worker(s)",
            len(self._rules),
            self._workers_count,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        if self._bus is not None:
            self._bus.unsubscribe(DEVICE_EVENTS_TOPIC, self._queue)

    # ─── Ingestion ────────────────────────────────────────────────

    def ingest(self, event: DeviceEvent) -> bool:
        """Queue an event for evaluation. Never blocks. False if dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Proactive queue full, dropping %s from %s",
                event.type,
                event.device_id,
                extra={"device_id": event.device_id},
            )
            metrics.inc("proactive.dropped")
            return False
        metrics.inc("proactive.ingested", labels={"type": event.type})
        return True

    async def join(self) -> None:
        """Wait until every queued event has been evaluated."""
        await self._queue.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                if isinstance(event, DeviceEvent):
                    await self.evaluate(event)
                else:
                    logger.warning("Ignoring non-DeviceEvent on queue: %r", event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Proactive worker %d failed on event", index)
            finally:
                self._queue.task_done()
                self._evaluated += 1
                if self._evaluated % PRUNE_EVERY == 0:
                    self._prune_cooldowns()

    def _prune_cooldowns(self) -> None:
        windows = [r.cooldown for r in self._rules.values() if isinstance(r.cooldown, dt.timedelta)]
        max_age = max(windows, default=dt.timedelta(0)) + dt.timedelta(days=1)
        removed = self._cooldowns.prune(self._clock(), max_age)
        if removed:
            logger.debug("Pruned %d cooldown entries", removed)

    # ─── Evaluation ───────────────────────────────────────────────

    async def evaluate(self, event: DeviceEvent) -> list[DialogResult]:
        """Evaluate every matching rule for *event*; return the turns that fired."""
        rules = sorted(
            (r for r in self._rules.values() if r.accepts(event)),
            key=lambda r: r.priority,
            reverse=True,
        )
        if not rules:
            return []

        try:
            context = await self._contexts.get_by_device_id(event.device_id)
        except ContextUnavailable as e:
            logger.warning(
                "Skipping event from %s: %s",
                event.device_id,
                e,
                extra={"device_id": event.device_id},
            )
            metrics.inc("proactive.context_unavailable")
            return []
        if context is None:
            logger.debug("No session bound to device %s", event.device_id)
            metrics.inc("proactive.unbound_device")
            return []

        results = await asyncio.gather(
            *(self._evaluate_rule(rule, event, context) for rule in rules),
            return_exceptions=True,
        )

        fired: list[DialogResult] = []
        for rule, result in zip(rules, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Proactive rule %s failed: %r",
                    rule.name,
                    result,
                    extra={"rule": rule.name},
                )
                metrics.inc("proactive.rule_failed", labels={"rule": rule.name})
            elif result is not None:
                fired.append(result)
        return fired

    async def _evaluate_rule(
        self, rule: ProactiveRule, event: DeviceEvent, context: ConversationContext
    ) -> DialogResult | None:
        try:
            matched = await asyncio.wait_for(
                rule.evaluate(event, context), timeout=self._rule_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Proactive rule %s timed out after %.1fs",
                rule.name,
                self._rule_timeout,
                extra={"rule": rule.name},
            )
            metrics.inc("proactive.rule_timeout", labels={"rule": rule.name})
            return None
        if not matched:
            return None

        if not self._cooldowns.try_acquire(rule, context.user_id, self._clock()):
            logger.debug(
                "Proactive rule %s cooling down for %s",
                rule.name,
                context.user_id,
                extra={"rule": rule.name, "user_id": context.user_id},
            )
            metrics.inc("proactive.suppressed", labels={"rule": rule.name})
            return None

        try:
            result = await self._orchestrator.handle_proactive(rule, event, context)
        finally:
            self._cooldowns.complete(rule, context.user_id)

        logger.info(
            "Proactive rule fired: %s → %s",
            rule.name,
            context.key,
            extra={
                "rule": rule.name,
                "user_id": context.user_id,
                "session_id": context.session_id,
                "device_id": event.device_id,
            },
        )
        metrics.inc("proactive.fired", labels={"rule": rule.name})
        return result
