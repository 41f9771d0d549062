"""Tests for the ProactiveRuleEngine."""

import asyncio
import datetime as dt
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from hearth.context.cache import MemoryContextCache
from hearth.context.durable import SqliteContextStore
from hearth.context.manager import ContextManager
from hearth.context.store import TieredContextStore
from hearth.core.metrics import metrics
from hearth.events.bus import DEVICE_EVENTS_TOPIC, EventBus
from hearth.intent.models import Intent
from hearth.plugins.base import CapabilityHandler, PluginResponse, ProactiveRule, RulePriority
from hearth.plugins.dispatcher import DialogResult
from hearth.plugins.registry import PluginRegistry
from hearth.proactive.engine import ProactiveRuleEngine
from hearth.proactive.events import DeviceEvent

NOW = dt.datetime(2026, 3, 1, 13, 0, tzinfo=dt.timezone.utc)


def _rule(name: str, trigger=None, **kwargs) -> ProactiveRule:
    return ProactiveRule(
        name=name,
        trigger=trigger or (lambda event, context: True),
        message_template=f"{name} fired",
        cooldown=kwargs.pop("cooldown", dt.timedelta(minutes=30)),
        **kwargs,
    )


def _fake_orchestrator() -> AsyncMock:
    orchestrator = AsyncMock()

    async def handle_proactive(rule, event, context):
        return DialogResult(
            intent=Intent.proactive(rule.name, {}, rule.message_template),
            response=PluginResponse(speech=rule.message_template),
            user_id=context.user_id,
            session_id=context.session_id,
            origin="proactive",
        )

    orchestrator.handle_proactive.side_effect = handle_proactive
    return orchestrator


@pytest_asyncio.fixture
async def contexts():
    with tempfile.TemporaryDirectory() as tmpdir:
        durable = SqliteContextStore(Path(tmpdir) / "test_context.db")
        await durable.start()
        manager = ContextManager(TieredContextStore(MemoryContextCache(), durable, 3600))
        await manager.get_or_create("u1", "s1")
        await manager.bind_device("sensor-1", "u1", "s1")
        yield manager
        await manager.flush()
        await durable.stop()


def _engine(contexts, orchestrator, **kwargs) -> ProactiveRuleEngine:
    return ProactiveRuleEngine(contexts, orchestrator, clock=lambda: NOW, **kwargs)


# ─── Registration ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_register_rejects_duplicates(contexts):
    engine = _engine(contexts, _fake_orchestrator())
    engine.register_rule(_rule("a"))
    with pytest.raises(ValueError):
        engine.register_rule(_rule("a"))


@pytest.mark.asyncio
async def test_rules_are_read_only_while_running(contexts):
    engine = _engine(contexts, _fake_orchestrator())
    await engine.start()
    try:
        with pytest.raises(RuntimeError):
            engine.register_rule(_rule("late"))
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_load_from_registry(contexts):
    class RuleHandler(CapabilityHandler):
        name = "rules"
        intents = frozenset({"x.y"})

        def proactive_rules(self):
            return [_rule("r1"), _rule("r2")]

        async def execute(self, intent, context):
            return PluginResponse(speech="")

    engine = _engine(contexts, _fake_orchestrator())
    assert engine.load_from_registry(PluginRegistry([RuleHandler()])) == 2
    assert [r.name for r in engine.rules] == ["r1", "r2"]


# ─── Evaluation ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_matching_rule_fires_through_orchestrator(contexts):
    orchestrator = _fake_orchestrator()
    engine = _engine(contexts, orchestrator)
    engine.register_rule(_rule("hot", lambda e, c: e.payload["temperature"] > 28))

    fired = await engine.evaluate(DeviceEvent("sensor-1", "environment.reading", {"temperature": 30}))
    assert [r.intent.name for r in fired] == ["proactive.hot"]
    rule, event, context = orchestrator.handle_proactive.await_args.args
    assert rule.name == "hot"
    assert context.user_id == "u1"

    assert await engine.evaluate(DeviceEvent("sensor-1", "environment.reading", {"temperature": 20})) == []


@pytest.mark.asyncio
async def test_duplicate_event_fires_once(contexts):
    orchestrator = _fake_orchestrator()
    engine = _engine(contexts, orchestrator)
    engine.register_rule(_rule("motion"))
    event = DeviceEvent("sensor-1", "motion.detected", event_id="evt-1")

    results = await asyncio.gather(engine.evaluate(event), engine.evaluate(event))
    assert sum(len(r) for r in results) == 1
    assert orchestrator.handle_proactive.await_count == 1


@pytest.mark.asyncio
async def test_rule_fires_again_after_cooldown(contexts):
    now = {"t": NOW}
    engine = ProactiveRuleEngine(contexts, _fake_orchestrator(), clock=lambda: now["t"])
    engine.register_rule(_rule("motion", cooldown=dt.timedelta(minutes=30)))
    event = DeviceEvent("sensor-1", "motion.detected")

    assert len(await engine.evaluate(event)) == 1
    now["t"] = NOW + dt.timedelta(minutes=10)
    assert await engine.evaluate(event) == []
    now["t"] = NOW + dt.timedelta(minutes=31)
    assert len(await engine.evaluate(event)) == 1


@pytest.mark.asyncio
async def test_failing_and_slow_rules_are_isolated(contexts):
    metrics.reset()

    def explode(event, context):
        raise RuntimeError("bad trigger")

    async def hang(event, context):
        await asyncio.sleep(5)
        return True

    engine = _engine(contexts, _fake_orchestrator(), rule_timeout=0.05)
    engine.register_rule(_rule("broken", explode))
    engine.register_rule(_rule("slow", hang))
    engine.register_rule(_rule("fine"))

    fired = await engine.evaluate(DeviceEvent("sensor-1", "motion.detected"))
    assert [r.intent.name for r in fired] == ["proactive.fine"]
    assert metrics.counter("proactive.rule_failed", labels={"rule": "broken"}) == 1
    assert metrics.counter("proactive.rule_timeout", labels={"rule": "slow"}) == 1


@pytest.mark.asyncio
async def test_event_type_filter_and_priority_order(contexts):
    engine = _engine(contexts, _fake_orchestrator())
    engine.register_rule(_rule("low", priority=RulePriority.LOW))
    engine.register_rule(_rule("critical", priority=RulePriority.CRITICAL))
    engine.register_rule(_rule("doors", event_types={"door.opened"}))

    fired = await engine.evaluate(DeviceEvent("sensor-1", "motion.detected"))
    assert [r.intent.name for r in fired] == ["proactive.critical", "proactive.low"]


@pytest.mark.asyncio
async def test_unbound_device_is_ignored(contexts):
    orchestrator = _fake_orchestrator()
    engine = _engine(contexts, orchestrator)
    engine.register_rule(_rule("any"))
    assert await engine.evaluate(DeviceEvent("stranger", "motion.detected")) == []
    orchestrator.handle_proactive.assert_not_awaited()


@pytest.mark.asyncio
async def test_orchestrator_failure_still_consumes_cooldown_window(contexts):
    orchestrator = AsyncMock()
    orchestrator.handle_proactive.side_effect = RuntimeError("dispatch broke")
    engine = _engine(contexts, orchestrator)
    rule = _rule("any")
    engine.register_rule(rule)

    assert await engine.evaluate(DeviceEvent("sensor-1", "motion.detected")) == []
    # Not stuck in TRIGGERED; the window still applies
    assert engine.cooldowns.state(rule, "u1", NOW).value == "cooldown"


# ─── Ingestion ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ingest_is_processed_by_workers(contexts):
    orchestrator = _fake_orchestrator()
    engine = _engine(contexts, orchestrator)
    engine.register_rule(_rule("any"))
    await engine.start()
    try:
        assert engine.ingest(DeviceEvent("sensor-1", "motion.detected"))
        await asyncio.wait_for(engine.join(), timeout=1.0)
    finally:
        await engine.stop()
    assert orchestrator.handle_proactive.await_count == 1


@pytest.mark.asyncio
async def test_ingest_drops_when_queue_full(contexts):
    engine = _engine(contexts, _fake_orchestrator(), queue_size=1)
    assert engine.ingest(DeviceEvent("sensor-1", "a"))
    assert not engine.ingest(DeviceEvent("sensor-1", "b"))


@pytest.mark.asyncio
async def test_events_published_on_bus_are_evaluated(contexts):
    bus = EventBus()
    orchestrator = _fake_orchestrator()
    engine = _engine(contexts, orchestrator, bus=bus)
    engine.register_rule(_rule("any"))
    await engine.start()
    try:
        await bus.publish(DEVICE_EVENTS_TOPIC, DeviceEvent("sensor-1", "motion.detected"))
        await asyncio.wait_for(engine.join(), timeout=1.0)
    finally:
        await engine.stop()
    assert orchestrator.handle_proactive.await_count == 1
    assert bus.subscriber_count(DEVICE_EVENTS_TOPIC) == 0
