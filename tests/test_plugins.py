"""Tests for the handler contract, proactive rules and the registry."""

import datetime as dt

import pytest

from hearth.context.models import ConversationContext
from hearth.intent.models import Intent
from hearth.plugins.base import (
    CALENDAR_DAY,
    CapabilityHandler,
    PluginResponse,
    ProactiveRule,
    RulePriority,
)
from hearth.plugins.registry import PluginRegistry
from hearth.proactive.events import DeviceEvent


class StubHandler(CapabilityHandler):
    def __init__(self, name: str, intents: set[str], rank: int = 0, refuse: bool = False, rules=None):
        self.name = name
        self.intents = frozenset(intents)
        self.rank = rank
        self._refuse = refuse
        self._rules = rules or []

    def can_handle(self, intent, context) -> bool:
        if self._refuse == "raise":
            raise RuntimeError("boom")
        return not self._refuse

    def proactive_rules(self):
        return self._rules

    async def execute(self, intent, context):
        return PluginResponse(speech=self.name)


def _ctx() -> ConversationContext:
    return ConversationContext.new("u1", "s1", ttl_seconds=60)


def _rule(name: str = "r", **kwargs) -> ProactiveRule:
    defaults = dict(
        trigger=lambda event, context: True,
        message_template="hello",
        cooldown=dt.timedelta(minutes=5),
    )
    defaults.update(kwargs)
    return ProactiveRule(name=name, **defaults)


# ─── PluginResponse ───────────────────────────────────────────


def test_plugin_response_clamps_confidence():
    assert PluginResponse(speech="x", confidence=-1).confidence == 0.0
    assert PluginResponse(speech="x", confidence=3).confidence == 1.0


def test_plugin_response_is_frozen():
    resp = PluginResponse(speech="x", actions=[{"type": "a"}])
    assert resp.actions == ({"type": "a"},)
    with pytest.raises(Exception):
        resp.speech = "y"  # type: ignore[misc]


# ─── ProactiveRule ────────────────────────────────────────────


def test_rule_requires_cooldown():
    with pytest.raises(ValueError):
        _rule(cooldown=None)
    with pytest.raises(ValueError):
        _rule(cooldown=dt.timedelta(0))
    with pytest.raises(TypeError):
        _rule(cooldown=300)


def test_rule_accepts_calendar_day():
    assert _rule(cooldown=CALENDAR_DAY).cooldown is CALENDAR_DAY


def test_rule_event_type_filter():
    rule = _rule(event_types={"motion.detected"})
    assert rule.accepts(DeviceEvent("d", "motion.detected"))
    assert not rule.accepts(DeviceEvent("d", "door.opened"))
    assert _rule().accepts(DeviceEvent("d", "anything"))


@pytest.mark.asyncio
async def test_rule_evaluate_supports_async_triggers():
    async def trigger(event, context):
        return event.payload.get("temperature", 0) > 28

    rule = _rule(trigger=trigger)
    assert await rule.evaluate(DeviceEvent("d", "t", {"temperature": 30}), _ctx())
    assert not await rule.evaluate(DeviceEvent("d", "t", {"temperature": 20}), _ctx())


def test_rule_render_fills_from_payload_and_context():
    ctx = _ctx()
    ctx.user_state.location = "bedroom"
    ctx.environment_state.humidity = 55
    rule = _rule(message_template="{location}: {temperature}도, 습도 {humidity}% {missing}")
    text = rule.render(DeviceEvent("d", "t", {"temperature": 29}), ctx)
    assert text == "bedroom: 29도, 습도 55% "


def test_rule_render_returns_template_when_it_cannot_format():
    rule = _rule(message_template="실내 온도 {temperature:.1f}도, {device_id.room}")
    # Missing field with a numeric format spec
    assert rule.render(DeviceEvent("d", "t"), _ctx()) == rule.message_template
    # Attribute lookup on a plain value
    rule = _rule(message_template="{device_id.room}")
    assert rule.render(DeviceEvent("d", "t"), _ctx()) == "{device_id.room}"



def test_cooldown_key_defaults_to_name():
    assert _rule("a").effective_cooldown_key == "a"
    assert _rule("a", cooldown_key="shared").effective_cooldown_key == "shared"


# ─── Handler matching ─────────────────────────────────────────


def test_handler_wildcard_match():
    handler = StubHandler("dev", {"device.*"})
    assert handler.matches("device.on")
    assert handler.matches("device.off")
    assert not handler.matches("devices.on")
    assert not handler.matches("weather.query")


# ─── Registry ─────────────────────────────────────────────────


def test_register_rejects_duplicates_and_unnamed():
    registry = PluginRegistry([StubHandler("a", {"x.y"})])
    with pytest.raises(ValueError):
        registry.register(StubHandler("a", {"x.z"}))
    with pytest.raises(ValueError):
        registry.register(StubHandler("", {"x.z"}))
    assert "a" in registry
    assert len(registry) == 1


def test_candidates_sorted_by_priority_ties_keep_registration_order():
    registry = PluginRegistry(
        [
            StubHandler("low", {"weather.query"}, rank=0),
            StubHandler("first", {"weather.query"}, rank=5),
            StubHandler("second", {"weather.query"}, rank=5),
            StubHandler("other", {"device.on"}, rank=10),
        ]
    )
    names = [h.name for h in registry.candidates_for(Intent("weather.query", 0.9), _ctx())]
    assert names == ["first", "second", "low"]


def test_candidates_respect_can_handle():
    registry = PluginRegistry(
        [
            StubHandler("refuses", {"weather.query"}, refuse=True),
            StubHandler("explodes", {"weather.query"}, refuse="raise"),
            StubHandler("ok", {"weather.query"}),
        ]
    )
    names = [h.name for h in registry.candidates_for(Intent("weather.query"), _ctx())]
    assert names == ["ok"]


def test_candidates_for_unknown_is_empty():
    registry = PluginRegistry([StubHandler("a", {"weather.query"})])
    assert registry.candidates_for(Intent.unknown("?"), _ctx()) == []


def test_unregister():
    registry = PluginRegistry([StubHandler("a", {"x.y"})])
    assert registry.unregister("a").name == "a"
    assert registry.unregister("a") is None
    assert registry.names() == []


def test_proactive_rules_collected_and_unique():
    registry = PluginRegistry(
        [
            StubHandler("a", {"x.y"}, rules=[_rule("r1")]),
            StubHandler("b", {"x.z"}, rules=[_rule("r2"), _rule("r3", priority=RulePriority.HIGH)]),
        ]
    )
    assert [r.name for _h, r in registry.proactive_rules()] == ["r1", "r2", "r3"]

    registry.register(StubHandler("c", {"x.w"}, rules=[_rule("r1")]))
    with pytest.raises(ValueError):
        registry.proactive_rules()
