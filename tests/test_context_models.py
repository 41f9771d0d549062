"""Tests for context data models."""

from hearth.context.models import (
    HISTORY_LIMIT,
    ContextDelta,
    ContextKey,
    ConversationContext,
    Turn,
    TurnRole,
    merge_long_term,
)


def test_context_key_str():
    assert str(ContextKey("u1", "s1")) == "u1:s1"


def test_new_context_expiry():
    ctx = ConversationContext.new("u1", "s1", ttl_seconds=60)
    assert ctx.expires_at == ctx.last_interaction_at + 60
    assert ctx.version == 0
    assert ctx.history == []


def test_document_roundtrip_keeps_state():
    ctx = ConversationContext.new("u1", "s1", ttl_seconds=60)
    ctx.history.append(Turn(role=TurnRole.USER.value, text="안녕", intent="greeting.hello"))
    ctx.device_state.active_devices.add("livingroom-sensor-1")
    ctx.user_state.recent_topics = ["weather"]
    ctx.version = 3

    restored = ConversationContext.from_dict(ctx.to_dict())
    assert restored.history[0].text == "안녕"
    assert restored.device_state.active_devices == {"livingroom-sensor-1"}
    assert restored.user_state.recent_topics == ["weather"]
    assert restored.version == 3


def test_enrichment_data_is_not_persisted():
    ctx = ConversationContext.new("u1", "s1", ttl_seconds=60)
    ctx.patterns = {"wake_time": "07:00"}
    ctx.enrichment_sources = {"patterns": True}
    doc = ctx.to_dict()
    assert "patterns" not in doc
    assert "enrichment_sources" not in doc


def test_from_dict_clamps_history():
    doc = ConversationContext.new("u1", "s1", 60).to_dict()
    doc["history"] = [Turn(text=str(i)).to_dict() for i in range(HISTORY_LIMIT + 20)]
    ctx = ConversationContext.from_dict(doc)
    assert len(ctx.history) == HISTORY_LIMIT
    assert ctx.history[0].text == "20"


def test_recent_turns():
    ctx = ConversationContext.new("u1", "s1", 60)
    ctx.history = [Turn(text=str(i)) for i in range(10)]
    assert [t.text for t in ctx.recent_turns(3)] == ["7", "8", "9"]
    assert ctx.recent_turns(0) == []


def test_delta_is_empty():
    assert ContextDelta().is_empty()
    assert not ContextDelta(short_term={"a": 1}).is_empty()
    assert not ContextDelta(devices_inactive=frozenset({"d"})).is_empty()


def test_merge_long_term_accumulates():
    existing = {"likes": ["jazz"], "profile": {"name": "민수", "city": "Seoul"}, "age": 30}
    incoming = {"likes": ["jazz", "rock"], "profile": {"city": "Busan"}, "age": 31}
    merged = merge_long_term(existing, incoming)
    assert merged["likes"] == ["jazz", "rock"]
    assert merged["profile"] == {"name": "민수", "city": "Busan"}
    assert merged["age"] == 31
    # Inputs untouched
    assert existing["likes"] == ["jazz"]
