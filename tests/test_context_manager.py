"""Tests for ContextManager — get-or-create, serialized updates, persistence."""

import asyncio
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from hearth.context.cache import MemoryContextCache
from hearth.context.durable import SqliteContextStore
from hearth.context.enrichment import PROFILE, ContextEnricher
from hearth.context.manager import ContextManager
from hearth.context.models import HISTORY_LIMIT, ContextDelta, ContextKey, Turn, TurnRole
from hearth.context.store import TieredContextStore
from hearth.core.errors import ContextUnavailable


@pytest_asyncio.fixture
async def durable():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SqliteContextStore(Path(tmpdir) / "test_context.db")
        await store.start()
        yield store
        await store.stop()


@pytest.fixture
def cache():
    return MemoryContextCache()


@pytest.fixture
def manager(cache, durable):
    return ContextManager(TieredContextStore(cache, durable, ttl_seconds=3600))


def _user_turn(text: str, intent: str | None = None, ts: float | None = None) -> Turn:
    kwargs = {"timestamp": ts} if ts is not None else {}
    return Turn(role=TurnRole.USER.value, text=text, intent=intent, **kwargs)


# ─── get_or_create ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_or_create_creates_then_loads(manager: ContextManager, cache):
    ctx = await manager.get_or_create("u1", "s1")
    assert ctx.history == []
    assert await cache.get(ContextKey("u1", "s1")) is not None

    await manager.update(ctx, ContextDelta(turns=(_user_turn("hi"),)))
    again = await manager.get_or_create("u1", "s1")
    assert [t.text for t in again.history] == ["hi"]


@pytest.mark.asyncio
async def test_concurrent_first_use_creates_once(manager: ContextManager):
    results = await asyncio.gather(
        *(manager.get_or_create("u1", "s1") for _ in range(10))
    )
    assert len({r.created_at for r in results}) == 1


@pytest.mark.asyncio
async def test_get_or_create_runs_enrichment(cache, durable):
    class Profile:
        name = PROFILE

        async def fetch(self, user_id):
            return {"name": "지민", "language": "ko"}

    manager = ContextManager(
        TieredContextStore(cache, durable, ttl_seconds=60),
        ContextEnricher([Profile()]),
    )
    ctx = await manager.get_or_create("u1", "s1")
    assert ctx.long_term_memory["profile"]["name"] == "지민"
    assert ctx.enrichment_sources == {PROFILE: True}


@pytest.mark.asyncio
async def test_unavailable_when_both_tiers_down():
    cache = MemoryContextCache()
    cache.available = False
    manager = ContextManager(
        TieredContextStore(cache, SqliteContextStore(":memory:"), ttl_seconds=60)
    )
    with pytest.raises(ContextUnavailable):
        await manager.get_or_create("u1", "s1")


# ─── update ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_history_never_exceeds_limit(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    for i in range(HISTORY_LIMIT + 5):
        ctx = await manager.update(ctx, ContextDelta(turns=(_user_turn(str(i)),)))

    assert len(ctx.history) == HISTORY_LIMIT
    assert ctx.history[0].text == "5"
    assert ctx.history[-1].text == str(HISTORY_LIMIT + 4)


@pytest.mark.asyncio
async def test_concurrent_updates_lose_nothing(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    deltas = [
        ContextDelta(turns=(_user_turn(f"t{i}"),), short_term={f"k{i}": i})
        for i in range(20)
    ]
    # Every caller holds the same stale copy
    await asyncio.gather(*(manager.update(ctx, d) for d in deltas))

    final = await manager.get_or_create("u1", "s1")
    assert len(final.history) == 20
    assert {t.text for t in final.history} == {f"t{i}" for i in range(20)}
    assert all(final.short_term_memory[f"k{i}"] == i for i in range(20))
    assert final.version == 20


@pytest.mark.asyncio
async def test_last_interaction_is_monotonic(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    ctx = await manager.update(ctx, ContextDelta(turns=(_user_turn("a"),), timestamp=ctx.created_at + 100))
    later = ctx.last_interaction_at
    ctx = await manager.update(ctx, ContextDelta(turns=(_user_turn("b"),), timestamp=ctx.created_at + 50))
    assert ctx.last_interaction_at == later
    assert ctx.expires_at == later + manager.ttl_seconds


@pytest.mark.asyncio
async def test_recent_topics_from_user_intents(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    for intent in ("weather.query", "device.on", "weather.query", "unknown"):
        ctx = await manager.update(ctx, ContextDelta(turns=(_user_turn("x", intent),)))
    assert ctx.user_state.recent_topics == ["device", "weather"]


@pytest.mark.asyncio
async def test_state_patches_and_devices(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    ctx = await manager.update(
        ctx,
        ContextDelta(
            user_state={"activity": "cooking", "bogus": 1},
            environment={"temperature": 26.0},
            long_term={"likes": ["jazz"]},
            devices_active=frozenset({"kitchen-sensor"}),
            device_attributes={"kitchen.light": {"power": "on"}},
        ),
    )
    ctx = await manager.update(
        ctx,
        ContextDelta(long_term={"likes": ["rock"]}, devices_inactive=frozenset({"kitchen-sensor"})),
    )

    assert ctx.user_state.activity == "cooking"
    assert ctx.environment_state.temperature == 26.0
    assert ctx.long_term_memory["likes"] == ["jazz", "rock"]
    assert ctx.device_state.active_devices == set()
    assert ctx.device_state.attributes["kitchen.light"] == {"power": "on"}


@pytest.mark.asyncio
async def test_active_device_is_bound_to_session(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    await manager.update(ctx, ContextDelta(devices_active=frozenset({"hall-sensor"})))
    bound = await manager.get_by_device_id("hall-sensor")
    assert bound is not None
    assert bound.key == ContextKey("u1", "s1")
    assert await manager.get_by_device_id("unknown-device") is None


@pytest.mark.asyncio
async def test_durable_write_happens_in_background(manager: ContextManager, durable):
    ctx = await manager.get_or_create("u1", "s1")
    await manager.update(ctx, ContextDelta(turns=(_user_turn("persist me"),)))
    await manager.flush()
    assert manager.pending_writes == 0

    doc = await durable.get(ContextKey("u1", "s1"))
    assert doc["history"][-1]["text"] == "persist me"
    assert doc["version"] == 1


@pytest.mark.asyncio
async def test_cache_outage_writes_durable_synchronously(cache, durable):
    manager = ContextManager(TieredContextStore(cache, durable, ttl_seconds=60))
    ctx = await manager.get_or_create("u1", "s1")
    cache.available = False

    await manager.update(ctx, ContextDelta(turns=(_user_turn("degraded"),)))
    assert manager.pending_writes == 0
    doc = await durable.get(ContextKey("u1", "s1"))
    assert doc["history"][-1]["text"] == "degraded"


@pytest.mark.asyncio
async def test_cache_failover_keeps_update_still_queued_for_durable(cache, durable):
    manager = ContextManager(TieredContextStore(cache, durable, ttl_seconds=60))
    ctx = await manager.get_or_create("u1", "s1")

    await manager.update(ctx, ContextDelta(turns=(_user_turn("first"),)))
    assert manager.pending_writes == 1  # durable write not landed yet
    cache.available = False

    await manager.update(ctx, ContextDelta(turns=(_user_turn("second"),)))
    await manager.flush()

    doc = await durable.get(ContextKey("u1", "s1"))
    assert [t["text"] for t in doc["history"]] == ["first", "second"]
    assert doc["version"] == 2



@pytest.mark.asyncio
async def test_update_keeps_enrichment_bookkeeping(manager: ContextManager):
    ctx = await manager.get_or_create("u1", "s1")
    ctx.patterns = {"wake_time": "07:00"}
    updated = await manager.update(ctx, ContextDelta(short_term={"a": 1}))
    assert updated.patterns == {"wake_time": "07:00"}
