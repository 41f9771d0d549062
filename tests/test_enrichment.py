"""Tests for context enrichment from the profile / environment / pattern services."""

import asyncio

import httpx
import pytest

from hearth.context.enrichment import (
    ENVIRONMENT,
    PATTERNS,
    PROFILE,
    ContextEnricher,
    HttpEnrichmentSource,
)
from hearth.context.models import ConversationContext
from hearth.core.metrics import metrics


class StaticSource:
    def __init__(self, name: str, data: dict | None = None, error: Exception | None = None, delay: float = 0):
        self.name = name
        self._data = data or {}
        self._error = error
        self._delay = delay

    async def fetch(self, user_id: str) -> dict:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return self._data


def _ctx() -> ConversationContext:
    return ConversationContext.new("u1", "s1", ttl_seconds=60)


@pytest.mark.asyncio
async def test_all_sources_applied():
    enricher = ContextEnricher(
        [
            StaticSource(PROFILE, {"name": "민수", "language": "ko", "home_location": "living_room"}),
            StaticSource(ENVIRONMENT, {"temperature": 24.5, "humidity": 40}),
            StaticSource(PATTERNS, {"wake_time": "07:00"}),
        ]
    )
    ctx = await enricher.enrich(_ctx())

    assert ctx.user_state.language == "ko"
    assert ctx.user_state.location == "living_room"
    assert ctx.long_term_memory["profile"]["name"] == "민수"
    assert ctx.environment_state.temperature == 24.5
    assert ctx.patterns == {"wake_time": "07:00"}
    assert ctx.enrichment_sources == {PROFILE: True, ENVIRONMENT: True, PATTERNS: True}


@pytest.mark.asyncio
async def test_failed_source_is_partial_not_fatal():
    metrics.reset()
    enricher = ContextEnricher(
        [
            StaticSource(PROFILE, {"name": "민수"}),
            StaticSource(ENVIRONMENT, error=httpx.ConnectError("down")),
        ]
    )
    ctx = await enricher.enrich(_ctx())

    assert ctx.enrichment_sources == {PROFILE: True, ENVIRONMENT: False}
    assert ctx.environment_state.temperature is None
    assert metrics.counter("context.enrichment.failed", labels={"source": ENVIRONMENT}) == 1


@pytest.mark.asyncio
async def test_slow_source_times_out():
    enricher = ContextEnricher([StaticSource(PATTERNS, {"x": 1}, delay=1.0)], timeout=0.05)
    ctx = await enricher.enrich(_ctx())
    assert ctx.enrichment_sources == {PATTERNS: False}
    assert ctx.patterns == {}


@pytest.mark.asyncio
async def test_http_source_fetches_user_document():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/users/u1"
        return httpx.Response(200, json={"temperature": 21})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = HttpEnrichmentSource(ENVIRONMENT, "http://env.local/", client=client)
        assert await source.fetch("u1") == {"temperature": 21}


@pytest.mark.asyncio
async def test_http_source_rejects_non_object():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[1, 2]))
    async with httpx.AsyncClient(transport=transport) as client:
        source = HttpEnrichmentSource(PROFILE, "http://profile.local", client=client)
        with pytest.raises(ValueError):
            await source.fetch("u1")
