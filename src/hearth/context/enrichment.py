"""
Context enrichment — profile, environment and usage-pattern lookups.

Each source is an independent, read-only collaborator keyed by user_id.
Sources are fetched concurrently; any of them may fail or be absent and
the context is returned without that piece.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from hearth.context.models import ConversationContext, merge_long_term
from hearth.core.errors import EnrichmentPartial
from hearth.core.metrics import metrics

logger = logging.getLogger(__name__)

PROFILE = "profile"
ENVIRONMENT = "environment"
PATTERNS = "patterns"


class EnrichmentSource(Protocol):
    name: str

    async def fetch(self, user_id: str) -> dict[str, Any]: ...


class HttpEnrichmentSource:
    """GET {base_url}/users/{user_id} → JSON object."""

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float = 1.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def fetch(self, user_id: str) -> dict[str, Any]:
        url = f"{self._base_url}/users/{user_id}"
        if self._client is not None:
            resp = await self._client.get(url, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"{self.name}: expected object, got {type(data).__name__}")
        return data


class ContextEnricher:
    """Fetches all configured sources and folds them into a context."""

    def __init__(self, sources: list[EnrichmentSource] | None = None, timeout: float = 2.0):
        self._sources = list(sources or [])
        self._timeout = timeout

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self._sources]

    async def enrich(self, context: ConversationContext) -> ConversationContext:
        """Mutates and returns *context*. Never raises for source failures."""
        if not self._sources:
            return context

        results = await asyncio.gather(
            *(self._fetch(source, context.user_id) for source in self._sources),
            return_exceptions=True,
        )

        failed: dict[str, str] = {}
        for source, result in zip(self._sources, results):
            if isinstance(result, BaseException):
                failed[source.name] = type(result).__name__
                context.enrichment_sources[source.name] = False
                continue
            _apply(source.name, result, context)
            context.enrichment_sources[source.name] = True

        if failed:
            err = EnrichmentPartial(failed)
            logger.warning(
                "%s",
                err,
                extra={"user_id": context.user_id, "session_id": context.session_id},
            )
            for name in failed:
                metrics.inc("context.enrichment.failed", labels={"source": name})
        return context

    async def _fetch(self, source: EnrichmentSource, user_id: str) -> dict[str, Any]:
        return await asyncio.wait_for(source.fetch(user_id), timeout=self._timeout)


def _apply(name: str, data: dict[str, Any], context: ConversationContext) -> None:
    if name == PROFILE:
        if data.get("language"):
            context.user_state.language = data["language"]
        if data.get("home_location") and not context.user_state.location:
            context.user_state.location = data["home_location"]
        context.long_term_memory = merge_long_term(
            context.long_term_memory, {"profile": data}
        )
    elif name == ENVIRONMENT:
        env = context.environment_state
        for field_name in (
            "temperature",
            "humidity",
            "light_level",
            "noise_level",
            "last_motion_at",
        ):
            if data.get(field_name) is not None:
                setattr(env, field_name, data[field_name])
    elif name == PATTERNS:
        context.patterns = dict(data)
    else:
        context.patterns.setdefault(name, data)
