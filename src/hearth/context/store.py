"""
Tiered context store — fast cache in front of the durable record.

Read path:  cache → durable → miss.  A durable hit is written back to
the cache. Every hit slides the cache TTL.

Degradation:
- durable tier down → cache-only, warning logged
- cache tier down   → durable-only (slower), warning logged
- both down         → ContextUnavailable

The store knows nothing about locking or deltas; that is the
ContextManager's job.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from hearth.context.cache import ContextCache
from hearth.context.durable import SqliteContextStore
from hearth.context.models import ContextKey
from hearth.core.errors import ContextUnavailable, StoreError
from hearth.core.metrics import metrics

logger = logging.getLogger(__name__)


class TieredContextStore:
    """Two-level storage for context documents."""

    def __init__(
        self,
        cache: ContextCache,
        durable: SqliteContextStore,
        ttl_seconds: int = 24 * 60 * 60,
    ) -> None:
        self.cache = cache
        self.durable = durable
        self.ttl_seconds = ttl_seconds

    # ─── Read ─────────────────────────────────────────────────────

    async def load(
        self,
        key: ContextKey,
        settle: Callable[[], Awaitable[None]] | None = None,
    ) -> dict | None:
        """Return the stored document for *key*, or None if neither tier has it.

        ``settle`` is awaited before the durable tier is read, so a caller
        can let its own in-flight durable writes land first.
        """
        cache_error: StoreError | None = None
        try:
            doc = await self.cache.get(key)
        except StoreError as e:
            cache_error = e
            doc = None
            self._degraded("cache", "read", key, e)

        if doc is not None:
            metrics.inc("context.load", labels={"tier": "cache"})
            await self._touch(key)
            return doc

        if settle is not None:
            await settle()
        try:
            doc = await self.durable.get(key)
        except StoreError as e:
            if cache_error is not None:
                raise ContextUnavailable(key.user_id, key.session_id, e) from e
            self._degraded("durable", "read", key, e)
            metrics.inc("context.load", labels={"tier": "none"})
            return None

        if doc is None:
            metrics.inc("context.load", labels={"tier": "none"})
            return None

        metrics.inc("context.load", labels={"tier": "durable"})
        if cache_error is None:
            try:
                await self.cache.set(key, doc, self.ttl_seconds)
            except StoreError as e:
                self._degraded("cache", "write-back", key, e)
        return doc

    async def _touch(self, key: ContextKey) -> None:
        try:
            await self.cache.touch(key, self.ttl_seconds)
        except StoreError as e:
            self._degraded("cache", "touch", key, e)

    # ─── Write ────────────────────────────────────────────────────

    async def save_fast(self, document: dict) -> bool:
        """Write the cache tier now.

        Returns True if the cache accepted the write. When it did not, the
        durable tier is written synchronously instead so the update is not
        lost; if that fails too the turn cannot proceed.
        """
        key = ContextKey(document["user_id"], document["session_id"])
        try:
            await self.cache.set(key, document, self.ttl_seconds)
            return True
        except StoreError as e:
            self._degraded("cache", "write", key, e)

        try:
            await self.durable.put(document)
        except StoreError as e:
            raise ContextUnavailable(key.user_id, key.session_id, e) from e
        return False

    async def save_durable(self, document: dict) -> None:
        """Write the durable tier. Failures are logged, never raised."""
        key = ContextKey(document["user_id"], document["session_id"])
        try:
            written = await self.durable.put(document)
        except StoreError as e:
            self._degraded("durable", "write", key, e)
            return
        if not written:
            logger.debug("Skipped stale durable write for %s", key)
            metrics.inc("context.durable.stale_write")

    # ─── Device bindings ──────────────────────────────────────────

    async def bind_device(self, device_id: str, key: ContextKey) -> None:
        cache_ok = durable_ok = True
        try:
            await self.cache.bind_device(device_id, key, self.ttl_seconds)
        except StoreError as e:
            cache_ok = False
            self._degraded("cache", "bind", key, e)
        try:
            await self.durable.bind_device(device_id, key)
        except StoreError as e:
            durable_ok = False
            self._degraded("durable", "bind", key, e)
        if not (cache_ok or durable_ok):
            raise ContextUnavailable(key.user_id, key.session_id)

    async def lookup_device(self, device_id: str) -> ContextKey | None:
        cache_error: StoreError | None = None
        try:
            key = await self.cache.lookup_device(device_id)
            if key is not None:
                return key
        except StoreError as e:
            cache_error = e
            logger.warning("Cache device lookup failed for %s: %s", device_id, e)
        try:
            return await self.durable.lookup_device(device_id)
        except StoreError as e:
            if cache_error is not None:
                raise ContextUnavailable("?", f"device:{device_id}", e) from e
            logger.warning("Durable device lookup failed for %s: %s", device_id, e)
            return None

    # ─── Internal ─────────────────────────────────────────────────

    def _degraded(self, tier: str, op: str, key: ContextKey, error: Exception) -> None:
        logger.warning(
            "Context %s tier %s failed for %s, continuing degraded: %s",
            tier,
            op,
            key,
            error,
            extra={"user_id": key.user_id, "session_id": key.session_id},
        )
        metrics.inc("context.tier.degraded", labels={"tier": tier, "op": op})
