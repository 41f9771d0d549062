"""
Fast context tier — TTL-bounded key/value cache.

Contexts are stored as JSON strings keyed by
``hearth:context:{user_id}:{session_id}`` with a sliding TTL.
``hearth:device:{device_id}`` maps a device to the context it talks to.

Two implementations share the same async surface:
- RedisContextCache: redis.asyncio, for multi-process deployments
- MemoryContextCache: in-process dict, for single-node runs and tests

Every failure surfaces as StoreError so the tiered store can degrade.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from hearth.context.models import ContextKey
from hearth.core.errors import StoreError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "hearth"
_CONTEXT_KEY = f"{_PREFIX}:context"
_DEVICE_KEY = f"{_PREFIX}:device"


def context_cache_key(key: ContextKey) -> str:
    return f"{_CONTEXT_KEY}:{key.user_id}:{key.session_id}"


def device_cache_key(device_id: str) -> str:
    return f"{_DEVICE_KEY}:{device_id}"


class ContextCache(Protocol):
    async def get(self, key: ContextKey) -> dict | None: ...

    async def set(self, key: ContextKey, document: dict, ttl: int) -> None: ...

    async def touch(self, key: ContextKey, ttl: int) -> None: ...

    async def delete(self, key: ContextKey) -> None: ...

    async def bind_device(self, device_id: str, key: ContextKey, ttl: int) -> None: ...

    async def lookup_device(self, device_id: str) -> ContextKey | None: ...


def _encode_key(key: ContextKey) -> str:
    return json.dumps({"user_id": key.user_id, "session_id": key.session_id})


def _decode_key(raw: str | bytes) -> ContextKey:
    if isinstance(raw, bytes):
        raw = raw.decode()
    data = json.loads(raw)
    return ContextKey(data["user_id"], data["session_id"])


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisContextCache:
    """Redis-backed fast tier with sliding expiration."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> RedisContextCache:
        return cls(Redis.from_url(url))

    async def close(self) -> None:
        await self._redis.aclose()

    async def get(self, key: ContextKey) -> dict | None:
        try:
            data = await self._redis.get(context_cache_key(key))
        except RedisError as e:
            raise StoreError(f"redis get failed: {e}") from e
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError as e:
            # A corrupt entry is a miss; the durable tier still has the record
            logger.warning("Corrupt cached context %s: %s", key, e)
            return None

    async def set(self, key: ContextKey, document: dict, ttl: int) -> None:
        try:
            await self._redis.set(
                context_cache_key(key),
                json.dumps(document, ensure_ascii=False),
                ex=ttl,
            )
        except RedisError as e:
            raise StoreError(f"redis set failed: {e}") from e

    async def touch(self, key: ContextKey, ttl: int) -> None:
        try:
            await self._redis.expire(context_cache_key(key), ttl)
        except RedisError as e:
            raise StoreError(f"redis expire failed: {e}") from e

    async def delete(self, key: ContextKey) -> None:
        try:
            await self._redis.delete(context_cache_key(key))
        except RedisError as e:
            raise StoreError(f"redis delete failed: {e}") from e

    async def bind_device(self, device_id: str, key: ContextKey, ttl: int) -> None:
        try:
            await self._redis.set(device_cache_key(device_id), _encode_key(key), ex=ttl)
        except RedisError as e:
            raise StoreError(f"redis device bind failed: {e}") from e

    async def lookup_device(self, device_id: str) -> ContextKey | None:
        try:
            raw = await self._redis.get(device_cache_key(device_id))
        except RedisError as e:
            raise StoreError(f"redis device lookup failed: {e}") from e
        return _decode_key(raw) if raw else None


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------


class MemoryContextCache:
    """Dict-backed fast tier with the same TTL semantics as Redis.

    ``clock`` is injectable so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}  # key → (json, expires_at)
        self.available = True  # Flip to False to simulate an outage

    def _check(self) -> None:
        if not self.available:
            raise StoreError("memory cache unavailable")

    def _read(self, raw_key: str) -> str | None:
        entry = self._entries.get(raw_key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[raw_key]
            return None
        return value

    async def get(self, key: ContextKey) -> dict | None:
        self._check()
        value = self._read(context_cache_key(key))
        return json.loads(value) if value is not None else None

    async def set(self, key: ContextKey, document: dict, ttl: int) -> None:
        self._check()
        self._entries[context_cache_key(key)] = (
            json.dumps(document, ensure_ascii=False),
            self._clock() + ttl,
        )

    async def touch(self, key: ContextKey, ttl: int) -> None:
        self._check()
        raw_key = context_cache_key(key)
        value = self._read(raw_key)
        if value is not None:
            self._entries[raw_key] = (value, self._clock() + ttl)

    async def delete(self, key: ContextKey) -> None:
        self._check()
        self._entries.pop(context_cache_key(key), None)

    async def bind_device(self, device_id: str, key: ContextKey, ttl: int) -> None:
        self._check()
        self._entries[device_cache_key(device_id)] = (
            _encode_key(key),
            self._clock() + ttl,
        )

    async def lookup_device(self, device_id: str) -> ContextKey | None:
        self._check()
        value = self._read(device_cache_key(device_id))
        return _decode_key(value) if value is not None else None

    def __len__(self) -> int:
        return sum(1 for k in list(self._entries) if self._read(k) is not None)
