"""
Keyed lock table — one asyncio.Lock per session key.

Locks are created on first use and reaped once they have been idle
(unlocked, no waiters) for ``idle_seconds``. Unrelated sessions never
contend with each other.

Usage:
    locks = KeyedLockTable()
    async with locks.hold(str(context.key)):
        ...  # read-modify-write for this session only
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # Holders + waiters
    last_used: float = 0.0


class KeyedLockTable:
    """Lazily created per-key mutexes with idle garbage collection."""

    def __init__(
        self,
        idle_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._ops_since_sweep = 0

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            entry.last_used = self._clock()
            self._maybe_sweep()

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def sweep(self) -> int:
        """Drop idle locks. Returns how many were removed."""
        now = self._clock()
        stale = [
            key
            for key, entry in self._entries.items()
            if entry.users == 0 and now - entry.last_used >= self._idle_seconds
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _maybe_sweep(self) -> None:
        self._ops_since_sweep += 1
        if self._ops_since_sweep >= 256:
            self._ops_since_sweep = 0
            self.sweep()

    def __len__(self) -> int:
        return len(self._entries)
