"""
Durable context tier — SQLite-backed document store.

One JSON document per (user_id, session_id), plus a device binding
table so proactive turns can find the context a device belongs to.
Same aiosqlite pattern as the other stores: start() opens the
connection and creates tables, stop() closes it.

Writes are versioned: an upsert whose ``version`` is not newer than the
stored row is ignored, so out-of-order background writes can never
roll a context back.

Usage:
    store = SqliteContextStore(Path("hearth_context.db"))
    await store.start()

    await store.put(context.to_dict())
    doc = await store.get(ContextKey("u1", "s1"))
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path

import aiosqlite

from hearth.context.models import ContextKey
from hearth.core.errors import StoreError

logger = logging.getLogger(__name__)


class SqliteContextStore:
    """
    SQLite-backed context persistence.

    Two tables:
    - contexts: the ConversationContext document per session
    - device_bindings: device_id → (user_id, session_id)
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Initialize the database and create tables."""
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS contexts (
                user_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                document TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                last_interaction_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (user_id, session_id)
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS device_bindings (
                device_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_contexts_user
            ON contexts(user_id, last_interaction_at)
        """)

        await self._db.commit()
        logger.info("SqliteContextStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("SqliteContextStore not started")
        return self._db

    # ─── Contexts ─────────────────────────────────────────────────

    async def get(self, key: ContextKey) -> dict | None:
        """Load a context document, or None if the session was never stored."""
        db = self._conn()
        try:
            async with db.execute(
                "SELECT document FROM contexts WHERE user_id = ? AND session_id = ?",
                (key.user_id, key.session_id),
            ) as cursor:
                row = await cursor.fetchone()
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"sqlite read failed: {e}") from e
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise StoreError(f"corrupt context document for {key}: {e}") from e

    async def put(self, document: dict) -> bool:
        """Upsert a context document. Returns False if the stored version is the same or newer."""
        db = self._conn()
        version = int(document.get("version", 0))
        try:
            cursor = await db.execute(
                """
                INSERT INTO contexts
                    (user_id, session_id, document, version, last_interaction_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, session_id) DO UPDATE SET
                    document = excluded.document,
                    version = excluded.version,
                    last_interaction_at = excluded.last_interaction_at,
                    updated_at = excluded.updated_at
                WHERE excluded.version > contexts.version
                """,
                (
                    document["user_id"],
                    document["session_id"],
                    json.dumps(document, ensure_ascii=False),
                    version,
                    document.get("last_interaction_at", time.time()),
                    time.time(),
                ),
            )
            await db.commit()
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"sqlite write failed: {e}") from e
        return cursor.rowcount > 0

    async def delete(self, key: ContextKey) -> None:
        db = self._conn()
        try:
            await db.execute(
                "DELETE FROM contexts WHERE user_id = ? AND session_id = ?",
                (key.user_id, key.session_id),
            )
            await db.commit()
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"sqlite delete failed: {e}") from e

    async def list_sessions(self, user_id: str, limit: int = 50) -> list[str]:
        """Session ids for a user, most recently active first."""
        db = self._conn()
        try:
            async with db.execute(
                "SELECT session_id FROM contexts WHERE user_id = ? "
                "ORDER BY last_interaction_at DESC LIMIT ?",
                (user_id, limit),
            ) as cursor:
                return [row[0] async for row in cursor]
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"sqlite read failed: {e}") from e

    # ─── Device bindings ──────────────────────────────────────────

    async def bind_device(self, device_id: str, key: ContextKey) -> None:
        db = self._conn()
        try:
            await db.execute(
                """
                INSERT OR REPLACE INTO device_bindings
                    (device_id, user_id, session_id, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (device_id, key.user_id, key.session_id, time.time()),
            )
            await db.commit()
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"sqlite device bind failed: {e}") from e

    async def lookup_device(self, device_id: str) -> ContextKey | None:
        db = self._conn()
        try:
            async with db.execute(
                "SELECT user_id, session_id FROM device_bindings WHERE device_id = ?",
                (device_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"sqlite device lookup failed: {e}") from e
        return ContextKey(row[0], row[1]) if row else None
