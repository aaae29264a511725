"""Key-value blob backends for persisting the memory store."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import aiosqlite

from hybrid_recall.logging import get_logger
from hybrid_recall.recency import utcnow_iso

log = get_logger(__name__)


class KeyValueBackend(Protocol):
    """Opaque blob store addressed by ``(store_name, key)``."""

    async def get(self, store_name: str, key: str) -> bytes | None:
        """Return the stored blob, or None when absent."""

    async def set(self, store_name: str, key: str, value: bytes) -> None:
        """Store a blob, replacing any previous value."""


class InMemoryKeyValueStore:
    """Process-local backend; contents vanish with the process."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], bytes] = {}

    async def get(self, store_name: str, key: str) -> bytes | None:
        return self._data.get((store_name, key))

    async def set(self, store_name: str, key: str, value: bytes) -> None:
        self._data[(store_name, key)] = bytes(value)

    def __contains__(self, item: tuple[str, str]) -> bool:
        return item in self._data


class SQLiteKeyValueStore:
    """File-backed blob store on top of aiosqlite."""

    def __init__(self, db_path: Path | str):
        """Initialize the store.

        Args:
            db_path: SQLite database file; parent directories are created
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: aiosqlite.Connection | None = None

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            self._db = await aiosqlite.connect(str(self.db_path))
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS kv_blobs (
                    store_name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (store_name, key)
                )
            """)
            await self._db.commit()
        return self._db

    async def get(self, store_name: str, key: str) -> bytes | None:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT value FROM kv_blobs WHERE store_name = ? AND key = ?",
            (store_name, key),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return bytes(row[0])

    async def set(self, store_name: str, key: str, value: bytes) -> None:
        db = await self._ensure_db()
        await db.execute(
            """
            INSERT INTO kv_blobs (store_name, key, value, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(store_name, key) DO UPDATE SET
                value=excluded.value,
                updated_at=excluded.updated_at
            """,
            (store_name, key, bytes(value), utcnow_iso()),
        )
        await db.commit()
        log.debug("Stored blob", store_name=store_name, key=key, size=len(value))

    async def close(self) -> None:
        """Close database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
