"""Whole-store blob persistence for the SQLite memory index."""

from __future__ import annotations

import sqlite3

from hybrid_recall.exceptions import CorruptPersistedStateError, StorageIOError
from hybrid_recall.kv_store import KeyValueBackend
from hybrid_recall.logging import get_logger

log = get_logger(__name__)

DEFAULT_STORE_NAME = "hybrid-recall-memory"
DEFAULT_STORE_KEY = "sqlite"


def open_memory_connection() -> sqlite3.Connection:
    return sqlite3.connect(":memory:")


class PersistenceManager:
    """Serializes the in-memory SQLite store to one blob in a key-value backend.

    Persistence is whole-blob: every ``persist`` rewrites the full store, so
    bulk writers should batch mutations and persist once.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        store_name: str = DEFAULT_STORE_NAME,
        key: str = DEFAULT_STORE_KEY,
    ):
        self.backend = backend
        self.store_name = store_name
        self.key = key

    async def persist(self, conn: sqlite3.Connection) -> int:
        """Write the serialized store; returns the blob size in bytes."""
        blob = conn.serialize()
        try:
            await self.backend.set(self.store_name, self.key, blob)
        except Exception as exc:
            raise StorageIOError("write", self.store_name, self.key, str(exc)) from exc
        log.debug("Memory store persisted", store_name=self.store_name, key=self.key, size=len(blob))
        return len(blob)

    async def restore(self) -> bytes | None:
        """Read the persisted blob, or None when nothing was stored yet."""
        try:
            blob = await self.backend.get(self.store_name, self.key)
        except Exception as exc:
            raise StorageIOError("read", self.store_name, self.key, str(exc)) from exc
        if blob is None:
            return None
        return bytes(blob)

    async def has_persisted(self) -> bool:
        return await self.restore() is not None

    def load(self, blob: bytes, *, schema_version: int) -> sqlite3.Connection:
        """Deserialize a blob into a fresh in-memory connection.

        Raises:
            CorruptPersistedStateError: the blob is not a readable SQLite
                database or carries a different schema version
        """
        conn = open_memory_connection()
        try:
            conn.deserialize(blob)
            version = int(conn.execute("PRAGMA user_version").fetchone()[0])
            conn.execute("SELECT name FROM sqlite_master").fetchall()
        except (sqlite3.DatabaseError, ValueError, OverflowError) as exc:
            conn.close()
            raise CorruptPersistedStateError(f"deserialize failed: {exc}") from exc
        if version != schema_version:
            conn.close()
            raise CorruptPersistedStateError(
                f"schema version {version} does not match {schema_version}"
            )
        return conn
