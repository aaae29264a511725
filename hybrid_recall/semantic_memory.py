"""Persistent chunk index with FTS5/substring keyword search, vectors and RRF."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import json
import math
import re
import sqlite3
from typing import Any

from hybrid_recall.chunking import (
    DEFAULT_CHUNK_OVERLAP_CHARS,
    DEFAULT_CHUNK_TARGET_CHARS,
    Chunk,
    chunk_markdown,
    sha256_text,
)
from hybrid_recall.exceptions import CorruptPersistedStateError, InitializationError
from hybrid_recall.hybrid import (
    DEFAULT_KEYWORD_WEIGHT,
    DEFAULT_RRF_K,
    DEFAULT_VECTOR_WEIGHT,
    cosine_similarity,
    merge_hybrid_results,
    parse_embedding,
)
from hybrid_recall.kv_store import KeyValueBackend
from hybrid_recall.logging import get_logger
from hybrid_recall.persistence import (
    DEFAULT_STORE_KEY,
    DEFAULT_STORE_NAME,
    PersistenceManager,
    open_memory_connection,
)
from hybrid_recall.recency import (
    DEFAULT_HALF_LIFE_DAYS,
    DEFAULT_RECENCY_WEIGHT,
    apply_recency,
    utcnow,
)
from hybrid_recall.tokenizer import tokenize, unique_tokens

log = get_logger(__name__)

SCHEMA_VERSION = 1
DEFAULT_MAX_FALLBACK_TERMS = 12

_BASE_SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS files (
    path TEXT PRIMARY KEY,
    hash TEXT NOT NULL,
    mtime INTEGER NOT NULL,
    size INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    path TEXT NOT NULL,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    hash TEXT NOT NULL,
    text TEXT NOT NULL,
    embedding TEXT,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path);

CREATE TABLE IF NOT EXISTS embedding_cache (
    text_hash TEXT PRIMARY KEY,
    embedding TEXT NOT NULL,
    model TEXT NOT NULL,
    created_at TEXT NOT NULL
);

PRAGMA user_version = {SCHEMA_VERSION};
"""

_REQUIRED_COLUMNS = {
    "files": {"path", "hash", "mtime", "size"},
    "chunks": {"id", "path", "start_line", "end_line", "hash", "text", "embedding", "updated_at"},
    "embedding_cache": {"text_hash", "embedding", "model", "created_at"},
}

# Terms hold the shared tokenizer output joined by spaces, so FTS5 sees the
# same tokens the query builder emits (CJK characters included).
_FTS_SCHEMA_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    terms,
    id UNINDEXED,
    path UNINDEXED
)
"""


class IndexState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class SearchCapability(Enum):
    """Keyword search strategy chosen once at startup."""

    ACCELERATED = "accelerated"
    SUBSTRING_FALLBACK = "substring_fallback"


@dataclass
class MemorySearchResult:
    """One persistent-memory hit."""

    id: str
    path: str
    start_line: int
    end_line: int
    text: str
    score: float
    updated_at: str = ""


def fts5_available() -> bool:
    """Whether this interpreter's SQLite build ships the FTS5 module."""
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE VIRTUAL TABLE fts_probe USING fts5(body)")
        return True
    except sqlite3.OperationalError:
        return False
    finally:
        conn.close()


def detect_search_capability(full_text_search: bool = True) -> SearchCapability:
    if not full_text_search:
        log.info("Full-text search disabled by configuration; using substring fallback")
        return SearchCapability.SUBSTRING_FALLBACK
    if fts5_available():
        return SearchCapability.ACCELERATED
    log.warning("FTS5 unavailable; using substring keyword fallback")
    return SearchCapability.SUBSTRING_FALLBACK


def fts_terms(text: str) -> str:
    return " ".join(tokenize(text))


def build_fts_query(query: str) -> str | None:
    """OR-combined prefix phrases for FTS5 MATCH, or None when nothing is searchable."""
    tokens = [token for token in unique_tokens(query) if any(ch.isalnum() for ch in token)]
    if not tokens:
        return None
    return " OR ".join(f'"{token.replace(chr(34), chr(34) * 2)}"*' for token in tokens)


def escape_like(text: str) -> str:
    return re.sub(r"([\\%_])", r"\\\1", text)


def bm25_rank_to_score(rank: float) -> float:
    """Map FTS5 bm25() rank (more negative is better) into (0, 1)."""
    if not math.isfinite(rank):
        return 0.0
    return 1.0 / (1.0 + math.exp(min(rank, 700.0)))


def _sql_lower(value: Any) -> str:
    return str(value or "").lower()


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE name = ?",
        (name,),
    ).fetchone()
    return row is not None


class SemanticMemoryIndex:
    """SQLite-backed memory-file index persisted as a single blob."""

    def __init__(
        self,
        *,
        backend: KeyValueBackend,
        store_name: str = DEFAULT_STORE_NAME,
        store_key: str = DEFAULT_STORE_KEY,
        chunk_target_chars: int = DEFAULT_CHUNK_TARGET_CHARS,
        chunk_overlap_chars: int = DEFAULT_CHUNK_OVERLAP_CHARS,
        full_text_search: bool = True,
        max_fallback_terms: int = DEFAULT_MAX_FALLBACK_TERMS,
        keyword_weight: float = DEFAULT_KEYWORD_WEIGHT,
        vector_weight: float = DEFAULT_VECTOR_WEIGHT,
        rrf_k: int = DEFAULT_RRF_K,
        recency_half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        recency_weight: float = DEFAULT_RECENCY_WEIGHT,
        clock: Callable[[], datetime] | None = None,
    ):
        self.chunk_target_chars = max(1, int(chunk_target_chars))
        self.chunk_overlap_chars = max(0, int(chunk_overlap_chars))
        self.full_text_search = bool(full_text_search)
        self.max_fallback_terms = max(1, int(max_fallback_terms))
        self.keyword_weight = max(0.0, float(keyword_weight))
        self.vector_weight = max(0.0, float(vector_weight))
        self.rrf_k = max(0, int(rrf_k))
        self.recency_half_life_days = float(recency_half_life_days)
        self.recency_weight = float(recency_weight)
        self._clock = clock or utcnow
        self._persistence = PersistenceManager(backend, store_name=store_name, key=store_key)
        self._conn: sqlite3.Connection | None = None
        self._state = IndexState.UNINITIALIZED
        self._capability: SearchCapability | None = None
        self._init_task: asyncio.Future[None] | None = None

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is IndexState.READY and self._conn is not None

    @property
    def capability(self) -> SearchCapability | None:
        return self._capability

    @property
    def persistence(self) -> PersistenceManager:
        return self._persistence

    async def init(self) -> None:
        """Restore or create the store; concurrent callers share one initialization."""
        if self.ready:
            return
        if self._init_task is None:
            task = asyncio.ensure_future(self._initialize())
            task.add_done_callback(self._clear_init_task)
            self._init_task = task
        await asyncio.shield(self._init_task)

    def _clear_init_task(self, task: asyncio.Future[None]) -> None:
        if self._init_task is task:
            self._init_task = None

    async def _initialize(self) -> None:
        self._state = IndexState.INITIALIZING
        try:
            if self._capability is None:
                self._capability = detect_search_capability(self.full_text_search)
            blob = await self._persistence.restore()
            conn, discarded = self._open_store(blob)
            self._conn = conn
            try:
                backfilled = self._apply_schema(conn)
            except sqlite3.Error as exc:
                raise InitializationError(f"Failed to build memory schema: {exc}") from exc
            if discarded or backfilled:
                await self._persistence.persist(conn)
            file_count = int(conn.execute("SELECT count(*) FROM files").fetchone()[0])
        except sqlite3.Error as exc:
            self._drop_connection()
            self._state = IndexState.UNINITIALIZED
            raise InitializationError(f"Failed to open memory store: {exc}") from exc
        except BaseException:
            self._drop_connection()
            self._state = IndexState.UNINITIALIZED
            raise
        self._state = IndexState.READY
        log.info(
            "Memory index ready",
            capability=self._capability.value,
            restored=blob is not None and not discarded,
            files=file_count,
        )

    def _open_store(self, blob: bytes | None) -> tuple[sqlite3.Connection, bool]:
        if blob is not None:
            try:
                conn = self._persistence.load(blob, schema_version=SCHEMA_VERSION)
                self._check_restored_schema(conn)
                return conn, False
            except CorruptPersistedStateError as exc:
                log.warning("Discarding persisted memory store and starting empty", reason=exc.reason)
                return self._new_connection(), True
        return self._new_connection(), False

    def _new_connection(self) -> sqlite3.Connection:
        try:
            return open_memory_connection()
        except sqlite3.Error as exc:
            raise InitializationError(f"Failed to open SQLite: {exc}") from exc

    def _check_restored_schema(self, conn: sqlite3.Connection) -> None:
        """Reject restored stores whose tables or FTS setup this process cannot use."""
        try:
            for table, required in _REQUIRED_COLUMNS.items():
                if not _table_exists(conn, table):
                    continue
                columns = {str(row[1]) for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
                missing = required - columns
                if missing:
                    raise CorruptPersistedStateError(
                        f"table {table} lacks columns {', '.join(sorted(missing))}"
                    )
            has_fts = _table_exists(conn, "chunks_fts")
            if has_fts and self._capability is SearchCapability.SUBSTRING_FALLBACK:
                raise CorruptPersistedStateError("store requires the FTS5 module")
            if has_fts:
                conn.execute("SELECT count(*) FROM chunks_fts").fetchone()
        except CorruptPersistedStateError:
            conn.close()
            raise
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise CorruptPersistedStateError(f"restored schema unreadable: {exc}") from exc

    def _apply_schema(self, conn: sqlite3.Connection) -> bool:
        """Create missing tables; returns True when FTS rows were back-filled."""
        conn.executescript(_BASE_SCHEMA_SQL)
        conn.create_function("recall_lower", 1, _sql_lower, deterministic=True)
        if self._capability is not SearchCapability.ACCELERATED:
            return False
        if _table_exists(conn, "chunks_fts"):
            return False
        conn.execute(_FTS_SCHEMA_SQL)
        rows = conn.execute("SELECT id, path, text FROM chunks").fetchall()
        if not rows:
            conn.commit()
            return False
        with conn:
            conn.executemany(
                "INSERT INTO chunks_fts (terms, id, path) VALUES (?, ?, ?)",
                [(fts_terms(str(row[2])), str(row[0]), str(row[1])) for row in rows],
            )
        log.info("Back-filled full-text index from restored chunks", chunks=len(rows))
        return True

    def _drop_connection(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                log.debug("Ignoring error while closing memory store", error=str(exc))
            self._conn = None

    def _ready_conn(self, operation: str) -> sqlite3.Connection | None:
        if self.ready:
            return self._conn
        log.debug("Memory index not ready", operation=operation, state=self._state.value)
        return None

    def close(self) -> None:
        """Close the store; call init() again before reuse."""
        self._drop_connection()
        self._init_task = None
        self._state = IndexState.CLOSED

    async def persist(self) -> None:
        """Serialize the whole store into the key-value backend."""
        conn = self._ready_conn("persist")
        if conn is None:
            log.warning("Skipping persist; memory index not ready", state=self._state.value)
            return
        await self._persistence.persist(conn)

    async def has_persisted(self) -> bool:
        return await self._persistence.has_persisted()

    async def index_file(self, path: str, content: str, *, persist: bool = True) -> bool:
        """Chunk and index one file; returns False when the content is unchanged.

        Pass ``persist=False`` when indexing many files and call ``persist()``
        once at the end.
        """
        conn = self._ready_conn("index_file")
        if conn is None:
            log.warning("Skipping index_file; memory index not ready", path=path)
            return False
        changed = self._replace_file(conn, path, content)
        if changed and persist:
            await self._persistence.persist(conn)
        return changed

    async def index_files(self, files: Iterable[tuple[str, str]]) -> int:
        """Index many ``(path, content)`` pairs with a single terminal persist."""
        conn = self._ready_conn("index_files")
        if conn is None:
            log.warning("Skipping index_files; memory index not ready")
            return 0
        changed = 0
        for path, content in files:
            if self._replace_file(conn, path, content):
                changed += 1
        if changed:
            await self._persistence.persist(conn)
        return changed

    async def remove_file(self, path: str) -> None:
        """Drop a file's chunks, full-text rows and file record, then persist."""
        conn = self._ready_conn("remove_file")
        if conn is None:
            log.warning("Skipping remove_file; memory index not ready", path=path)
            return
        with conn:
            self._delete_file_rows(conn, path)
        await self._persistence.persist(conn)

    def _replace_file(self, conn: sqlite3.Connection, path: str, content: str) -> bool:
        content_hash = sha256_text(content)
        row = conn.execute("SELECT hash FROM files WHERE path = ?", (path,)).fetchone()
        if row is not None and row[0] == content_hash:
            return False

        now = self._clock()
        chunks = chunk_markdown(
            content,
            path,
            target_chars=self.chunk_target_chars,
            overlap_chars=self.chunk_overlap_chars,
            updated_at=now.isoformat(),
        )
        previous_embeddings = {
            str(r[0]): r[1]
            for r in conn.execute(
                "SELECT id, embedding FROM chunks WHERE path = ? AND embedding IS NOT NULL",
                (path,),
            ).fetchall()
        }
        with conn:
            self._delete_file_rows(conn, path)
            conn.execute(
                "INSERT OR REPLACE INTO files (path, hash, mtime, size) VALUES (?, ?, ?, ?)",
                (path, content_hash, int(now.timestamp() * 1000), len(content)),
            )
            conn.executemany(
                """
                INSERT OR REPLACE INTO chunks (
                    id, path, start_line, end_line, hash, text, embedding, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.path,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.content_hash,
                        chunk.text,
                        previous_embeddings.get(chunk.id),
                        chunk.updated_at,
                    )
                    for chunk in chunks
                ],
            )
            if self._capability is SearchCapability.ACCELERATED:
                conn.executemany(
                    "INSERT INTO chunks_fts (terms, id, path) VALUES (?, ?, ?)",
                    [(fts_terms(chunk.text), chunk.id, chunk.path) for chunk in chunks],
                )
        log.debug("Indexed memory file", path=path, chunks=len(chunks))
        return True

    def _delete_file_rows(self, conn: sqlite3.Connection, path: str) -> None:
        if self._capability is SearchCapability.ACCELERATED:
            conn.execute(
                "DELETE FROM chunks_fts WHERE id IN (SELECT id FROM chunks WHERE path = ?)",
                (path,),
            )
        conn.execute("DELETE FROM chunks WHERE path = ?", (path,))
        conn.execute("DELETE FROM files WHERE path = ?", (path,))

    def search_keyword(
        self,
        query: str,
        limit: int = 10,
        source_path: str | None = None,
    ) -> list[MemorySearchResult]:
        """Keyword search through the strategy picked at startup."""
        conn = self._ready_conn("search_keyword")
        if conn is None or limit <= 0:
            return []
        if self._capability is SearchCapability.ACCELERATED:
            return self._search_keyword_fts(conn, query, limit, source_path)
        return self._search_keyword_substring(conn, query, limit, source_path)

    def _search_keyword_fts(
        self,
        conn: sqlite3.Connection,
        query: str,
        limit: int,
        source_path: str | None,
    ) -> list[MemorySearchResult]:
        fts_query = build_fts_query(query)
        if not fts_query:
            return []
        sql = """
            SELECT c.id, c.path, c.start_line, c.end_line, c.text, bm25(chunks_fts) AS rank, c.updated_at
            FROM chunks_fts
            JOIN chunks c ON c.id = chunks_fts.id
            WHERE chunks_fts MATCH ?
        """
        params: list[Any] = [fts_query]
        if source_path:
            sql += " AND c.path = ?"
            params.append(source_path)
        sql += " ORDER BY rank LIMIT ?"
        params.append(limit * 3)
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError as exc:
            log.debug("FTS query rejected", query=query, error=str(exc))
            return []
        results = [
            MemorySearchResult(
                id=str(row[0]),
                path=str(row[1]),
                start_line=int(row[2]),
                end_line=int(row[3]),
                text=str(row[4]),
                score=bm25_rank_to_score(float(row[5])),
                updated_at=str(row[6]),
            )
            for row in rows
        ]
        return self._apply_recency(results)[:limit]

    def _search_keyword_substring(
        self,
        conn: sqlite3.Connection,
        query: str,
        limit: int,
        source_path: str | None,
    ) -> list[MemorySearchResult]:
        tokens = unique_tokens(query, limit=self.max_fallback_terms)
        if not tokens:
            return []
        lowered_query = str(query).lower()
        clauses = " OR ".join("recall_lower(text) LIKE ? ESCAPE '\\'" for _ in tokens)
        params: list[Any] = [f"%{escape_like(token)}%" for token in tokens]
        sql = f"""
            SELECT id, path, start_line, end_line, text, updated_at
            FROM chunks
            WHERE ({clauses})
        """
        if source_path:
            sql += " AND path = ?"
            params.append(source_path)
        # Chunks containing the literal query go first so the pool cap never drops them.
        sql += " ORDER BY instr(recall_lower(text), ?) > 0 DESC, updated_at DESC LIMIT ?"
        params.extend([lowered_query, max(limit * 8, 40)])
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError as exc:
            log.debug("Substring query rejected", query=query, error=str(exc))
            return []

        results: list[MemorySearchResult] = []
        for row in rows:
            text = str(row[4])
            lowered = text.lower()
            hits = sum(1 for token in tokens if token in lowered)
            exact = 1 if lowered_query and lowered_query in lowered else 0
            results.append(
                MemorySearchResult(
                    id=str(row[0]),
                    path=str(row[1]),
                    start_line=int(row[2]),
                    end_line=int(row[3]),
                    text=text,
                    score=(hits + exact) / (len(tokens) + 1),
                    updated_at=str(row[5]),
                )
            )
        return self._apply_recency(results)[:limit]

    def _apply_recency(self, results: list[MemorySearchResult]) -> list[MemorySearchResult]:
        return apply_recency(
            results,
            get_time=lambda item: item.updated_at,
            now=self._clock(),
            half_life_days=self.recency_half_life_days,
            weight=self.recency_weight,
        )

    def search_vector(self, embedding: Sequence[float], limit: int = 10) -> list[MemorySearchResult]:
        """Cosine similarity over chunks that carry a stored embedding."""
        conn = self._ready_conn("search_vector")
        if conn is None or limit <= 0:
            return []
        query_vec = parse_embedding(list(embedding))
        if query_vec is None:
            return []
        rows = conn.execute(
            """
            SELECT id, path, start_line, end_line, text, embedding, updated_at
            FROM chunks
            WHERE embedding IS NOT NULL
            """
        ).fetchall()
        scored: list[MemorySearchResult] = []
        skipped = 0
        for row in rows:
            try:
                vector = parse_embedding(json.loads(str(row[5])))
            except json.JSONDecodeError:
                vector = None
            if vector is None or len(vector) != len(query_vec):
                skipped += 1
                continue
            scored.append(
                MemorySearchResult(
                    id=str(row[0]),
                    path=str(row[1]),
                    start_line=int(row[2]),
                    end_line=int(row[3]),
                    text=str(row[4]),
                    score=cosine_similarity(query_vec, vector),
                    updated_at=str(row[6]),
                )
            )
        if skipped:
            log.debug("Skipped unusable chunk embeddings", skipped=skipped)
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:limit]

    def search_hybrid(
        self,
        query: str,
        embedding: Sequence[float] | None = None,
        limit: int = 10,
    ) -> list[MemorySearchResult]:
        """Keyword search fused with vector search when an embedding is given."""
        if limit <= 0:
            return []
        keyword_results = self.search_keyword(query, limit * 2)
        if embedding is None:
            return keyword_results[:limit]
        vector_results = self.search_vector(embedding, limit * 2)
        return merge_hybrid_results(
            keyword_results,
            vector_results,
            limit,
            keyword_weight=self.keyword_weight,
            vector_weight=self.vector_weight,
            k=self.rrf_k,
        )

    def set_chunk_embedding(self, chunk_id: str, embedding: Sequence[float] | None) -> bool:
        """Attach (or clear with None) a chunk's embedding; returns False for unknown ids."""
        conn = self._ready_conn("set_chunk_embedding")
        if conn is None:
            return False
        payload = None if embedding is None else json.dumps([float(v) for v in embedding])
        with conn:
            cursor = conn.execute("UPDATE chunks SET embedding = ? WHERE id = ?", (payload, chunk_id))
        return cursor.rowcount > 0

    def cache_embedding(self, text: str, embedding: Sequence[float], model: str) -> None:
        conn = self._ready_conn("cache_embedding")
        if conn is None:
            return
        with conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO embedding_cache (text_hash, embedding, model, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    sha256_text(text),
                    json.dumps([float(v) for v in embedding]),
                    str(model),
                    self._clock().isoformat(),
                ),
            )

    def get_cached_embedding(self, text: str, model: str | None = None) -> list[float] | None:
        """Cached vector for this exact text, optionally only for one model."""
        conn = self._ready_conn("get_cached_embedding")
        if conn is None:
            return None
        row = conn.execute(
            "SELECT embedding, model FROM embedding_cache WHERE text_hash = ?",
            (sha256_text(text),),
        ).fetchone()
        if row is None:
            return None
        if model is not None and str(row[1]) != model:
            return None
        try:
            vector = parse_embedding(json.loads(str(row[0])))
        except json.JSONDecodeError as exc:
            log.debug("Skipping malformed cached embedding", error=str(exc))
            return None
        if vector is None:
            log.debug("Skipping malformed cached embedding", error="not a numeric list")
        return vector

    def has_file(self, path: str) -> bool:
        conn = self._ready_conn("has_file")
        if conn is None:
            return False
        return conn.execute("SELECT 1 FROM files WHERE path = ?", (path,)).fetchone() is not None

    def list_files(self) -> list[str]:
        conn = self._ready_conn("list_files")
        if conn is None:
            return []
        return [str(row[0]) for row in conn.execute("SELECT path FROM files ORDER BY path").fetchall()]

    def get_chunks(self, path: str) -> list[Chunk]:
        """Stored chunks of one file in line order."""
        conn = self._ready_conn("get_chunks")
        if conn is None:
            return []
        rows = conn.execute(
            """
            SELECT id, path, start_line, end_line, hash, text, embedding, updated_at
            FROM chunks
            WHERE path = ?
            ORDER BY start_line
            """,
            (path,),
        ).fetchall()
        chunks: list[Chunk] = []
        for row in rows:
            embedding = None
            if row[6] is not None:
                try:
                    embedding = parse_embedding(json.loads(str(row[6])))
                except json.JSONDecodeError:
                    embedding = None
            chunks.append(
                Chunk(
                    id=str(row[0]),
                    path=str(row[1]),
                    start_line=int(row[2]),
                    end_line=int(row[3]),
                    content_hash=str(row[4]),
                    text=str(row[5]),
                    embedding=embedding,
                    updated_at=str(row[7]),
                )
            )
        return chunks

    def stats(self) -> dict[str, Any]:
        conn = self._ready_conn("stats")
        capability = self._capability.value if self._capability else None
        if conn is None:
            return {"state": self._state.value, "capability": capability}
        fts_rows = 0
        if self._capability is SearchCapability.ACCELERATED:
            fts_rows = int(conn.execute("SELECT count(*) FROM chunks_fts").fetchone()[0])
        return {
            "state": self._state.value,
            "capability": capability,
            "files": int(conn.execute("SELECT count(*) FROM files").fetchone()[0]),
            "chunks": int(conn.execute("SELECT count(*) FROM chunks").fetchone()[0]),
            "fts_rows": fts_rows,
            "embedded_chunks": int(
                conn.execute("SELECT count(*) FROM chunks WHERE embedding IS NOT NULL").fetchone()[0]
            ),
            "cached_embeddings": int(conn.execute("SELECT count(*) FROM embedding_cache").fetchone()[0]),
        }

    def build_context_note(
        self,
        query: str,
        embedding: Sequence[float] | None = None,
        *,
        max_items: int = 3,
        max_snippet_chars: int = 360,
    ) -> tuple[str, str]:
        """Format top hits as a prompt note + debug block."""
        results = self.search_hybrid(query, embedding, limit=max_items)
        if not results:
            return "", "memory_files: no results"
        lines = ["Memory file matches:"]
        debug = [f"memory_files query={query!r}", f"result_count={len(results)}"]
        for item in results:
            snippet = re.sub(r"\s+", " ", item.text).strip()
            if len(snippet) > max_snippet_chars:
                snippet = snippet[:max_snippet_chars].rstrip() + "... [truncated]"
            lines.append(f"- {item.path}:{item.start_line} (score={item.score:.3f}) {snippet}")
            debug.append(
                f"- id={item.id} path={item.path} lines={item.start_line}-{item.end_line} "
                f"score={item.score:.3f}"
            )
        return "\n".join(lines), "\n".join(debug)


def create_semantic_memory_index(
    *,
    config: Any,
    backend: KeyValueBackend,
    clock: Callable[[], datetime] | None = None,
) -> SemanticMemoryIndex:
    """Create the persistent memory index from configuration."""
    return SemanticMemoryIndex(
        backend=backend,
        store_name=config.storage.store_name,
        store_key=config.storage.key,
        chunk_target_chars=config.chunking.target_chars,
        chunk_overlap_chars=config.chunking.overlap_chars,
        full_text_search=config.search.full_text_search,
        max_fallback_terms=config.search.max_fallback_terms,
        keyword_weight=config.search.keyword_weight,
        vector_weight=config.search.vector_weight,
        rrf_k=config.search.rrf_k,
        recency_half_life_days=config.recency.half_life_days,
        recency_weight=config.recency.weight,
        clock=clock,
    )
