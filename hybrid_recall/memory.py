"""Memory facade tying conversation recall to the persistent file index."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from hybrid_recall.config import Config, get_config
from hybrid_recall.conversation_index import (
    ConversationHit,
    ConversationIndex,
    MemoryEntry,
    format_conversation_hits,
)
from hybrid_recall.kv_store import InMemoryKeyValueStore, KeyValueBackend, SQLiteKeyValueStore
from hybrid_recall.logging import get_logger
from hybrid_recall.recency import utcnow_iso
from hybrid_recall.semantic_memory import (
    MemorySearchResult,
    SemanticMemoryIndex,
    create_semantic_memory_index,
)

log = get_logger(__name__)


class MemoryEngine:
    """Two-layer memory:
    1) Conversation memory (transient BM25 over turns),
    2) File memory (persistent chunk index with hybrid retrieval).
    """

    def __init__(
        self,
        *,
        conversation: ConversationIndex,
        files: SemanticMemoryIndex,
        default_limit: int = 10,
        owned_store: SQLiteKeyValueStore | None = None,
    ):
        self.conversation = conversation
        self.files = files
        self.default_limit = max(1, int(default_limit))
        self._owned_store = owned_store

    async def start(
        self,
        entries: Iterable[MemoryEntry] | None = None,
        seed_files: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        """Load turns, open the file index and seed it when it is empty.

        Seeding indexes every file without intermediate persists and writes
        the store once.
        """
        self.conversation.load(entries or [])
        await self.files.init()
        if seed_files is None or self.files.list_files():
            return
        seeded = await self.files.index_files(seed_files)
        if seeded:
            log.info("Seeded memory file index", files=seeded)

    def record_turn(
        self,
        role: str,
        content: str,
        *,
        session_id: str = "",
        timestamp: str | None = None,
    ) -> MemoryEntry:
        entry = MemoryEntry(
            session_id=session_id,
            timestamp=timestamp or utcnow_iso(),
            role=role,
            content=content,
        )
        self.conversation.add(entry)
        return entry

    def recall(self, query: str, limit: int = 5, *, now: datetime | None = None) -> list[ConversationHit]:
        return self.conversation.search(query, limit, now=now)

    def recall_text(self, query: str, limit: int = 5) -> str:
        """Conversation hits rendered for tool output; empty string when none."""
        return format_conversation_hits(self.recall(query, limit))

    async def remember_file(self, path: str, content: str, *, persist: bool = True) -> bool:
        return await self.files.index_file(path, content, persist=persist)

    async def forget_file(self, path: str) -> None:
        await self.files.remove_file(path)

    def search_documents(
        self,
        query: str,
        embedding: Sequence[float] | None = None,
        limit: int | None = None,
    ) -> list[MemorySearchResult]:
        return self.files.search_hybrid(query, embedding, limit or self.default_limit)

    def build_context_note(
        self,
        query: str,
        embedding: Sequence[float] | None = None,
        *,
        max_items: int = 3,
        max_snippet_chars: int = 360,
    ) -> tuple[str, str]:
        """Prompt note combining conversation and file hits + debug block."""
        sections: list[str] = []
        debug: list[str] = []
        hits = self.recall(query, max_items)
        if hits:
            sections.append(
                "Conversation memory matches:\n"
                + format_conversation_hits(hits, max_chars=max_snippet_chars)
            )
        debug.append(f"conversation_memory result_count={len(hits)}")
        file_note, file_debug = self.files.build_context_note(
            query,
            embedding,
            max_items=max_items,
            max_snippet_chars=max_snippet_chars,
        )
        if file_note:
            sections.append(file_note)
        debug.append(file_debug)
        return "\n\n".join(sections), "\n".join(debug)

    async def close(self) -> None:
        self.files.close()
        if self._owned_store is not None:
            await self._owned_store.close()
            self._owned_store = None


def create_memory_engine(
    *,
    config: Config | None = None,
    backend: KeyValueBackend | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MemoryEngine:
    """Create a memory engine from runtime config.

    Without an explicit backend the store lives in the configured SQLite
    key-value file.
    """
    cfg = config or get_config()
    owned_store = None
    store: KeyValueBackend
    if backend is None:
        owned_store = SQLiteKeyValueStore(cfg.resolved_store_path())
        store = owned_store
    else:
        store = backend
    conversation = ConversationIndex(
        k1=cfg.bm25.k1,
        b=cfg.bm25.b,
        half_life_days=cfg.recency.half_life_days,
        recency_weight=cfg.recency.weight,
    )
    files = create_semantic_memory_index(config=cfg, backend=store, clock=clock)
    return MemoryEngine(
        conversation=conversation,
        files=files,
        default_limit=cfg.search.default_limit,
        owned_store=owned_store,
    )


def create_ephemeral_memory_engine(config: Config | None = None) -> MemoryEngine:
    """Engine whose persisted blob only lives for the current process."""
    return create_memory_engine(config=config, backend=InMemoryKeyValueStore())
