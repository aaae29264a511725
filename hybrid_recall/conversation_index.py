"""In-memory BM25 index over conversation turns."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
import json
import math
from pathlib import Path
import re
from typing import Any

from hybrid_recall.logging import get_logger
from hybrid_recall.recency import (
    DEFAULT_HALF_LIFE_DAYS,
    DEFAULT_RECENCY_WEIGHT,
    blend_recency,
    recency_boost,
    utcnow,
    utcnow_iso,
)
from hybrid_recall.tokenizer import tokenize

log = get_logger(__name__)


@dataclass(frozen=True)
class MemoryEntry:
    """One conversation turn."""

    session_id: str
    timestamp: str
    role: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "role": self.role,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryEntry":
        timestamp = data.get("timestamp") or utcnow_iso()
        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        return cls(
            session_id=str(data.get("session_id", "")),
            timestamp=str(timestamp),
            role=str(data.get("role", "")),
            content=str(data.get("content", "")),
        )


@dataclass
class ConversationHit:
    """One conversation search hit."""

    session_id: str
    timestamp: str
    role: str
    content: str
    score: float


class ConversationIndex:
    """Okapi BM25 over conversation turns, blended with recency.

    Postings map each term to ``(entry_index, tf)`` pairs where ``tf`` is the
    term's share of the document's tokens.
    """

    def __init__(
        self,
        *,
        k1: float = 1.2,
        b: float = 0.75,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        recency_weight: float = DEFAULT_RECENCY_WEIGHT,
    ):
        self.k1 = float(k1)
        self.b = float(b)
        self.half_life_days = float(half_life_days)
        self.recency_weight = float(recency_weight)
        self._entries: list[MemoryEntry] = []
        self._doc_lengths: list[int] = []
        self._postings: dict[str, list[tuple[int, float]]] = {}
        self._avg_dl = 0.0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    @property
    def avg_doc_length(self) -> float:
        return self._avg_dl

    @property
    def entries(self) -> list[MemoryEntry]:
        return list(self._entries)

    def load(self, entries: Iterable[MemoryEntry]) -> None:
        """Replace the whole index and rebuild postings from scratch."""
        self._entries = []
        self._doc_lengths = []
        self._postings = {}
        total = 0
        for entry in entries:
            total += self._index_entry(entry)
        self._avg_dl = total / len(self._entries) if self._entries else 0.0
        log.debug("Conversation index loaded", entries=len(self._entries), avg_dl=self._avg_dl)

    def add(self, entry: MemoryEntry) -> None:
        """Index one more turn without rescanning earlier ones."""
        n = len(self._entries)
        dl = self._index_entry(entry)
        self._avg_dl = (self._avg_dl * n + dl) / (n + 1)

    def search(
        self,
        query: str,
        limit: int = 5,
        *,
        now: datetime | None = None,
    ) -> list[ConversationHit]:
        if not self._entries or limit <= 0:
            return []
        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        n = len(self._entries)
        avg_dl = max(self._avg_dl, 1.0)
        scores: dict[int, float] = {}
        for token in query_tokens:
            postings = self._postings.get(token)
            if not postings:
                continue
            df = len(postings)
            idf = math.log((n - df + 0.5) / (df + 0.5) + 1.0)
            for doc_idx, tf in postings:
                dl = self._doc_lengths[doc_idx]
                tf_norm = (tf * (self.k1 + 1.0)) / (
                    tf + self.k1 * (1.0 - self.b + self.b * dl / avg_dl)
                )
                scores[doc_idx] = scores.get(doc_idx, 0.0) + idf * tf_norm

        reference = now or utcnow()
        ranked = sorted(
            (
                (
                    doc_idx,
                    blend_recency(
                        relevance,
                        recency_boost(self._entries[doc_idx].timestamp, reference, self.half_life_days),
                        self.recency_weight,
                    ),
                )
                for doc_idx, relevance in scores.items()
            ),
            key=lambda item: (-item[1], item[0]),
        )
        hits: list[ConversationHit] = []
        for doc_idx, score in ranked[:limit]:
            entry = self._entries[doc_idx]
            hits.append(
                ConversationHit(
                    session_id=entry.session_id,
                    timestamp=entry.timestamp,
                    role=entry.role,
                    content=entry.content,
                    score=score,
                )
            )
        return hits

    def _index_entry(self, entry: MemoryEntry) -> int:
        idx = len(self._entries)
        tokens = tokenize(entry.content)
        dl = len(tokens)
        counts: dict[str, int] = {}
        for token in tokens:
            counts[token] = counts.get(token, 0) + 1
        for term, count in counts.items():
            self._postings.setdefault(term, []).append((idx, count / max(dl, 1)))
        self._entries.append(entry)
        self._doc_lengths.append(dl)
        return dl


def read_conversation_log(path: Path | str) -> list[MemoryEntry]:
    """Read turns from a JSONL file or every ``*.jsonl`` in a directory.

    Malformed lines are skipped.
    """
    source = Path(path).expanduser()
    if source.is_dir():
        files = sorted(source.glob("*.jsonl"))
    elif source.is_file():
        files = [source]
    else:
        return []

    entries: list[MemoryEntry] = []
    for file_path in files:
        skipped = 0
        with open(file_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    continue
                if not isinstance(data, dict):
                    skipped += 1
                    continue
                entries.append(MemoryEntry.from_dict(data))
        if skipped:
            log.debug("Skipped malformed conversation log lines", path=str(file_path), skipped=skipped)
    return entries


def format_conversation_hits(hits: list[ConversationHit], max_chars: int = 200) -> str:
    """Render hits as a numbered block for tool output."""
    lines = []
    for idx, hit in enumerate(hits, start=1):
        when = hit.timestamp[:16].replace("T", " ")
        content = re.sub(r"\s+", " ", hit.content).strip()
        if len(content) > max_chars:
            content = content[:max_chars] + "..."
        lines.append(f"[{idx}] [{when}] {hit.role}: {content}")
    return "\n".join(lines)
