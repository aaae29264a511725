"""Deterministic line-based chunking with overlap."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import zlib

from hybrid_recall.recency import utcnow_iso

DEFAULT_CHUNK_TARGET_CHARS = 1600  # ~400 tokens
DEFAULT_CHUNK_OVERLAP_CHARS = 320  # ~80 tokens

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_FNV64_MASK = 0xFFFFFFFFFFFFFFFF


@dataclass
class Chunk:
    """One addressable line range of an indexed file (1-based, inclusive)."""

    id: str
    path: str
    start_line: int
    end_line: int
    content_hash: str
    text: str
    embedding: list[float] | None = None
    updated_at: str = ""


def sha256_text(text: str) -> str:
    """Content hash used for file freshness checks and embedding-cache keys."""
    return hashlib.sha256(str(text).encode("utf-8")).hexdigest()


def fast_text_hash(text: str) -> str:
    return f"{zlib.crc32(text.encode('utf-8')) & 0xFFFFFFFF:08x}"


def _fnv1a64(value: str) -> int:
    h = _FNV64_OFFSET
    for byte in value.encode("utf-8"):
        h ^= byte
        h = (h * _FNV64_PRIME) & _FNV64_MASK
    return h


def chunk_id(path: str, start_line: int, end_line: int, content_hash: str) -> str:
    """Stable id derived only from the path, line range and content hash."""
    key = "\x00".join((path, str(start_line), str(end_line), content_hash))
    return f"{_fnv1a64(key):016x}"


def _overlap_line_count(lines: list[str], end: int, floor: int, overlap_chars: int) -> int:
    count = 0
    chars = 0
    idx = end - 1
    while idx >= floor and chars < overlap_chars:
        chars += len(lines[idx]) + 1
        count += 1
        idx -= 1
    return count


def chunk_markdown(
    text: str,
    path: str,
    *,
    target_chars: int = DEFAULT_CHUNK_TARGET_CHARS,
    overlap_chars: int = DEFAULT_CHUNK_OVERLAP_CHARS,
    updated_at: str | None = None,
) -> list[Chunk]:
    """Split text into overlapping line windows.

    A window grows until its character count (lines plus separators) reaches
    ``target_chars``. The next window backs up over trailing lines that fit in
    ``overlap_chars`` but always starts at least one line after the previous
    start, so every line is covered and the loop terminates.
    """
    if not text:
        return []
    lines = text.split("\n")
    target = max(1, int(target_chars))
    overlap = max(0, int(overlap_chars))
    stamp = updated_at or utcnow_iso()

    chunks: list[Chunk] = []
    start = 0
    while start < len(lines):
        end = start
        used = 0
        while end < len(lines) and used < target:
            used += len(lines[end]) + 1
            end += 1

        chunk_text = "\n".join(lines[start:end])
        content_hash = fast_text_hash(chunk_text)
        chunks.append(
            Chunk(
                id=chunk_id(path, start + 1, end, content_hash),
                path=path,
                start_line=start + 1,
                end_line=end,
                content_hash=content_hash,
                text=chunk_text,
                updated_at=stamp,
            )
        )
        if end >= len(lines):
            break
        overlap_lines = _overlap_line_count(lines, end, start + 1, overlap)
        start = max(end - overlap_lines, start + 1)
    return chunks
