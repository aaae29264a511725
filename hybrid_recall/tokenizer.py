"""CJK-aware tokenizer shared by every lexical search path."""

from __future__ import annotations

_CJK_RANGES = (
    (0x4E00, 0x9FFF),  # CJK unified ideographs
    (0x3400, 0x4DBF),  # extension A
    (0xF900, 0xFAFF),  # compatibility ideographs
    (0x3000, 0x303F),  # CJK symbols and punctuation
    (0x3040, 0x309F),  # hiragana
    (0x30A0, 0x30FF),  # katakana
    (0xAC00, 0xD7AF),  # hangul syllables
)


def is_cjk(ch: str) -> bool:
    """Return True when the single character falls in a CJK block."""
    code = ord(ch)
    return any(low <= code <= high for low, high in _CJK_RANGES)


def tokenize(text: str) -> list[str]:
    """Split text into lower-cased tokens.

    CJK characters become one token each, runs of letters/digits form
    word tokens, and anything else separates tokens.
    """
    tokens: list[str] = []
    current: list[str] = []
    for ch in str(text or "").lower():
        if is_cjk(ch):
            if current:
                tokens.append("".join(current))
                current = []
            tokens.append(ch)
        elif ch.isalnum():
            current.append(ch)
        elif current:
            tokens.append("".join(current))
            current = []
    if current:
        tokens.append("".join(current))
    return tokens


def unique_tokens(text: str, limit: int | None = None) -> list[str]:
    """Tokenize, drop duplicates (first occurrence wins), optionally cap."""
    seen: dict[str, None] = {}
    for token in tokenize(text):
        seen.setdefault(token, None)
    tokens = list(seen)
    if limit is not None:
        tokens = tokens[: max(0, int(limit))]
    return tokens
