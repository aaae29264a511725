"""Vector similarity and reciprocal rank fusion helpers."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
import math
from typing import Any, TypeVar

DEFAULT_RRF_K = 60
DEFAULT_KEYWORD_WEIGHT = 0.7
DEFAULT_VECTOR_WEIGHT = 0.3

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denom = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denom == 0.0 or not math.isfinite(denom):
        return 0.0
    score = dot / denom
    if not math.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def parse_embedding(raw: Any) -> list[float] | None:
    """Coerce a stored embedding (list or JSON-decoded value) to floats.

    Returns None when the value is not a non-empty list of finite numbers.
    """
    if not isinstance(raw, list) or not raw:
        return None
    vector: list[float] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        number = float(value)
        if not math.isfinite(number):
            return None
        vector.append(number)
    return vector


def merge_hybrid_results(
    keyword_results: Sequence[T],
    vector_results: Sequence[T],
    limit: int,
    *,
    keyword_weight: float = DEFAULT_KEYWORD_WEIGHT,
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    k: int = DEFAULT_RRF_K,
) -> list[T]:
    """Fuse two ranked lists with weighted reciprocal rank fusion.

    Each list contributes ``weight / (k + rank + 1)`` per result (rank is
    0-based); a result in both lists sums both parts. Results are matched by
    their ``id`` attribute and returned with ``score`` set to the fused value.
    """
    if limit <= 0:
        return []
    fused: dict[str, tuple[T, float]] = {}
    for weight, results in ((keyword_weight, keyword_results), (vector_weight, vector_results)):
        for rank, result in enumerate(results):
            contribution = weight / (k + rank + 1)
            existing = fused.get(result.id)
            if existing is None:
                fused[result.id] = (result, contribution)
            else:
                fused[result.id] = (existing[0], existing[1] + contribution)

    ordered = sorted(fused.values(), key=lambda item: item[1], reverse=True)
    return [replace(result, score=score) for result, score in ordered[:limit]]
