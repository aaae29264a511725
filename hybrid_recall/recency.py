"""Exponential recency decay blended into relevance scores."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime
import math
from typing import Any, TypeVar

DEFAULT_HALF_LIFE_DAYS = 7.0
DEFAULT_RECENCY_WEIGHT = 0.15

_SECONDS_PER_DAY = 86_400.0

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(UTC)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def parse_timestamp(value: Any) -> float | None:
    """Return POSIX seconds for an ISO string, datetime or epoch number."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if math.isfinite(float(value)) else None
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.timestamp()


def recency_boost(
    updated_at: Any,
    now: datetime | None = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """exp(-ln2/half_life * age_days); future timestamps count as age zero."""
    timestamp = parse_timestamp(updated_at)
    if timestamp is None:
        return 0.0
    reference = (now or utcnow()).timestamp()
    age_days = max(0.0, (reference - timestamp) / _SECONDS_PER_DAY)
    decay_rate = math.log(2) / max(float(half_life_days), 1e-9)
    return math.exp(-decay_rate * age_days)


def blend_recency(relevance: float, boost: float, weight: float = DEFAULT_RECENCY_WEIGHT) -> float:
    return (1.0 - weight) * relevance + weight * boost


def apply_recency(
    results: Iterable[T],
    *,
    get_time: Callable[[T], Any],
    now: datetime | None = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    weight: float = DEFAULT_RECENCY_WEIGHT,
) -> list[T]:
    """Re-score dataclass results with the recency blend and sort descending.

    The sort is stable, so equal scores keep their incoming order.
    """
    reference = now or utcnow()
    rescored = [
        replace(
            item,
            score=blend_recency(
                float(item.score),
                recency_boost(get_time(item), reference, half_life_days),
                weight,
            ),
        )
        for item in results
    ]
    rescored.sort(key=lambda item: item.score, reverse=True)
    return rescored
