from datetime import UTC, datetime, timedelta
import math

import pytest

from hybrid_recall.hybrid import cosine_similarity, merge_hybrid_results, parse_embedding
from hybrid_recall.recency import apply_recency, blend_recency, recency_boost
from hybrid_recall.semantic_memory import MemorySearchResult

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def hit(chunk_id: str, score: float = 0.0, updated_at: str = "") -> MemorySearchResult:
    return MemorySearchResult(
        id=chunk_id,
        path=f"{chunk_id}.md",
        start_line=1,
        end_line=1,
        text=chunk_id,
        score=score,
        updated_at=updated_at,
    )


def test_cosine_similarity_basics():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 2.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 2.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_parse_embedding_rejects_non_numeric_values():
    assert parse_embedding([1, 2.5]) == [1.0, 2.5]
    assert parse_embedding([]) is None
    assert parse_embedding({"a": 1}) is None
    assert parse_embedding([1, "x"]) is None
    assert parse_embedding([True, 1.0]) is None


def test_rrf_document_first_in_both_lists_beats_single_list_leaders():
    keyword = [hit("both"), hit("kw-only")]
    vector = [hit("both"), hit("vec-only")]

    merged = merge_hybrid_results(keyword, vector, 10)

    assert merged[0].id == "both"
    assert merged[0].score == pytest.approx(0.7 / 61 + 0.3 / 61)
    assert {m.id for m in merged} == {"both", "kw-only", "vec-only"}


def test_rrf_keyword_only_leader_beats_vector_only_leader():
    merged = merge_hybrid_results([hit("kw")], [hit("vec")], 10)

    assert [m.id for m in merged] == ["kw", "vec"]
    assert merged[0].score == pytest.approx(0.7 / 61)
    assert merged[1].score == pytest.approx(0.3 / 61)


def test_rrf_truncates_to_limit():
    keyword = [hit(f"k{i}") for i in range(5)]
    assert len(merge_hybrid_results(keyword, [], 3)) == 3
    assert merge_hybrid_results(keyword, [], 0) == []


def test_recency_boost_halves_every_half_life():
    assert recency_boost(NOW.isoformat(), NOW) == pytest.approx(1.0)
    week_ago = (NOW - timedelta(days=7)).isoformat()
    assert recency_boost(week_ago, NOW, half_life_days=7) == pytest.approx(0.5)
    future = (NOW + timedelta(days=3)).isoformat()
    assert recency_boost(future, NOW) == pytest.approx(1.0)
    assert recency_boost("not a date", NOW) == 0.0


def test_recency_boost_accepts_zulu_suffix_and_naive_timestamps():
    assert recency_boost("2026-02-22T00:00:00Z", NOW) == pytest.approx(0.5)
    assert recency_boost("2026-02-22T00:00:00", NOW) == pytest.approx(0.5)


def test_blend_recency_uses_fixed_weights():
    assert blend_recency(1.0, 0.0) == pytest.approx(0.85)
    assert blend_recency(0.0, 1.0) == pytest.approx(0.15)


def test_apply_recency_orders_newer_first_on_equal_relevance():
    old = hit("old", 0.5, (NOW - timedelta(days=14)).isoformat())
    new = hit("new", 0.5, NOW.isoformat())

    ranked = apply_recency([old, new], get_time=lambda r: r.updated_at, now=NOW)

    assert [r.id for r in ranked] == ["new", "old"]
    assert ranked[0].score == pytest.approx(0.85 * 0.5 + 0.15)
    assert ranked[1].score == pytest.approx(0.85 * 0.5 + 0.15 * 0.25)
    assert not math.isclose(old.score, ranked[1].score)
