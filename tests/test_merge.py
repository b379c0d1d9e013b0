from ftsbench.benchmark.engines.base import HitRecord, to_hit
from ftsbench.benchmark.merge import merge_ranked
from ftsbench.benchmark.translators.base import NativeQuery


def hits(source, *scores):
    return [HitRecord(id=f"{source}{i}", primary_fields={"source_type": source}, relevance=score)
            for i, score in enumerate(scores)]


def test_merge_orders_by_relevance_and_slices():
    merged = merge_ranked([hits("p", 9, 5, 1), hits("c", 7, 3)], limit=3, offset=1)
    assert [h.id for h in merged] == ["c0", "p1", "c1"]


def test_equal_scores_keep_source_order():
    merged = merge_ranked([hits("p", 2, 2), hits("c", 2)], limit=10)
    assert [h.id for h in merged] == ["p0", "p1", "c0"]


def test_limits():
    assert merge_ranked([hits("p", 3, 2)], limit=0) == []
    assert merge_ranked([hits("p", 3, 2)], limit=5, offset=5) == []
    assert len(merge_ranked([hits("p", 3, 2), hits("c", 1)], limit=None)) == 3
    assert merge_ranked([], limit=10) == []


def test_to_hit_uses_declared_columns():
    native = NativeQuery(text="", source_type="review", id_field="rating", relevance_field="avg_relevance")
    hit = to_hit({"rating": 5, "count": 3, "avg_relevance": "1.5"}, native)
    assert hit.id == 5
    assert hit.relevance == 1.5
    assert hit.source_type == "review"

    missing = to_hit({"rating": 4}, native)
    assert missing.relevance == 0.0
