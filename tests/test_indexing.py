from datetime import datetime

import pytest
from whoosh.index import exists_in
from whoosh.query import NumericRange, Term

from ftsbench.indexing import (
    IndexManager,
    RecordIndexer,
    build_index,
    get_index_stats,
    load_records,
    to_bool,
)


@pytest.fixture
def indexer():
    return RecordIndexer(IndexManager(None))


def test_to_document_converts_values(indexer, sample_records):
    doc = indexer.to_document(sample_records["products"][0], "product")
    assert doc["uid"] == "product:1"
    assert doc["source_type"] == "product"
    assert doc["price"] == 1500.0
    assert doc["stock_quantity"] == 5
    assert doc["created_at"] == datetime(2024, 1, 10)


def test_to_document_skips_unknown_and_empty_fields(indexer):
    doc = indexer.to_document(
        {"id": "3", "title": "Solid", "rating": "4", "verified_purchase": 1, "helpful_votes": 9, "review_text": None},
        "review",
    )
    assert doc["id"] == 3
    assert doc["rating"] == 4
    assert doc["verified_purchase"] is True
    assert "helpful_votes" not in doc
    assert "review_text" not in doc


def test_tags_are_joined(indexer):
    doc = indexer.to_document({"id": 1, "tags": ["gaming", "rgb"]}, "product")
    assert doc["tags"] == "gaming,rgb"


def test_index_records_reports_progress(indexer, sample_records):
    seen = []
    count = indexer.index_records(sample_records, progress_callback=seen.append)
    assert count == 12
    assert seen == [25, 50, 75, 100]
    with indexer.index_manager.get_searcher() as searcher:
        assert searcher.doc_count() == 12
        assert len(searcher.search(Term("source_type", "review"))) == 3


def test_unknown_table_is_rejected(indexer):
    with pytest.raises(ValueError):
        indexer.index_records({"invoices": [{"id": 1}]})
    assert indexer.index_manager.index.doc_count() == 0


def test_reindexing_replaces_documents(indexer, sample_records):
    indexer.index_records(sample_records)
    indexer.index_records({"products": sample_records["products"]})
    assert indexer.index_manager.index.doc_count() == 12


def test_load_records(data_dir):
    records = load_records(str(data_dir))
    assert set(records) == {"products", "customers", "reviews", "orders"}
    assert len(records["products"]) == 5


def test_build_index_and_stats(data_dir, tmp_path):
    index_dir = str(tmp_path / "index")

    assert build_index(str(data_dir), index_dir) == 12
    assert exists_in(index_dir)

    stats = get_index_stats(index_dir)
    assert stats["doc_count"] == 12
    assert stats["per_source"] == {"product": 5, "customer": 2, "review": 3, "order": 2}
    assert stats["index_size_mb"] > 0


def test_build_index_without_records(tmp_path):
    with pytest.raises(ValueError):
        build_index(str(tmp_path), str(tmp_path / "index"))


def test_stats_without_index(tmp_path):
    with pytest.raises(ValueError):
        get_index_stats(str(tmp_path))


@pytest.mark.parametrize("raw,expected", [
    ("false", False),
    ("False", False),
    ("0", False),
    ("", False),
    ("true", True),
    ("yes", True),
    (1, True),
    (0, False),
    (False, False),
])
def test_verified_purchase_parsing(indexer, raw, expected):
    doc = indexer.to_document({"id": 1, "verified_purchase": raw}, "review")
    assert doc["verified_purchase"] is expected


def test_unparseable_boolean_is_rejected():
    with pytest.raises(ValueError):
        to_bool("maybe")


def test_priced_products_share_an_index_with_unpriced_records(indexer):
    count = indexer.index_records({
        "products": [{"id": 1, "name": "Gaming Laptop", "price": 1500.0},
                     {"id": 2, "name": "Office Laptop", "price": "650.50"}],
        "customers": [{"id": 1, "first_name": "John"}],
    })
    assert count == 3
    with indexer.index_manager.get_searcher() as searcher:
        hits = searcher.search(NumericRange("price", 600, 1000))
        assert [hit["id"] for hit in hits] == [2]
        assert hits[0]["price"] == 650.5
