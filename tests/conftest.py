import json
import time
from typing import Callable, List, Optional
from unittest.mock import MagicMock

import pytest

from ftsbench.benchmark.engines.base import HitRecord, SearchBackend
from ftsbench.benchmark.engines.whoosh_engine import WhooshBackend
from ftsbench.benchmark.translators.base import NativeQuery, QueryTranslator
from ftsbench.benchmark.translators.mariadb import MariaDbTranslator
from ftsbench.exceptions import BackendUnavailable
from ftsbench.indexing import IndexManager, RecordIndexer

SAMPLE_RECORDS = {
    "products": [
        {"id": 1, "name": "Gaming Laptop Pro", "description": "Powerful laptop for gaming with fast graphics",
         "category": "Electronics", "brand": "Acme", "color": "black", "price": 1500.0,
         "stock_quantity": 5, "created_at": "2024-01-10"},
        {"id": 2, "name": "Business Laptop", "description": "Lightweight laptop computer for office work",
         "category": "Electronics", "brand": "Globex", "color": "silver", "price": 800.0,
         "stock_quantity": 0, "created_at": "2024-03-05"},
        {"id": 3, "name": "Wireless Headphones", "description": "Bluetooth wireless headphones with premium sound",
         "category": "Electronics", "brand": "Acme", "color": "black", "price": 199.0,
         "stock_quantity": 12, "created_at": "2023-11-20"},
        {"id": 4, "name": "Smart Phone X", "description": "Phone with a great camera",
         "category": "Electronics", "brand": "Globex", "color": "blue", "price": 450.0,
         "stock_quantity": 30, "created_at": "2024-02-01"},
        {"id": 5, "name": "Laptop Backpack", "description": "Padded backpack that fits a laptop",
         "category": "Accessories", "brand": "Initech", "color": "black", "price": 59.0,
         "stock_quantity": 100, "created_at": "2023-06-15"},
    ],
    "customers": [
        {"id": 1, "first_name": "John", "last_name": "Smith", "email": "john.smith@example.com",
         "address": "12 Main Street", "city": "Springfield", "country": "US",
         "notes": "prefers laptop accessories"},
        {"id": 2, "first_name": "Jane", "last_name": "Doe", "email": "jane.doe@example.com",
         "address": "7 Elm Road", "city": "Shelbyville", "country": "US",
         "notes": "frequent phone buyer"},
    ],
    "reviews": [
        {"id": 1, "product_id": 1, "title": "Great laptop", "review_text": "This laptop runs every game",
         "rating": 5, "verified_purchase": True},
        {"id": 2, "product_id": 3, "title": "Good headphones", "review_text": "The wireless sound is clear",
         "rating": 4, "verified_purchase": False},
        {"id": 3, "product_id": 2, "title": "Decent laptop", "review_text": "Laptop battery is short",
         "rating": 3, "verified_purchase": True},
    ],
    "orders": [
        {"id": 1, "order_number": "ORD-1001", "status": "shipped", "total_amount": 1500.0,
         "notes": "deliver the laptop quickly", "shipping_address": "12 Main Street",
         "billing_address": "12 Main Street", "created_at": "2024-04-01"},
        {"id": 2, "order_number": "ORD-1002", "status": "pending", "total_amount": 450.0,
         "notes": "gift wrap the phone", "shipping_address": "7 Elm Road",
         "billing_address": "7 Elm Road", "created_at": "2024-04-03"},
    ],
}


@pytest.fixture
def sample_records():
    return SAMPLE_RECORDS


@pytest.fixture
def ram_index():
    manager = IndexManager(None)
    RecordIndexer(manager).index_records(SAMPLE_RECORDS)
    return manager.index


@pytest.fixture
def whoosh_backend(ram_index):
    backend = WhooshBackend(ram_index)
    yield backend
    backend.cleanup()


@pytest.fixture
def data_dir(tmp_path):
    directory = tmp_path / "data"
    directory.mkdir()
    for table, rows in SAMPLE_RECORDS.items():
        (directory / f"{table}.json").write_text(json.dumps(rows), encoding="utf-8")
    return directory


def make_result(rows):
    result = MagicMock()
    result.mappings.return_value = [dict(row) for row in rows]
    return result


@pytest.fixture
def sql_result():
    return make_result


@pytest.fixture
def sql_engine():
    """
    SQLAlchemy engine double; tests set conn.execute.return_value / side_effect
    """
    engine = MagicMock()
    conn = MagicMock()
    conn.__enter__.return_value = conn
    conn.__exit__.return_value = False
    conn.execute.return_value = make_result([])
    engine.connect.return_value = conn
    return engine


class FakeBackend(SearchBackend):
    """
    Scripted backend recording its lifecycle
    """

    def __init__(self, name: str, translator: Optional[QueryTranslator] = None, hits: int = 3,
                 delay: float = 0.0, fail: bool = False, warmup_failures: int = 0,
                 on_execute: Optional[Callable[[], None]] = None):
        super().__init__(translator or MariaDbTranslator())
        self.name = name
        self.hits = hits
        self.delay = delay
        self.fail = fail
        self.warmup_failures = warmup_failures
        self.on_execute = on_execute
        self.events: List[str] = []
        self.running = False
        self.overlapped = False

    def prepare(self):
        self.events.append("prepare")

    def cleanup(self):
        if self.running:
            self.overlapped = True
        self.events.append("cleanup")

    def abort(self):
        self.events.append("abort")

    def warmup(self):
        self.events.append("warmup")
        if self.warmup_failures:
            self.warmup_failures -= 1
            raise BackendUnavailable(f"{self.name} is down", backend=self.name)

    def execute(self, native: NativeQuery):
        self.events.append("execute")
        self.running = True
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            self.running = False
        if self.fail:
            raise BackendUnavailable(f"{self.name} lost the connection", backend=self.name)
        if self.on_execute:
            self.on_execute()
        return [HitRecord(id=i, primary_fields={"id": i}, relevance=float(self.hits - i))
                for i in range(self.hits)]


@pytest.fixture
def fake_backend_cls():
    return FakeBackend
