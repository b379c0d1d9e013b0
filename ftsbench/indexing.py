import os
import json
import logging
from datetime import datetime, date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from whoosh.index import create_in, Index, exists_in, open_dir
from whoosh.fields import Schema, TEXT, ID, KEYWORD, NUMERIC, DATETIME, BOOLEAN, analysis
from whoosh.filedb.filestore import RamStorage
from whoosh.writing import IndexWriter
from whoosh.searching import Searcher

from .config import DATA_DIR, INDEX_DIR

logger = logging.getLogger(__name__)

# source_type stored on every document, keyed by the record file / table name
SOURCE_FILES = {
    "products": "product",
    "customers": "customer",
    "reviews": "review",
    "orders": "order",
}

TRUE_STRINGS = {"true", "1", "yes", "y", "t"}
FALSE_STRINGS = {"false", "0", "no", "n", "f", ""}


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


FIELD_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "id": int,
    "product_id": int,
    "stock_quantity": int,
    "rating": int,
    "price": float,
    "total_amount": float,
    "verified_purchase": to_bool,
}


def build_schema(analyzer: Optional[analysis.Analyzer] = None) -> Schema:
    """
    One schema for every entity; documents are told apart by source_type
    """
    analyzer = analyzer or analysis.StemmingAnalyzer()
    return Schema(
        uid=ID(unique=True, stored=True),
        id=NUMERIC(int, bits=64, stored=True, sortable=True),
        source_type=ID(stored=True),
        # products
        name=TEXT(stored=True, analyzer=analyzer, spelling=True, sortable=True),
        description=TEXT(stored=True, analyzer=analyzer),
        long_description=TEXT(analyzer=analyzer),
        category=ID(stored=True, sortable=True),
        brand=ID(stored=True, sortable=True),
        color=ID(stored=True),
        tags=KEYWORD(stored=True, commas=True, lowercase=True),
        # float columns default to NaN, which the sortable column writer rejects
        price=NUMERIC(float, bits=64, stored=True),
        stock_quantity=NUMERIC(int, stored=True, sortable=True),
        created_at=DATETIME(stored=True, sortable=True),
        # customers
        first_name=TEXT(stored=True, analyzer=analyzer),
        last_name=TEXT(stored=True, analyzer=analyzer),
        email=TEXT(stored=True),
        address=TEXT(analyzer=analyzer),
        city=ID(stored=True),
        country=ID(stored=True),
        notes=TEXT(analyzer=analyzer),
        # reviews
        product_id=NUMERIC(int, bits=64, stored=True),
        title=TEXT(stored=True, analyzer=analyzer),
        review_text=TEXT(stored=True, analyzer=analyzer),
        rating=NUMERIC(int, stored=True, sortable=True),
        verified_purchase=BOOLEAN(stored=True),
        # orders
        order_number=ID(stored=True),
        status=ID(stored=True),
        total_amount=NUMERIC(float, bits=64, stored=True),
        shipping_address=TEXT(analyzer=analyzer),
        billing_address=TEXT(analyzer=analyzer),
    )


class IndexManager:
    """
    Creates or opens the Whoosh index; index_dir=None keeps it in memory
    """

    def __init__(self, index_dir: Optional[str], schema: Optional[Schema] = None):
        self.index_dir = index_dir
        self.schema = schema or build_schema()
        self.index = self._create_or_open_index()

    def _create_or_open_index(self) -> Index:
        if self.index_dir is None:
            return RamStorage().create_index(self.schema)
        if not os.path.exists(self.index_dir):
            os.makedirs(self.index_dir)
            logger.info(f"Created index directory: {self.index_dir}")
            return create_in(self.index_dir, self.schema)
        elif exists_in(self.index_dir):
            return open_dir(self.index_dir)
        else:
            return create_in(self.index_dir, self.schema)

    def get_writer(self) -> IndexWriter:
        return self.index.writer()

    def get_searcher(self) -> Searcher:
        return self.index.searcher()


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    return datetime.fromisoformat(str(value))


class RecordIndexer:
    """
    Writes product, customer, review and order records into the index
    """

    def __init__(self, index_manager: IndexManager):
        self.index_manager = index_manager
        self.field_names = set(index_manager.schema.names())

    def to_document(self, record: Mapping[str, Any], source_type: str) -> Dict[str, Any]:
        doc: Dict[str, Any] = {}
        for key, value in record.items():
            if key not in self.field_names or value is None:
                continue
            if key == "created_at":
                value = _to_datetime(value)
            elif key == "tags" and isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            elif key in FIELD_CONVERTERS:
                value = FIELD_CONVERTERS[key](value)
            else:
                value = str(value)
            doc[key] = value

        doc["source_type"] = source_type
        doc["uid"] = f"{source_type}:{record['id']}"
        return doc

    def index_records(self,
                      records: Mapping[str, Iterable[Mapping[str, Any]]],
                      progress_callback: Optional[Callable[[int], None]] = None) -> int:
        """
        Index records grouped by table name ('products', 'customers', ...)

        Returns:
            Number of documents written
        """
        writer = self.index_manager.get_writer()
        indexed_count = 0
        total = len(records)
        try:
            for i, (table, rows) in enumerate(records.items()):
                source_type = SOURCE_FILES.get(table)
                if source_type is None:
                    raise ValueError(f"Unknown record table: {table}")
                for row in rows:
                    writer.update_document(**self.to_document(row, source_type))
                    indexed_count += 1
                if progress_callback:
                    progress_callback(int((i + 1) / total * 100))
        except Exception:
            writer.cancel()
            raise

        writer.commit()
        logger.info(f"Successfully indexed {indexed_count} documents")
        return indexed_count


def load_records(data_dir: str = DATA_DIR) -> Dict[str, List[Dict[str, Any]]]:
    """
    Read <table>.json record files (JSON arrays) from data_dir
    """
    records = {}
    for table in SOURCE_FILES:
        path = os.path.join(data_dir, f"{table}.json")
        if not os.path.exists(path):
            logger.debug(f"No record file for {table}: {path}")
            continue
        with open(path, "r", encoding="utf-8") as f:
            records[table] = json.load(f)
    return records


def build_index(data_dir: str = DATA_DIR,
                index_dir: str = INDEX_DIR,
                progress_callback: Optional[Callable[[int], None]] = None) -> int:
    """
    Build the Whoosh index from the JSON record files in data_dir
    """
    records = load_records(data_dir)
    if not records:
        raise ValueError(f"No record files found in {data_dir}")

    indexer = RecordIndexer(IndexManager(index_dir))
    num_indexed = indexer.index_records(records, progress_callback=progress_callback)
    logger.info(f"Indexing completed successfully. Indexed {num_indexed} documents.")
    return num_indexed


def get_index_stats(index_dir: str = INDEX_DIR) -> Dict[str, float]:
    """Get statistics about the Whoosh index
    Returns:
        Dict containing:
        - doc_count: Number of documents in the index
        - per_source: Document count per source_type
        - index_size_mb: Size of the index in megabytes
    """
    if not exists_in(index_dir):
        raise ValueError(f"No index in {index_dir}")

    index = open_dir(index_dir)
    per_source = {}
    with index.searcher() as searcher:
        for source_type in SOURCE_FILES.values():
            per_source[source_type] = searcher.doc_frequency("source_type", source_type)

    index_size = 0
    for dirpath, _, filenames in os.walk(index_dir):
        for f in filenames:
            index_size += os.path.getsize(os.path.join(dirpath, f))

    return {
        "doc_count": index.doc_count(),
        "per_source": per_source,
        "index_size_mb": index_size / (1024 * 1024),
    }
