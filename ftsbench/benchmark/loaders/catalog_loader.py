"""Named query catalogs for benchmark sweeps."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ...criteria import SearchCriteria
from ...exceptions import InvalidCriteria

logger = logging.getLogger(__name__)

DEFAULT_QUERY_CATALOG: Dict[str, Dict[str, Any]] = {
    # Basic queries
    "simple": {"query": "laptop computer", "mode": "NATURAL"},
    "complex": {"query": "wireless bluetooth headphones premium quality", "mode": "NATURAL"},
    "partial": {"query": "elect", "mode": "NATURAL"},

    # Boolean mode
    "boolean_required": {"query": "+wireless +headphones", "mode": "BOOLEAN"},
    "boolean_exclude": {"query": "phone -samsung", "mode": "BOOLEAN"},
    "boolean_complex": {"query": "(wireless OR bluetooth) +headphones", "mode": "BOOLEAN"},
    "phrase_match": {"query": '"gaming laptop"', "mode": "BOOLEAN"},
    "wildcard": {"query": "electron*", "mode": "BOOLEAN"},

    "query_expansion": {"query": "laptop", "mode": "QUERY_EXPANSION"},

    # Filtering
    "with_category": {"query": "laptop", "mode": "NATURAL", "filters": {"category": "Electronics"}},
    "with_price_range": {"query": "phone", "mode": "NATURAL", "filters": {"min_price": 100, "max_price": 500}},
    "with_json_filter": {"query": "laptop", "mode": "NATURAL", "filters": {"color": "black"}},

    # Aggregations
    "aggregate_category": {"query": "wireless", "mode": "NATURAL", "aggregate": "category"},
    "aggregate_brand": {"query": "phone", "mode": "NATURAL", "aggregate": "brand"},
    "aggregate_price_range": {"query": "electronics", "mode": "NATURAL", "aggregate": "price_range"},

    # Multi-table
    "join_customers": {"query": "laptop", "mode": "NATURAL", "join": ["customers", "orders"]},
    "union_search": {"query": "john", "mode": "NATURAL", "union": ["products", "customers"]},

    # Sorting
    "sort_price_asc": {"query": "laptop", "mode": "NATURAL", "sort": {"price": "ASC"}},
    "sort_price_desc": {"query": "phone", "mode": "NATURAL", "sort": {"price": "DESC"}},

    "deep_pagination": {"query": "product", "mode": "NATURAL", "offset": 1000, "limit": 20},

    # Edge cases
    "single_char": {"query": "a", "mode": "NATURAL"},
    "common_words": {"query": "the best product", "mode": "NATURAL"},
}


def category_for(name: str) -> str:
    """
    Reporting category of a catalog entry, derived from its name
    """
    if any(word in name for word in ("boolean", "phrase", "wildcard", "expansion")):
        return "Search Modes"
    if "filter" in name or "with_" in name:
        return "Filtering"
    if "aggregate" in name:
        return "Aggregations"
    if "join" in name or "union" in name:
        return "Multi-Table"
    if "sort" in name:
        return "Sorting"
    if "pagination" in name:
        return "Pagination"
    return "Basic"


class CatalogLoader:
    """
    Builds SearchCriteria from a catalog of named entries
    """

    def __init__(self, entries: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.entries = dict(DEFAULT_QUERY_CATALOG if entries is None else entries)

    @classmethod
    def from_file(cls, path: str) -> "CatalogLoader":
        """Read a JSON catalog
        Args:
            path: File holding an object of name -> criteria mapping
        """
        with open(Path(path), "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Catalog {path} must be a JSON object of named entries")
        logger.info(f"Loaded {len(data)} catalog entries from {path}")
        return cls(data)

    def load(self, category: Optional[str] = None) -> Dict[str, SearchCriteria]:
        """
        Criteria per entry name, in catalog order

        category keeps only entries whose category contains the given
        text (case-insensitive).
        """
        catalog = {}
        for name, config in self.entries.items():
            if category and category.lower() not in category_for(name).lower():
                continue
            if isinstance(config, SearchCriteria):
                catalog[name] = config
                continue
            try:
                catalog[name] = SearchCriteria.from_dict(config)
            except InvalidCriteria as e:
                raise InvalidCriteria(f"Catalog entry '{name}': {e}", field=e.field) from e
        return catalog
