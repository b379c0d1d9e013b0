"""
Whoosh query-language dialect.

The query text goes to a ``MultifieldParser``; filters travel as Whoosh
query objects in the params and are handed to ``Searcher.search(filter=)``
so they restrict hits without touching the score.
"""

import re
from datetime import datetime, time
from typing import Any, Dict, List, Tuple

from whoosh.query import And, DateRange, NumericRange, Or, Query, Term

from ...capabilities import WHOOSH, CapabilityDescriptor
from ...criteria import MatchMode, SearchCriteria
from ...exceptions import CapabilityUnsupported
from .base import NativeQuery, PRICE_BUCKETS, QueryTranslator, SOURCE_TYPES

FIELD_BOOSTS = {
    "products": {"name": 2.0, "description": 1.5, "long_description": 1.0},
    "customers": {"first_name": 2.0, "last_name": 2.0, "email": 1.0, "address": 1.0, "notes": 1.0},
    "reviews": {"title": 2.0, "review_text": 1.0},
    "orders": {"notes": 1.0, "shipping_address": 1.0, "billing_address": 1.0},
}

EXPANSION_FIELD = "description"
EXPANSION_DOCS = 10
EXPANSION_TERMS = 5


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


class WhooshTranslator(QueryTranslator):
    """
    Translates criteria into Whoosh query text plus search() arguments
    """

    def __init__(self, descriptor: CapabilityDescriptor = WHOOSH):
        super().__init__(descriptor)

    @staticmethod
    def select_group(query: str) -> str:
        """
        AND-group when the text spells out AND, otherwise OR-group
        """
        return "and" if re.search(r'\bAND\b', query) else "or"

    def _base_params(self, criteria: SearchCriteria, tables: List[str]) -> Dict[str, Any]:
        mode = self.effective_mode(criteria)
        boosts: Dict[str, float] = {}
        for table in tables:
            for name, boost in FIELD_BOOSTS[table].items():
                boosts.setdefault(name, boost)

        params: Dict[str, Any] = {
            "fields": tuple(boosts),
            "fieldboosts": boosts,
            "group": self.select_group(criteria.query),
            "plusminus": mode is MatchMode.BOOLEAN,
            "expand": mode is MatchMode.QUERY_EXPANSION,
            "limit": criteria.limit,
            "offset": criteria.offset,
        }
        if params["expand"]:
            params["expand_field"] = EXPANSION_FIELD
            params["expand_docs"] = EXPANSION_DOCS
            params["expand_terms"] = EXPANSION_TERMS
        return params

    def filter_terms(self, criteria: SearchCriteria) -> List[Query]:
        """
        Product filters in their fixed order: category, price bounds,
        attributes, dates, stock
        """
        filters = criteria.filters
        terms: List[Query] = []

        if "category" in filters:
            terms.append(Term("category", str(filters["category"])))
        if "min_price" in filters or "max_price" in filters:
            terms.append(NumericRange("price", filters.get("min_price"), filters.get("max_price")))
        if "color" in filters:
            terms.append(Term("color", str(filters["color"])))
        if "brand" in filters:
            terms.append(Term("brand", str(filters["brand"])))
        if criteria.json_filters:
            raise CapabilityUnsupported("json_filtering", backend=self.backend_name)
        if criteria.date_filters:
            start = criteria.date_filters.get("from")
            end = criteria.date_filters.get("to")
            terms.append(DateRange(
                "created_at",
                _as_datetime(start) if start else None,
                _as_datetime(end) if end else None,
            ))
        if criteria.in_stock_only:
            terms.append(NumericRange("stock_quantity", 1, None))

        return terms

    @staticmethod
    def entity_terms(criteria: SearchCriteria, entity: str) -> List[Query]:
        """
        Review and order filters
        """
        filters = criteria.filters
        terms: List[Query] = []
        if entity == "reviews":
            if filters.get("min_rating"):
                terms.append(NumericRange("rating", filters["min_rating"], None))
            if filters.get("verified_only"):
                terms.append(Term("verified_purchase", True))
        elif entity == "orders" and filters.get("status"):
            terms.append(Term("status", str(filters["status"])))
        return terms

    def sortedby(self, criteria: SearchCriteria) -> Tuple[Tuple[str, bool], ...]:
        """
        (field, reverse) pairs; empty means score order
        """
        return tuple(
            (name, direction == "DESC")
            for name, direction in self.sort_fields(criteria)
            if name != "relevance"
        )

    def build_search(self, criteria: SearchCriteria) -> NativeQuery:
        params = self._base_params(criteria, ["products"])
        params["filter"] = And([Term("source_type", SOURCE_TYPES["products"])] + self.filter_terms(criteria))
        params["sortedby"] = self.sortedby(criteria)

        return NativeQuery(
            text=criteria.query,
            params=params,
            kind="search",
            source_type=SOURCE_TYPES["products"],
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_entity_search(self, criteria: SearchCriteria, entity: str) -> NativeQuery:
        params = self._base_params(criteria, [entity])
        params["filter"] = And([Term("source_type", SOURCE_TYPES[entity])] + self.entity_terms(criteria, entity))
        params["sortedby"] = ()

        return NativeQuery(
            text=criteria.query,
            params=params,
            kind=entity,
            source_type=SOURCE_TYPES[entity],
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_aggregation(self, criteria: SearchCriteria) -> NativeQuery:
        dimension = criteria.aggregate_by.value
        table = "reviews" if dimension == "rating" else "products"
        params = self._base_params(criteria, [table])
        extra = self.filter_terms(criteria) if table == "products" else self.entity_terms(criteria, table)
        params["filter"] = And([Term("source_type", SOURCE_TYPES[table])] + extra)
        params["sortedby"] = ()
        params["groupedby"] = dimension
        if dimension == "price_range":
            params["buckets"] = PRICE_BUCKETS

        return NativeQuery(
            text=criteria.query,
            params=params,
            kind="aggregation",
            id_field=dimension,
            relevance_field="avg_relevance",
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_union(self, criteria: SearchCriteria, sources: List[str]) -> NativeQuery:
        """
        All sources share one index, so the union is a single query over
        the source_type field
        """
        params = self._base_params(criteria, sources)
        branches: List[Query] = []
        for source in sources:
            source_term = Term("source_type", SOURCE_TYPES[source])
            if source == "products":
                extra = self.filter_terms(criteria)
                branches.append(And([source_term] + extra) if extra else source_term)
            else:
                branches.append(source_term)
        params["filter"] = Or(branches)
        params["sortedby"] = ()

        return NativeQuery(
            text=criteria.query,
            params=params,
            kind="union",
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_join(self, criteria: SearchCriteria, tables: List[str]) -> NativeQuery:
        raise CapabilityUnsupported("multi_table_joins", backend=self.backend_name)
