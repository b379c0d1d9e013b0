"""
SphinxQL dialect.

Sphinx has no joins, no JSON documents and no UNION; price and stock are
not index attributes. Those gaps are declared in the capability table and
enforced before any of the builders below run.
"""

import re
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List

from ...capabilities import SPHINX, CapabilityDescriptor
from ...criteria import MatchMode, SearchCriteria
from ...exceptions import CapabilityUnsupported
from .base import NativeQuery, QueryTranslator, SOURCE_TYPES

DEFAULT_MAX_MATCHES = 1000

ENTITY_INDEXES = {
    "customers": ("id", "customers"),
    "reviews": ("id, product_id, rating", "product_reviews"),
    "orders": ("id, order_number, status", "orders"),
}

_PLAIN_BLOCKERS = ('"', '+', '-', '|', '(', '*')


def to_timestamp(value: date) -> int:
    """
    Sphinx stores dates as unix timestamps
    """
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class SphinxTranslator(QueryTranslator):
    """
    Translates criteria into SphinxQL with named parameters
    """

    def __init__(self, descriptor: CapabilityDescriptor = SPHINX):
        super().__init__(descriptor)

    def convert_query(self, query: str, mode: MatchMode) -> str:
        """
        Rewrite MariaDB-style text into Sphinx extended syntax

        NATURAL turns a plain multi-word query into an OR of its words so
        both engines match on any term.
        """
        if mode is MatchMode.BOOLEAN or " OR " in query or " AND " in query:
            return self._convert_boolean(query)

        if not any(token in query for token in _PLAIN_BLOCKERS):
            words = query.split()
            if len(words) > 1:
                return " | ".join(words)

        return query

    @staticmethod
    def _convert_boolean(query: str) -> str:
        text = re.sub(r"\s+OR\s+", " | ", query)
        text = re.sub(r"\s+AND\s+", " ", text)
        text = re.sub(r"\bNOT\s+", "!", text)
        text = re.sub(r"(^|[\s(])\+", r"\1", text)
        return " ".join(text.split())

    def _params(self, criteria: SearchCriteria) -> Dict[str, Any]:
        return {"query": self.convert_query(criteria.query, self.effective_mode(criteria))}

    def _page(self, limit: int, offset: int, params: Dict[str, Any]) -> List[str]:
        params["offset"] = offset
        params["limit"] = limit
        fragments = ["LIMIT :offset, :limit"]
        if offset + limit > DEFAULT_MAX_MATCHES:
            params["max_matches"] = offset + limit
            fragments.append("OPTION max_matches=:max_matches")
        return fragments

    def build_search(self, criteria: SearchCriteria) -> NativeQuery:
        params = self._params(criteria)
        fragments = [
            "SELECT id, category, brand, WEIGHT() AS relevance",
            "FROM products",
            "WHERE MATCH(:query)",
        ]
        fragments.extend(self.filter_clauses(criteria, params))
        fragments.append(self.order_clause(criteria))
        fragments.extend(self._page(criteria.limit, criteria.offset, params))

        return NativeQuery(
            text="\n".join(fragments),
            params=params,
            kind="search",
            source_type=SOURCE_TYPES["products"],
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def filter_clauses(self, criteria: SearchCriteria, params: Dict[str, Any]) -> List[str]:
        """
        Attribute filters Sphinx can evaluate: category, brand and dates
        """
        filters = criteria.filters
        clauses = []

        if "category" in filters:
            clauses.append("AND category = :category")
            params["category"] = filters["category"]
        if "brand" in filters:
            clauses.append("AND brand = :brand")
            params["brand"] = filters["brand"]
        if "from" in criteria.date_filters:
            clauses.append("AND created_at >= :date_from")
            params["date_from"] = to_timestamp(criteria.date_filters["from"])
        if "to" in criteria.date_filters:
            clauses.append("AND created_at <= :date_to")
            params["date_to"] = to_timestamp(criteria.date_filters["to"])

        return clauses

    def order_clause(self, criteria: SearchCriteria) -> str:
        sort = self.sort_fields(criteria)
        if not sort:
            return "ORDER BY relevance DESC"
        return "ORDER BY " + ", ".join(f"{name} {direction}" for name, direction in sort)

    def build_entity_search(self, criteria: SearchCriteria, entity: str) -> NativeQuery:
        columns, index = ENTITY_INDEXES[entity]
        params = self._params(criteria)
        filters = criteria.filters
        fragments = [
            f"SELECT {columns}, WEIGHT() AS relevance",
            f"FROM {index}",
            "WHERE MATCH(:query)",
        ]

        if entity == "reviews":
            if filters.get("min_rating"):
                fragments.append("AND rating >= :min_rating")
                params["min_rating"] = filters["min_rating"]
            if filters.get("verified_only"):
                fragments.append("AND verified_purchase = 1")
        elif entity == "orders" and filters.get("status"):
            fragments.append("AND status = :status")
            params["status"] = filters["status"]

        fragments.append("ORDER BY relevance DESC")
        fragments.extend(self._page(criteria.limit, criteria.offset, params))

        return NativeQuery(
            text="\n".join(fragments),
            params=params,
            kind=entity,
            source_type=SOURCE_TYPES[entity],
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_aggregation(self, criteria: SearchCriteria) -> NativeQuery:
        dimension = criteria.aggregate_by.value
        if dimension not in ("category", "brand"):
            raise CapabilityUnsupported(f"aggregate_by_{dimension}", backend=self.backend_name)

        params = self._params(criteria)
        fragments = [
            f"SELECT {dimension} AS group_by_field, COUNT(*) AS count, AVG(WEIGHT()) AS avg_relevance",
            "FROM products",
            "WHERE MATCH(:query)",
        ]
        fragments.extend(self.filter_clauses(criteria, params))
        fragments.append(f"GROUP BY {dimension}")
        fragments.append("ORDER BY avg_relevance DESC")
        fragments.extend(self._page(criteria.limit, criteria.offset, params))

        return NativeQuery(
            text="\n".join(fragments),
            params=params,
            kind="aggregation",
            id_field="group_by_field",
            relevance_field="avg_relevance",
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_union(self, criteria: SearchCriteria, sources: List[str]) -> NativeQuery:
        """
        One query per index; the client merges them by relevance

        Each source fetches offset + limit rows so the merged page is
        exact.
        """
        window = criteria.replace(
            limit=criteria.offset + criteria.limit,
            offset=0,
            order_by={},
            join_tables=frozenset(),
            use_union=False,
        )
        subqueries = []
        for source in sources:
            if source == "products":
                subqueries.append(self.build_search(window))
            else:
                subqueries.append(self.build_entity_search(window, source))

        return NativeQuery(
            text=";\n".join(sub.text for sub in subqueries),
            params={},
            kind="union",
            subqueries=tuple(subqueries),
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_join(self, criteria: SearchCriteria, tables: List[str]) -> NativeQuery:
        raise CapabilityUnsupported("multi_table_joins", backend=self.backend_name)
