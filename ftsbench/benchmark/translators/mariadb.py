"""
MariaDB full-text dialect: ``MATCH(...) AGAINST (:query <mode>)``.

Every builder appends independent clauses to a fragment list and joins it
once, so the same criteria always yields the same SQL text.
"""

import json
import re
from typing import Any, Dict, List, Tuple

from ...capabilities import MARIADB, CapabilityDescriptor
from ...criteria import MatchMode, SearchCriteria, RELEVANCE_PRICE_WEIGHTED
from ...exceptions import TranslationError
from .base import (
    NativeQuery,
    PRICE_BUCKETS,
    PRICE_CEILING,
    QueryTranslator,
    RELEVANCE_WEIGHT,
    SOURCE_TYPES,
)

PRODUCT_MATCH = "MATCH(p.name, p.description, p.long_description, p.category, p.brand)"
CUSTOMER_MATCH = "MATCH(c.first_name, c.last_name, c.email, c.address, c.notes)"
REVIEW_MATCH = "MATCH(pr.title, pr.review_text)"
ORDER_MATCH = "MATCH(o.notes, o.shipping_address, o.billing_address)"
ORDER_NOTES_MATCH = "MATCH(o.notes)"

MATCH_MODES = {
    MatchMode.NATURAL: "IN NATURAL LANGUAGE MODE",
    MatchMode.BOOLEAN: "IN BOOLEAN MODE",
    MatchMode.QUERY_EXPANSION: "WITH QUERY EXPANSION",
}

# json path root -> (column, holds an array)
JSON_COLUMNS = {
    "tags": ("p.tags", True),
    "specs": ("p.specifications", False),
    "specifications": ("p.specifications", False),
}

UNION_SELECTS = {
    "products": (
        "p.id, p.name AS title, p.description",
        PRODUCT_MATCH,
        "products p",
    ),
    "customers": (
        "c.id, CONCAT(c.first_name, ' ', c.last_name) AS title, c.email AS description",
        CUSTOMER_MATCH,
        "customers c",
    ),
    "reviews": (
        "pr.id, pr.title, pr.review_text AS description",
        REVIEW_MATCH,
        "product_reviews pr",
    ),
    "orders": (
        "o.id, o.order_number AS title, o.notes AS description",
        ORDER_MATCH,
        "orders o",
    ),
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_COMPARISON = re.compile(r"^\s*(<=|>=|!=|<>|<|>|=)\s*(.+?)\s*$")


def _numeric(value: str):
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


class MariaDbTranslator(QueryTranslator):
    """
    Translates criteria into MariaDB full-text SQL with named parameters
    """

    def __init__(self, descriptor: CapabilityDescriptor = MARIADB):
        super().__init__(descriptor)

    def _against(self, match: str, criteria: SearchCriteria) -> str:
        mode = MATCH_MODES[self.effective_mode(criteria)]
        return f"{match} AGAINST (:query {mode})"

    def _page(self, criteria: SearchCriteria, params: Dict[str, Any]) -> str:
        params["limit"] = criteria.limit
        params["offset"] = criteria.offset
        return "LIMIT :limit OFFSET :offset"

    def build_search(self, criteria: SearchCriteria) -> NativeQuery:
        against = self._against(PRODUCT_MATCH, criteria)
        params: Dict[str, Any] = {"query": criteria.query}

        fragments = [
            "SELECT p.id, p.name, p.description, p.category, p.brand, p.price,",
            f"{against} AS relevance",
            "FROM products p",
            f"WHERE {against}",
        ]
        fragments.extend(self.filter_clauses(criteria, params))
        fragments.append(self.order_clause(criteria, against))
        fragments.append(self._page(criteria, params))

        return NativeQuery(
            text="\n".join(fragments),
            params=params,
            kind="search",
            source_type=SOURCE_TYPES["products"],
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def filter_clauses(self, criteria: SearchCriteria, params: Dict[str, Any],
                       alias: str = "p") -> List[str]:
        """
        Product filters in their fixed order: category, price bounds,
        attributes, JSON paths, dates, stock
        """
        filters = criteria.filters
        clauses = []

        if "category" in filters:
            clauses.append(f"AND {alias}.category = :category")
            params["category"] = filters["category"]
        if "min_price" in filters:
            clauses.append(f"AND {alias}.price >= :min_price")
            params["min_price"] = filters["min_price"]
        if "max_price" in filters:
            clauses.append(f"AND {alias}.price <= :max_price")
            params["max_price"] = filters["max_price"]
        if "color" in filters:
            clauses.append(f"AND {alias}.attr_color = :color")
            params["color"] = filters["color"]
        if "brand" in filters:
            clauses.append(f"AND {alias}.brand = :brand")
            params["brand"] = filters["brand"]

        for index, path in enumerate(sorted(criteria.json_filters)):
            clauses.append(self.json_clause(path, criteria.json_filters[path], f"json_{index}", params))

        if "from" in criteria.date_filters:
            clauses.append(f"AND {alias}.created_at >= :date_from")
            params["date_from"] = criteria.date_filters["from"]
        if "to" in criteria.date_filters:
            clauses.append(f"AND {alias}.created_at <= :date_to")
            params["date_to"] = criteria.date_filters["to"]

        if criteria.in_stock_only:
            clauses.append(f"AND {alias}.stock_quantity > 0")

        return clauses

    @staticmethod
    def review_clauses(criteria: SearchCriteria, params: Dict[str, Any]) -> List[str]:
        filters = criteria.filters
        clauses = []
        if filters.get("min_rating"):
            clauses.append("AND pr.rating >= :min_rating")
            params["min_rating"] = filters["min_rating"]
        if filters.get("verified_only"):
            clauses.append("AND pr.verified_purchase = TRUE")
        return clauses

    def json_clause(self, path: str, value: Any, name: str, params: Dict[str, Any]) -> str:
        """
        Translate a dotted path filter into JSON_CONTAINS / JSON_EXTRACT

        'tags' -> JSON_CONTAINS(p.tags, '"premium"')
        'specs.weight' with '<2' -> JSON_EXTRACT(p.specifications, '$.weight') < 2
        """
        segments = path.split(".")
        if not all(_IDENTIFIER.match(segment) for segment in segments):
            raise TranslationError(
                f"invalid JSON path: '{path}'", capability="json_filtering",
                backend=self.backend_name
            )
        if segments[0] not in JSON_COLUMNS:
            raise TranslationError(
                f"unknown JSON column: '{segments[0]}'", capability="json_filtering",
                backend=self.backend_name
            )
        column, _ = JSON_COLUMNS[segments[0]]

        if len(segments) == 1:
            params[name] = json.dumps(value)
            return f"AND JSON_CONTAINS({column}, :{name})"

        json_path = "$." + ".".join(segments[1:])
        operator, operand = "=", value
        if isinstance(value, str) and (match := _COMPARISON.match(value)):
            operator, operand = match.group(1), _numeric(match.group(2))

        params[name] = operand
        if isinstance(operand, str):
            return f"AND JSON_UNQUOTE(JSON_EXTRACT({column}, '{json_path}')) {operator} :{name}"
        return f"AND JSON_EXTRACT({column}, '{json_path}') {operator} :{name}"

    def order_clause(self, criteria: SearchCriteria, against: str, alias: str = "p") -> str:
        sort = self.sort_fields(criteria)
        if not sort:
            return "ORDER BY relevance DESC"

        parts = []
        for name, direction in sort:
            if name == RELEVANCE_PRICE_WEIGHTED:
                parts.append(
                    f"({against} * {RELEVANCE_WEIGHT} + ({PRICE_CEILING} - {alias}.price)) DESC"
                )
            elif name == "relevance":
                parts.append(f"relevance {direction}")
            else:
                parts.append(f"{alias}.{name} {direction}")
        return "ORDER BY " + ", ".join(parts)

    def build_entity_search(self, criteria: SearchCriteria, entity: str) -> NativeQuery:
        params: Dict[str, Any] = {"query": criteria.query}
        filters = criteria.filters

        if entity == "customers":
            against = self._against(CUSTOMER_MATCH, criteria)
            fragments = [
                "SELECT c.id, c.first_name, c.last_name, c.email, c.city, c.country,",
                f"{against} AS relevance",
                "FROM customers c",
                f"WHERE {against}",
            ]
        elif entity == "reviews":
            against = self._against(REVIEW_MATCH, criteria)
            fragments = [
                "SELECT pr.id, pr.product_id, pr.title, pr.review_text, pr.rating, pr.verified_purchase,",
                f"{against} AS relevance",
                "FROM product_reviews pr",
                f"WHERE {against}",
            ]
            fragments.extend(self.review_clauses(criteria, params))
        else:
            against = self._against(ORDER_MATCH, criteria)
            fragments = [
                "SELECT o.id, o.order_number, o.status, o.total_amount, o.created_at,",
                f"{against} AS relevance",
                "FROM orders o",
                f"WHERE {against}",
            ]
            if filters.get("status"):
                fragments.append("AND o.status = :status")
                params["status"] = filters["status"]

        fragments.append("ORDER BY relevance DESC")
        fragments.append(self._page(criteria, params))

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
        params: Dict[str, Any] = {"query": criteria.query}

        if dimension == "price_range":
            against = self._against(PRODUCT_MATCH, criteria)
            fragments = [
                "SELECT",
                self._price_bucket_case("p.price") + " AS price_range,",
                "COUNT(*) AS count,",
                f"AVG({against}) AS avg_relevance",
                "FROM products p",
                f"WHERE {against}",
            ]
            fragments.extend(self.filter_clauses(criteria, params))
            fragments.append("GROUP BY price_range")
            id_field = "price_range"
        elif dimension == "rating":
            against = self._against(REVIEW_MATCH, criteria)
            fragments = [
                "SELECT pr.rating,",
                "COUNT(*) AS count,",
                f"AVG({against}) AS avg_relevance",
                "FROM product_reviews pr",
                f"WHERE {against}",
            ]
            fragments.extend(self.review_clauses(criteria, params))
            fragments.append("GROUP BY pr.rating")
            id_field = "rating"
        else:
            against = self._against(PRODUCT_MATCH, criteria)
            fragments = [
                f"SELECT p.{dimension} AS group_by_field,",
                "COUNT(*) AS count,",
                f"AVG({against}) AS avg_relevance,",
                "AVG(p.price) AS avg_price",
                "FROM products p",
                f"WHERE {against}",
            ]
            fragments.extend(self.filter_clauses(criteria, params))
            fragments.append(f"GROUP BY p.{dimension}")
            id_field = "group_by_field"

        fragments.append("HAVING count > 0")
        fragments.append("ORDER BY avg_relevance DESC")
        fragments.append(self._page(criteria, params))

        return NativeQuery(
            text="\n".join(fragments),
            params=params,
            kind="aggregation",
            id_field=id_field,
            relevance_field="avg_relevance",
            limit=criteria.limit,
            offset=criteria.offset,
        )

    @staticmethod
    def _price_bucket_case(column: str) -> str:
        branches = ["CASE"]
        for label, _, upper in PRICE_BUCKETS:
            if upper is None:
                branches.append(f"ELSE '{label}'")
            else:
                branches.append(f"WHEN {column} < {upper} THEN '{label}'")
        branches.append("END")
        return " ".join(branches)

    def build_union(self, criteria: SearchCriteria, sources: List[str]) -> NativeQuery:
        params: Dict[str, Any] = {"query": criteria.query}
        selects = []

        for source in sources:
            columns, match, table = UNION_SELECTS[source]
            against = self._against(match, criteria)
            fragments = [
                f"(SELECT '{SOURCE_TYPES[source]}' AS source_type, {columns},",
                f"{against} AS relevance",
                f"FROM {table}",
                f"WHERE {against}",
            ]
            if source == "products":
                fragments.extend(self.filter_clauses(criteria, params))
            selects.append("\n".join(fragments) + ")")

        text = "\nUNION ALL\n".join(selects)
        text += "\nORDER BY relevance DESC\n" + self._page(criteria, params)

        return NativeQuery(
            text=text,
            params=params,
            kind="union",
            limit=criteria.limit,
            offset=criteria.offset,
        )

    def build_join(self, criteria: SearchCriteria, tables: List[str]) -> NativeQuery:
        """
        Products joined with orders / customers / reviews

        Each joined entity contributes its own full-text relevance and the
        rows are ranked by the sum.
        """
        params: Dict[str, Any] = {"query": criteria.query}
        select_fields = ["p.id", "p.name", "p.description"]
        joins = ["INNER JOIN order_items oi ON oi.product_id = p.id"]
        scored: List[Tuple[str, str]] = []

        if "orders" in tables or "customers" in tables:
            joins.append("INNER JOIN orders o ON o.id = oi.order_id")
        if "orders" in tables:
            select_fields.append("o.order_number")
            scored.append(("o_relevance", self._against(ORDER_NOTES_MATCH, criteria)))
        if "customers" in tables:
            joins.append("INNER JOIN customers c ON c.id = o.customer_id")
            select_fields.extend(["c.first_name", "c.last_name"])
            scored.append(("c_relevance", self._against(CUSTOMER_MATCH, criteria)))
        if "reviews" in tables:
            joins.append("LEFT JOIN product_reviews pr ON pr.product_id = p.id")
            select_fields.append("pr.rating")
            scored.append(("r_relevance", self._against(REVIEW_MATCH, criteria)))
        scored.append(("p_relevance", self._against(PRODUCT_MATCH, criteria)))

        select_fields.extend(f"{expr} AS {alias}" for alias, expr in scored)
        select_fields.append("(" + " + ".join(expr for _, expr in scored) + ") AS relevance")

        fragments = [
            "SELECT " + ",\n".join(select_fields),
            "FROM products p",
        ]
        fragments.extend(joins)
        fragments.append("WHERE (" + " OR ".join(expr for _, expr in scored) + ")")
        fragments.extend(self.filter_clauses(criteria, params))
        fragments.append("ORDER BY relevance DESC")
        fragments.append(self._page(criteria, params))

        return NativeQuery(
            text="\n".join(fragments),
            params=params,
            kind="join",
            source_type=SOURCE_TYPES["products"],
            limit=criteria.limit,
            offset=criteria.offset,
        )
