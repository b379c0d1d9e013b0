"""
Backend-agnostic description of a search request.

A ``SearchCriteria`` is built once per request, validated on construction
and never mutated afterwards. Every presentation layer (CLI, HTTP) fills one
in before touching the benchmark core.
"""

from dataclasses import dataclass, field, fields, replace as dc_replace
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from .config import DEFAULT_LIMIT
from .exceptions import InvalidCriteria


class MatchMode(str, Enum):
    NATURAL = "NATURAL"
    BOOLEAN = "BOOLEAN"
    QUERY_EXPANSION = "QUERY_EXPANSION"


class AggregateBy(str, Enum):
    CATEGORY = "category"
    BRAND = "brand"
    PRICE_RANGE = "price_range"
    RATING = "rating"


PRODUCT_FILTERS = ("category", "min_price", "max_price", "color", "brand")
REVIEW_FILTERS = ("min_rating", "verified_only")
ORDER_FILTERS = ("status",)
KNOWN_FILTERS = PRODUCT_FILTERS + REVIEW_FILTERS + ORDER_FILTERS

JOIN_TABLES = ("products", "customers", "orders", "reviews")
SORT_DIRECTIONS = ("ASC", "DESC")
RELEVANCE_PRICE_WEIGHTED = "relevance_price_weighted"


def _coerce_enum(enum_cls, value, field_name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    raw = str(value)
    for member in enum_cls:
        if raw.upper() == member.value.upper():
            return member
    valid = [m.value for m in enum_cls]
    raise InvalidCriteria(
        f"Unknown {field_name}: '{raw}'.",
        field=field_name, valid_values=valid, value=raw
    )


def _coerce_date(value, bound: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidCriteria(
            f"Date filter '{bound}' is not an ISO date: {value!r}",
            field="date_filters"
        ) from None


def _freeze(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


def _hashable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return tuple(sorted((key, _hashable(item)) for key, item in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_hashable(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_hashable(item) for item in value)
    return value


@dataclass(frozen=True)
class SearchCriteria:
    """
    Canonical search request

    Args:
        query: Raw user text
        filters: Named scalar filters (category, brand, min_price, ...)
        limit: Page size, >= 0
        offset: Page start, >= 0
        order_by: Field -> ASC/DESC; insertion order is tie-break priority
        match_mode: NATURAL, BOOLEAN or QUERY_EXPANSION
        aggregate_by: Grouping dimension; wins over use_union
        join_tables: Auxiliary entities to correlate or merge
        use_union: Treat join_tables as independent sources to merge
        json_filters: Dotted path -> value filters on nested documents
        date_filters: Optional 'from' / 'to' bounds
        in_stock_only: Only items with stock left
    """
    query: str
    filters: Mapping[str, Any] = field(default_factory=dict)
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    order_by: Mapping[str, str] = field(default_factory=dict)
    match_mode: MatchMode = MatchMode.NATURAL
    aggregate_by: Optional[AggregateBy] = None
    join_tables: FrozenSet[str] = frozenset()
    use_union: bool = False
    json_filters: Mapping[str, Any] = field(default_factory=dict)
    date_filters: Mapping[str, date] = field(default_factory=dict)
    in_stock_only: bool = False

    def __post_init__(self):
        setter = object.__setattr__

        if self.query is None:
            raise InvalidCriteria("query must be a string", field="query")
        setter(self, "query", str(self.query))

        for name in ("limit", "offset"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidCriteria(f"{name} must be an integer, got {value!r}", field=name)
            if value < 0:
                raise InvalidCriteria(f"{name} must be >= 0, got {value}", field=name)

        setter(self, "match_mode", _coerce_enum(MatchMode, self.match_mode or MatchMode.NATURAL, "match_mode"))
        setter(self, "aggregate_by", _coerce_enum(AggregateBy, self.aggregate_by, "aggregate_by"))

        filters = dict(self.filters or {})
        for key in filters:
            if key not in KNOWN_FILTERS:
                raise InvalidCriteria(
                    f"Unknown filter: '{key}'.",
                    field="filters", valid_values=KNOWN_FILTERS, value=key
                )
        setter(self, "filters", _freeze(filters))

        order_by = {}
        for name, direction in (self.order_by or {}).items():
            normalized = str(direction).upper()
            if normalized not in SORT_DIRECTIONS:
                raise InvalidCriteria(
                    f"Sort direction for '{name}' must be ASC or DESC, got {direction!r}",
                    field="order_by"
                )
            order_by[name] = normalized
        setter(self, "order_by", _freeze(order_by))

        tables = frozenset(self.join_tables or ())
        setter(self, "join_tables", tables)
        setter(self, "use_union", bool(self.use_union))
        setter(self, "in_stock_only", bool(self.in_stock_only))
        setter(self, "json_filters", _freeze(self.json_filters))

        dates = {}
        for bound, value in (self.date_filters or {}).items():
            if bound not in ("from", "to"):
                raise InvalidCriteria(
                    f"Unknown date bound: '{bound}'.",
                    field="date_filters", valid_values=("from", "to"), value=bound
                )
            if value is not None:
                dates[bound] = _coerce_date(value, bound)
        if "from" in dates and "to" in dates and dates["from"] > dates["to"]:
            raise InvalidCriteria("date_filters 'from' is after 'to'", field="date_filters")
        setter(self, "date_filters", _freeze(dates))

    def __hash__(self):
        # mappings are read-only proxies, hashed by their sorted items
        return hash((
            self.query,
            _hashable(self.filters),
            self.limit,
            self.offset,
            _hashable(self.order_by),
            self.match_mode,
            self.aggregate_by,
            self.join_tables,
            self.use_union,
            _hashable(self.json_filters),
            _hashable(self.date_filters),
            self.in_stock_only,
        ))

    @property
    def has_filters(self) -> bool:
        return bool(self.filters)

    @property
    def is_union(self) -> bool:
        return self.use_union and bool(self.join_tables)

    @property
    def is_join(self) -> bool:
        return not self.use_union and bool(self.join_tables)

    def ordered_tables(self, candidates: Iterable[str] = JOIN_TABLES):
        """
        Join tables in a fixed order so generated queries are reproducible
        """
        return [t for t in candidates if t in self.join_tables]

    def replace(self, **changes) -> "SearchCriteria":
        return dc_replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchCriteria":
        """
        Build criteria from a plain mapping

        Accepts the attribute names as well as the short keys used by the
        query catalog ('mode', 'aggregate', 'join', 'union', 'sort').
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}

        if "mode" in data:
            kwargs["match_mode"] = data["mode"]
        if "aggregate" in data:
            kwargs["aggregate_by"] = data["aggregate"]
        if "sort" in data:
            kwargs["order_by"] = data["sort"]
        if "join" in data:
            kwargs["join_tables"] = data["join"]
        if "union" in data:
            kwargs["join_tables"] = data["union"]
            kwargs["use_union"] = True

        for key, value in data.items():
            if key in known and value is not None:
                kwargs[key] = value

        if "query" not in kwargs:
            raise InvalidCriteria("query is required", field="query")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "filters": dict(self.filters),
            "limit": self.limit,
            "offset": self.offset,
            "order_by": dict(self.order_by),
            "match_mode": self.match_mode.value,
            "aggregate_by": self.aggregate_by.value if self.aggregate_by else None,
            "join_tables": sorted(self.join_tables),
            "use_union": self.use_union,
            "json_filters": dict(self.json_filters),
            "date_filters": {k: v.isoformat() for k, v in self.date_filters.items()},
            "in_stock_only": self.in_stock_only,
        }
