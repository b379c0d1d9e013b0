from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ...capabilities import (
    CapabilityDescriptor,
    ENTITY_CAPABILITIES,
    filter_capabilities,
    required_capabilities,
)
from ...criteria import (
    AggregateBy,
    JOIN_TABLES,
    MatchMode,
    ORDER_FILTERS,
    PRODUCT_FILTERS,
    RELEVANCE_PRICE_WEIGHTED,
    REVIEW_FILTERS,
    SearchCriteria,
)
from ...exceptions import TranslationError

SOURCE_TYPES = {
    "products": "product",
    "customers": "customer",
    "reviews": "review",
    "orders": "order",
}

# named filters each source table can apply; JSON paths, dates and stock
# exist on products only
TABLE_FILTERS = {
    "products": PRODUCT_FILTERS,
    "customers": (),
    "reviews": REVIEW_FILTERS,
    "orders": ORDER_FILTERS,
}

# upper bounds are exclusive, the last bucket is open
PRICE_BUCKETS: Tuple[Tuple[str, float, Optional[float]], ...] = (
    ("0-100", 0, 100),
    ("100-500", 100, 500),
    ("500-1000", 500, 1000),
    ("1000+", 1000, None),
)

DEFAULT_JOIN_TABLES = frozenset({"customers", "orders"})

RELEVANCE_WEIGHT = 10
PRICE_CEILING = 1000


def aggregation_table(criteria: SearchCriteria) -> str:
    return "reviews" if criteria.aggregate_by is AggregateBy.RATING else "products"


@dataclass(frozen=True)
class NativeQuery:
    """
    A query in one backend's own dialect

    ``subqueries`` is set when the backend cannot combine sources itself;
    the client runs each one and merges the hits by relevance.
    """
    text: str
    params: Dict[str, Any] = field(default_factory=dict)
    kind: str = "search"
    source_type: Optional[str] = None
    id_field: str = "id"
    relevance_field: str = "relevance"
    subqueries: Tuple["NativeQuery", ...] = ()
    limit: Optional[int] = None
    offset: int = 0

    @property
    def is_compound(self) -> bool:
        return bool(self.subqueries)


class QueryTranslator(ABC):
    """
    Abstract base class for criteria -> native query translators
    """

    def __init__(self, descriptor: CapabilityDescriptor):
        self.descriptor = descriptor

    @property
    def backend_name(self) -> str:
        return self.descriptor.backend_name

    def translate(self, criteria: SearchCriteria) -> NativeQuery:
        """
        Route the criteria to the matching query shape

        Aggregation wins over union, union over join, join over a plain
        relevance search.
        """
        self.descriptor.require_all(required_capabilities(criteria))

        if criteria.aggregate_by is not None:
            self.check_scope(criteria, aggregation_table(criteria))
            return self.build_aggregation(criteria)
        if criteria.is_union:
            return self.build_union(criteria, self._union_sources(criteria))
        if criteria.is_join:
            return self.build_join(criteria, self._join_tables(criteria))
        self.check_scope(criteria, "products")
        return self.build_search(criteria)

    def translate_aggregation(self, criteria: SearchCriteria) -> NativeQuery:
        if criteria.aggregate_by is None:
            raise TranslationError("aggregation requested without aggregate_by", backend=self.backend_name)
        self.descriptor.require_all(required_capabilities(criteria))
        self.check_scope(criteria, aggregation_table(criteria))
        return self.build_aggregation(criteria)

    def translate_union(self, criteria: SearchCriteria) -> NativeQuery:
        if not criteria.join_tables:
            raise TranslationError("union search needs at least one source table", backend=self.backend_name)
        union = criteria.replace(use_union=True, aggregate_by=None)
        self.descriptor.require_all(required_capabilities(union))
        return self.build_union(union, self._union_sources(union))

    def translate_join(self, criteria: SearchCriteria) -> NativeQuery:
        join = criteria.replace(
            join_tables=criteria.join_tables or DEFAULT_JOIN_TABLES,
            use_union=False,
            aggregate_by=None
        )
        self.descriptor.require_all(required_capabilities(join))
        return self.build_join(join, self._join_tables(join))

    def translate_entity(self, criteria: SearchCriteria, entity: str) -> NativeQuery:
        """
        Single-source search over customers, reviews or orders
        """
        capability = ENTITY_CAPABILITIES.get(entity)
        if capability is None:
            raise TranslationError(f"unknown entity: '{entity}'", backend=self.backend_name)
        self.descriptor.require(capability)
        if criteria.match_mode is MatchMode.BOOLEAN:
            self.descriptor.require("boolean_mode_search")
        self.descriptor.require_all(filter_capabilities(criteria))
        self.check_scope(criteria, entity)
        return self.build_entity_search(criteria, entity)

    def check_scope(self, criteria: SearchCriteria, table: str) -> None:
        """
        Reject filters the queried table has no column for
        """
        misplaced = [key for key in criteria.filters if key not in TABLE_FILTERS[table]]
        if table != "products":
            if criteria.json_filters:
                misplaced.append("json_filters")
            if criteria.date_filters:
                misplaced.append("date_filters")
            if criteria.in_stock_only:
                misplaced.append("in_stock_only")
        if misplaced:
            raise TranslationError(
                f"{', '.join(misplaced)} cannot be applied to {table}",
                capability="filtering", backend=self.backend_name
            )

    def _check_tables(self, criteria: SearchCriteria) -> None:
        unknown = sorted(t for t in criteria.join_tables if t not in JOIN_TABLES)
        if unknown:
            raise TranslationError(
                f"unknown table(s): {', '.join(unknown)}", backend=self.backend_name
            )

    def _union_sources(self, criteria: SearchCriteria) -> List[str]:
        self._check_tables(criteria)
        return criteria.ordered_tables()

    def _join_tables(self, criteria: SearchCriteria) -> List[str]:
        self._check_tables(criteria)
        return [t for t in criteria.ordered_tables() if t != "products"]

    def effective_mode(self, criteria: SearchCriteria) -> MatchMode:
        """
        QUERY_EXPANSION falls back to NATURAL where the backend lacks it
        """
        if (criteria.match_mode is MatchMode.QUERY_EXPANSION
                and not self.descriptor.supports("query_expansion")):
            return MatchMode.NATURAL
        return criteria.match_mode

    def sort_fields(self, criteria: SearchCriteria) -> List[Tuple[str, str]]:
        """
        Validated (field, direction) pairs in priority order

        relevance_price_weighted becomes plain relevance on backends
        without relevance_weighting.
        """
        ordered = []
        for name, direction in criteria.order_by.items():
            if name == RELEVANCE_PRICE_WEIGHTED:
                if self.descriptor.supports("relevance_weighting"):
                    ordered.append((name, "DESC"))
                else:
                    ordered.append(("relevance", "DESC"))
                continue
            if name == "relevance":
                ordered.append((name, direction))
                continue
            if name not in self.descriptor.sortable_fields:
                raise TranslationError(
                    f"cannot sort by '{name}'", capability="custom_sorting",
                    backend=self.backend_name
                )
            ordered.append((name, direction))
        return ordered

    @abstractmethod
    def build_search(self, criteria: SearchCriteria) -> NativeQuery:
        pass

    @abstractmethod
    def build_entity_search(self, criteria: SearchCriteria, entity: str) -> NativeQuery:
        pass

    @abstractmethod
    def build_aggregation(self, criteria: SearchCriteria) -> NativeQuery:
        pass

    @abstractmethod
    def build_union(self, criteria: SearchCriteria, sources: List[str]) -> NativeQuery:
        pass

    @abstractmethod
    def build_join(self, criteria: SearchCriteria, tables: List[str]) -> NativeQuery:
        pass
