"""
Static feature tables for each backend.

The descriptors are plain data. Translators ask ``required_capabilities``
what a criteria needs and check it against the descriptor before building
any query, so engine asymmetries live here and nowhere else.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Tuple

from .criteria import MatchMode, SearchCriteria, RELEVANCE_PRICE_WEIGHTED
from .exceptions import CapabilityUnsupported


FILTER_CAPABILITIES = {
    "category": "category_filtering",
    "min_price": "price_filtering",
    "max_price": "price_filtering",
    "color": "color_filtering",
    "brand": "brand_filtering",
}

ENTITY_CAPABILITIES = {
    "customers": "customer_search",
    "reviews": "review_search",
    "orders": "order_search",
}


@dataclass(frozen=True)
class CapabilityDescriptor:
    backend_name: str
    capabilities: Mapping[str, bool]
    boolean_operators: Tuple[str, ...] = ()
    sortable_fields: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "capabilities", MappingProxyType(dict(self.capabilities)))
        object.__setattr__(self, "boolean_operators", tuple(self.boolean_operators))
        object.__setattr__(self, "sortable_fields", frozenset(self.sortable_fields))

    def supports(self, name: str) -> bool:
        return bool(self.capabilities.get(name, False))

    def require(self, name: str) -> None:
        if not self.supports(name):
            raise CapabilityUnsupported(name, backend=self.backend_name)

    def require_all(self, names: Iterable[str]) -> None:
        for name in names:
            self.require(name)

    def as_dict(self) -> Dict[str, bool]:
        return dict(self.capabilities)


def filter_capabilities(criteria: SearchCriteria) -> List[str]:
    """
    Capabilities behind the filters, JSON paths, dates and stock flag
    """
    needed: List[str] = []
    for key in ("category", "min_price", "max_price", "color", "brand"):
        if key in criteria.filters and FILTER_CAPABILITIES[key] not in needed:
            needed.append(FILTER_CAPABILITIES[key])
    if criteria.json_filters:
        needed.append("json_filtering")
    if criteria.date_filters:
        needed.append("date_filtering")
    if criteria.in_stock_only:
        needed.append("stock_filtering")
    return needed


def required_capabilities(criteria: SearchCriteria) -> List[str]:
    """
    Capabilities a criteria needs, in the order translators check them

    QUERY_EXPANSION and relevance_price_weighted are absent on purpose:
    both degrade quietly on backends that lack them.
    """
    needed: List[str] = []

    def need(name: str):
        if name not in needed:
            needed.append(name)

    if criteria.match_mode is MatchMode.BOOLEAN:
        need("boolean_mode_search")
    else:
        need("natural_language_search")

    if criteria.aggregate_by is not None:
        need("aggregations")
        need(f"aggregate_by_{criteria.aggregate_by.value}")
    elif criteria.is_union:
        need("union_search")
        for table in criteria.ordered_tables():
            if table in ENTITY_CAPABILITIES:
                need(ENTITY_CAPABILITIES[table])
    elif criteria.is_join:
        need("multi_table_joins")

    for name in filter_capabilities(criteria):
        need(name)
    # groups are always ordered by average relevance
    if criteria.aggregate_by is not None:
        return needed

    for name in criteria.order_by:
        if name in (RELEVANCE_PRICE_WEIGHTED, "relevance"):
            continue
        need("custom_sorting")
        if name == "price":
            need("price_sorting")

    if criteria.offset + criteria.limit > 1000:
        need("deep_pagination")

    return needed


MARIADB_OPERATORS = ('+', '-', '>', '<', '(', ')', '~', '*', '"', 'AND', 'OR', 'NOT')
SPHINX_OPERATORS = ('AND', 'OR', 'NOT', '|', '!', '"', '(', ')', '~', '*')
WHOOSH_OPERATORS = ('AND', 'OR', 'NOT', 'ANDNOT', 'ANDMAYBE', '+', '-', '"', '(', ')', '~', '*', '?')

MARIADB = CapabilityDescriptor(
    backend_name="MariaDB",
    capabilities={
        "natural_language_search": True,
        "boolean_mode_search": True,
        "query_expansion": True,
        "phrase_matching": True,
        "wildcard_search": True,
        "proximity_search": False,
        "multi_table_joins": True,
        "union_search": True,
        "native_union": True,
        "json_filtering": True,
        "json_virtual_columns": True,
        "aggregations": True,
        "faceted_search": True,
        "aggregate_by_category": True,
        "aggregate_by_brand": True,
        "aggregate_by_price_range": True,
        "aggregate_by_rating": True,
        "customer_search": True,
        "order_search": True,
        "review_search": True,
        "date_filtering": True,
        "price_filtering": True,
        "price_sorting": True,
        "stock_filtering": True,
        "category_filtering": True,
        "brand_filtering": True,
        "color_filtering": True,
        "custom_sorting": True,
        "relevance_weighting": True,
        "deep_pagination": True,
    },
    boolean_operators=MARIADB_OPERATORS,
    sortable_fields={"id", "name", "price", "category", "brand", "created_at", "stock_quantity"},
)

# price and stock are not configured as index attributes
SPHINX = CapabilityDescriptor(
    backend_name="Sphinx",
    capabilities={
        "natural_language_search": True,
        "boolean_mode_search": True,
        "query_expansion": True,
        "phrase_matching": True,
        "wildcard_search": True,
        "proximity_search": True,
        "multi_table_joins": False,
        "union_search": True,
        "native_union": False,
        "json_filtering": False,
        "json_virtual_columns": False,
        "aggregations": True,
        "faceted_search": True,
        "aggregate_by_category": True,
        "aggregate_by_brand": True,
        "aggregate_by_price_range": False,
        "aggregate_by_rating": False,
        "customer_search": True,
        "order_search": True,
        "review_search": True,
        "date_filtering": True,
        "price_filtering": False,
        "price_sorting": False,
        "stock_filtering": False,
        "category_filtering": True,
        "brand_filtering": True,
        "color_filtering": False,
        "custom_sorting": True,
        "relevance_weighting": False,
        "deep_pagination": True,
    },
    boolean_operators=SPHINX_OPERATORS,
    sortable_fields={"id", "category", "brand", "created_at"},
)

WHOOSH = CapabilityDescriptor(
    backend_name="Whoosh",
    capabilities={
        "natural_language_search": True,
        "boolean_mode_search": True,
        "query_expansion": True,
        "phrase_matching": True,
        "wildcard_search": True,
        "proximity_search": True,
        "multi_table_joins": False,
        "union_search": True,
        "native_union": True,
        "json_filtering": False,
        "json_virtual_columns": False,
        "aggregations": True,
        "faceted_search": True,
        "aggregate_by_category": True,
        "aggregate_by_brand": True,
        "aggregate_by_price_range": True,
        "aggregate_by_rating": True,
        "customer_search": True,
        "order_search": True,
        "review_search": True,
        "date_filtering": True,
        "price_filtering": True,
        "price_sorting": True,
        "stock_filtering": True,
        "category_filtering": True,
        "brand_filtering": True,
        "color_filtering": True,
        "custom_sorting": True,
        "relevance_weighting": False,
        "deep_pagination": True,
    },
    boolean_operators=WHOOSH_OPERATORS,
    sortable_fields={"id", "name", "price", "category", "brand", "created_at", "stock_quantity"},
)

DESCRIPTORS: Dict[str, CapabilityDescriptor] = {
    d.backend_name: d for d in (MARIADB, SPHINX, WHOOSH)
}


def capability_matrix(descriptors: Iterable[CapabilityDescriptor]) -> Dict[str, Dict[str, bool]]:
    """
    capability name -> backend name -> supported
    """
    descriptors = list(descriptors)
    names: List[str] = []
    for descriptor in descriptors:
        for name in descriptor.capabilities:
            if name not in names:
                names.append(name)
    return {
        name: {d.backend_name: d.supports(name) for d in descriptors}
        for name in names
    }
