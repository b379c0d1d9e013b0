import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from ...capabilities import CapabilityDescriptor
from ...criteria import SearchCriteria
from ..merge import merge_ranked
from ..translators.base import NativeQuery, QueryTranslator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HitRecord:
    """
    A single normalized result row
    """
    id: Any
    primary_fields: Mapping[str, Any] = field(default_factory=dict)
    relevance: float = 0.0

    @property
    def source_type(self) -> Optional[str]:
        return self.primary_fields.get("source_type")


def to_hit(row: Mapping[str, Any], native: NativeQuery) -> HitRecord:
    """
    Normalize a backend row using the id / relevance columns the
    translator declared
    """
    fields = dict(row)
    if native.source_type and "source_type" not in fields:
        fields["source_type"] = native.source_type
    relevance = fields.get(native.relevance_field)
    return HitRecord(
        id=fields.get(native.id_field),
        primary_fields=fields,
        relevance=float(relevance) if relevance is not None else 0.0,
    )


class SearchBackend(ABC):
    """
    Abstract base class for search backends

    Subclasses supply a translator and the execution of one native query;
    routing, capability checks and client-side union merging live here.
    """

    name = "backend"

    def __init__(self, translator: QueryTranslator):
        self.translator = translator

    @property
    def descriptor(self) -> CapabilityDescriptor:
        return self.translator.descriptor

    def get_name(self) -> str:
        return self.name

    @abstractmethod
    def prepare(self) -> None:
        """
        Acquire the connection / searcher used by the next calls
        """
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """
        Release whatever prepare() acquired
        """
        pass

    def abort(self) -> None:
        """
        Called when a call overran its timeout and may still be running
        on a worker thread; cleanup() follows once it returns
        """
        pass

    @abstractmethod
    def warmup(self) -> None:
        """
        Untimed round-trip that removes cold-connection skew
        """
        pass

    @abstractmethod
    def execute(self, native: NativeQuery) -> List[HitRecord]:
        """
        Run one non-compound native query
        """
        pass

    @contextmanager
    def session(self) -> Iterator["SearchBackend"]:
        """
        Scoped resource acquisition, released on every exit path
        """
        self.prepare()
        try:
            yield self
        finally:
            self.cleanup()

    def run(self, native: NativeQuery) -> List[HitRecord]:
        if not native.is_compound:
            return self.execute(native)

        per_source = []
        for sub in native.subqueries:
            per_source.append(self.execute(sub))
        logger.debug(
            f"{self.name}: merging {len(per_source)} sources client-side "
            f"(limit={native.limit}, offset={native.offset})"
        )
        return merge_ranked(per_source, native.limit, native.offset)

    def translate(self, criteria: SearchCriteria) -> NativeQuery:
        return self.translator.translate(criteria)

    def search(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate(criteria))

    def search_with_aggregation(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate_aggregation(criteria))

    def search_across_customers(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate_entity(criteria, "customers"))

    def search_across_reviews(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate_entity(criteria, "reviews"))

    def search_across_orders(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate_entity(criteria, "orders"))

    def search_with_join(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate_join(criteria))

    def search_union(self, criteria: SearchCriteria) -> List[HitRecord]:
        return self.run(self.translator.translate_union(criteria))

    def get_supported_boolean_operators(self) -> Tuple[str, ...]:
        return self.descriptor.boolean_operators

    def supports_json_search(self) -> bool:
        return self.descriptor.supports("json_filtering")

    def supports_query_expansion(self) -> bool:
        return self.descriptor.supports("query_expansion")

    def supports_proximity_search(self) -> bool:
        return self.descriptor.supports("proximity_search")

    def get_capabilities(self) -> Dict[str, bool]:
        return self.descriptor.as_dict()
