import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from whoosh import scoring, sorting
from whoosh.index import Index, IndexError as WhooshIndexError
from whoosh.qparser import AndGroup, MultifieldParser, OrGroup
from whoosh.qparser.plugins import FuzzyTermPlugin, PlusMinusPlugin
from whoosh.query import Every, NumericRange, Or, Query, Term
from whoosh.searching import Searcher

from ...exceptions import BackendUnavailable
from ..translators.base import NativeQuery
from ..translators.whoosh import WhooshTranslator
from .base import HitRecord, SearchBackend, to_hit

logger = logging.getLogger(__name__)


class WhooshBackend(SearchBackend):
    """
    Embedded Whoosh index searched in-process
    """

    name = "Whoosh"

    def __init__(self, index: Index, translator: Optional[WhooshTranslator] = None,
                 weighting: Optional[scoring.WeightingModel] = None):
        super().__init__(translator or WhooshTranslator())
        self.index = index
        self.searcher: Optional[Searcher] = None
        self.weighting = weighting or scoring.BM25F(B=0.75, content_B=1.0, K1=1.2)

    def prepare(self) -> None:
        if self.searcher is None:
            try:
                self.searcher = self.index.searcher(weighting=self.weighting)
            except (OSError, WhooshIndexError) as e:
                raise BackendUnavailable(f"Whoosh: cannot open searcher: {e}", backend=self.name) from e

    def cleanup(self) -> None:
        """
        Clean up resources
        """
        if self.searcher is not None:
            self.searcher.close()
            self.searcher = None

    @contextmanager
    def _searcher(self) -> Iterator[Searcher]:
        if self.searcher is not None:
            yield self.searcher
        else:
            with self.index.searcher(weighting=self.weighting) as searcher:
                yield searcher

    def warmup(self) -> None:
        with self._searcher() as searcher:
            searcher.search(Every(), limit=1)

    def _parser(self, params: Mapping[str, Any]) -> MultifieldParser:
        group = AndGroup if params["group"] == "and" else OrGroup
        parser = MultifieldParser(
            list(params["fields"]),
            self.index.schema,
            fieldboosts=dict(params["fieldboosts"]),
            group=group,
        )
        parser.add_plugin(FuzzyTermPlugin())
        if params.get("plusminus"):
            parser.add_plugin(PlusMinusPlugin())
        return parser

    def execute(self, native: NativeQuery) -> List[HitRecord]:
        params = native.params
        try:
            with self._searcher() as searcher:
                query = self._parser(params).parse(native.text)
                if params.get("expand"):
                    query = self._expand(searcher, query, params)
                logger.debug(f"Whoosh [{native.kind}]: {query}")
                if params.get("groupedby"):
                    return self._aggregate(searcher, query, native)
                return self._search(searcher, query, native)
        except (OSError, WhooshIndexError) as e:
            raise BackendUnavailable(f"Whoosh: {e}", backend=self.name) from e

    def _expand(self, searcher: Searcher, query: Query, params: Mapping[str, Any]) -> Query:
        """
        Blind relevance feedback: OR the top key terms of the first
        results back into the query at half weight
        """
        field = params["expand_field"]
        first = searcher.search(query, limit=params["expand_docs"], filter=params.get("filter"))
        docnums = [hit.docnum for hit in first if hit.get(field)]
        if not docnums:
            return query
        key_terms = searcher.key_terms(docnums, field, numterms=params["expand_terms"])
        if not key_terms:
            return query
        return Or([query, Or([Term(field, term, boost=0.5) for term, _ in key_terms])])

    def _search(self, searcher: Searcher, query: Query, native: NativeQuery) -> List[HitRecord]:
        params = native.params
        window = native.offset + (native.limit or 0)
        sortedby = params.get("sortedby") or ()

        if sortedby:
            results = searcher.search(query, limit=None, filter=params.get("filter"))
            hits = self._sort([self._to_hit(hit, native) for hit in results], sortedby)
        else:
            results = searcher.search(query, limit=max(window, 1), filter=params.get("filter"))
            hits = [self._to_hit(hit, native) for hit in results]
        return hits[native.offset:window]

    @staticmethod
    def _to_hit(hit, native: NativeQuery) -> HitRecord:
        fields = dict(hit.fields())
        fields["relevance"] = float(hit.score) if hit.score is not None else 0.0
        return to_hit(fields, native)

    @staticmethod
    def _sort(hits: List[HitRecord], sortedby: Sequence[Tuple[str, bool]]) -> List[HitRecord]:
        # least significant key first; missing values go last for either direction
        for name, reverse in reversed(sortedby):
            present = [h for h in hits if h.primary_fields.get(name) is not None]
            missing = [h for h in hits if h.primary_fields.get(name) is None]
            present.sort(key=lambda h: h.primary_fields[name], reverse=reverse)
            hits = present + missing
        return hits

    @staticmethod
    def _facet(dimension: str, params: Mapping[str, Any]) -> sorting.FacetType:
        if dimension == "price_range":
            return sorting.QueryFacet({
                label: NumericRange("price", low, high, endexcl=True)
                for label, low, high in params["buckets"]
            })
        return sorting.FieldFacet(dimension)

    @staticmethod
    def _group_label(key: Any) -> Any:
        return key.decode("utf-8") if isinstance(key, bytes) else key

    def _aggregate(self, searcher: Searcher, query: Query, native: NativeQuery) -> List[HitRecord]:
        params = native.params
        dimension = params["groupedby"]
        results = searcher.search(
            query,
            limit=None,
            filter=params.get("filter"),
            groupedby={dimension: self._facet(dimension, params)},
        )
        scores = {hit.docnum: hit.score for hit in results}

        rows: List[Dict[str, Any]] = []
        for key, docnums in results.groups(dimension).items():
            matched = [scores[d] for d in docnums if d in scores]
            if key is None or not matched:
                continue
            rows.append({
                dimension: self._group_label(key),
                "count": len(matched),
                "avg_relevance": sum(matched) / len(matched),
            })

        rows.sort(key=lambda row: row["avg_relevance"], reverse=True)
        if native.limit is None:
            page = rows[native.offset:]
        else:
            page = rows[native.offset:native.offset + native.limit]
        return [to_hit(row, native) for row in page]
