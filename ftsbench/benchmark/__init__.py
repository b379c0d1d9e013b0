"""Benchmark package for full-text search backend comparison."""

from .engines import (
    HitRecord,
    MariaDbBackend,
    SearchBackend,
    SphinxBackend,
    WhooshBackend,
    build_backends
)
from .loaders.catalog_loader import CatalogLoader, DEFAULT_QUERY_CATALOG
from .merge import merge_ranked
from .metrics.comparator import BenchmarkMetrics, ComparisonRow, compare_results, pick_winner, tally_wins
from .runner import BenchmarkRunner, IterationSample

__all__ = [
    'HitRecord',
    'SearchBackend',
    'MariaDbBackend',
    'SphinxBackend',
    'WhooshBackend',
    'build_backends',
    'CatalogLoader',
    'DEFAULT_QUERY_CATALOG',
    'merge_ranked',
    'BenchmarkMetrics',
    'ComparisonRow',
    'compare_results',
    'pick_winner',
    'tally_wins',
    'BenchmarkRunner',
    'IterationSample'
]
