"""Benchmark full-text search across MariaDB, Sphinx and Whoosh."""

from .criteria import AggregateBy, MatchMode, SearchCriteria

__version__ = "0.1.0"

__all__ = ['AggregateBy', 'MatchMode', 'SearchCriteria']
