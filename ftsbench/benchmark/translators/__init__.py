"""Criteria -> native query translators, one per backend."""

from .base import NativeQuery, QueryTranslator, PRICE_BUCKETS, SOURCE_TYPES
from .mariadb import MariaDbTranslator
from .sphinx import SphinxTranslator
from .whoosh import WhooshTranslator

__all__ = [
    'NativeQuery',
    'QueryTranslator',
    'PRICE_BUCKETS',
    'SOURCE_TYPES',
    'MariaDbTranslator',
    'SphinxTranslator',
    'WhooshTranslator',
]
