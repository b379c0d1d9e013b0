import logging
from typing import Iterable, List, Optional

from whoosh.index import exists_in, open_dir

from ...config import DEFAULT_BACKENDS, BackendSettings
from ...exceptions import BackendUnavailable, InvalidCriteria
from .base import HitRecord, SearchBackend, to_hit
from .mariadb_engine import MariaDbBackend
from .sphinx_engine import SphinxBackend
from .sql_engine import SqlSearchBackend, create_sql_engine
from .whoosh_engine import WhooshBackend

logger = logging.getLogger(__name__)

BACKEND_NAMES = ("MariaDB", "Sphinx", "Whoosh")


def build_backend(name: str, settings: Optional[BackendSettings] = None) -> SearchBackend:
    """
    Create one backend by name (case-insensitive)
    """
    settings = settings or BackendSettings()
    key = name.lower()
    if key == "mariadb":
        return MariaDbBackend(create_sql_engine(settings.mariadb_url, settings))
    if key == "sphinx":
        return SphinxBackend(create_sql_engine(settings.sphinx_url, settings))
    if key == "whoosh":
        if not exists_in(settings.index_dir):
            raise BackendUnavailable(
                f"No Whoosh index in {settings.index_dir}; run 'ftsbench index' first",
                backend="Whoosh"
            )
        return WhooshBackend(open_dir(settings.index_dir))
    raise InvalidCriteria(f"Unknown backend: '{name}'.", field="backend",
                          valid_values=BACKEND_NAMES, value=name)


def build_backends(names: Iterable[str] = DEFAULT_BACKENDS,
                   settings: Optional[BackendSettings] = None) -> List[SearchBackend]:
    """
    Backends in the given order; the first one is the comparison baseline
    """
    backends = [build_backend(name, settings) for name in names]
    logger.debug(f"Registered backends: {[b.get_name() for b in backends]}")
    return backends


__all__ = [
    'BACKEND_NAMES',
    'HitRecord',
    'SearchBackend',
    'SqlSearchBackend',
    'MariaDbBackend',
    'SphinxBackend',
    'WhooshBackend',
    'build_backend',
    'build_backends',
    'create_sql_engine',
    'to_hit'
]
