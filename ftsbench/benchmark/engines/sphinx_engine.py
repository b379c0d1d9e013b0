import logging
from typing import Optional

from sqlalchemy.engine import Engine

from ...exceptions import BackendUnavailable
from ..translators.sphinx import SphinxTranslator
from .sql_engine import SqlSearchBackend

logger = logging.getLogger(__name__)


class SphinxBackend(SqlSearchBackend):
    """
    Sphinx / Manticore searchd over its MySQL-protocol listener (SphinxQL)
    """

    name = "Sphinx"

    def __init__(self, engine: Engine, translator: Optional[SphinxTranslator] = None):
        super().__init__(engine, translator or SphinxTranslator())

    def is_available(self) -> bool:
        try:
            self.fetch("SHOW STATUS")
            return True
        except BackendUnavailable as e:
            logger.warning(f"Sphinx is not available: {e}")
            return False

    def rebuild_index(self, index: str = "products") -> None:
        """
        Flush a real-time index to disk
        """
        if not index.isidentifier():
            raise ValueError(f"invalid index name: {index!r}")
        self.fetch(f"FLUSH RTINDEX {index}")
