from typing import Optional

from sqlalchemy.engine import Engine

from ..translators.mariadb import MariaDbTranslator
from .sql_engine import SqlSearchBackend


class MariaDbBackend(SqlSearchBackend):
    """
    MariaDB native full-text search (InnoDB FULLTEXT indexes)
    """

    name = "MariaDB"

    def __init__(self, engine: Engine, translator: Optional[MariaDbTranslator] = None):
        super().__init__(engine, translator or MariaDbTranslator())
