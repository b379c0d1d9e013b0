import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ...config import BackendSettings
from ...exceptions import BackendUnavailable
from ..translators.base import NativeQuery, QueryTranslator
from .base import HitRecord, SearchBackend, to_hit

logger = logging.getLogger(__name__)


def create_sql_engine(url: str, settings: Optional[BackendSettings] = None) -> Engine:
    """
    Engine for a MySQL-protocol backend; reads are autocommit
    """
    settings = settings or BackendSettings()
    return create_engine(
        url,
        pool_pre_ping=True,
        isolation_level="AUTOCOMMIT",
        connect_args=settings.connect_args(),
    )


class SqlSearchBackend(SearchBackend):
    """
    Backend reached through a SQLAlchemy engine

    prepare() checks out one connection for the whole sweep; calls made
    outside a session borrow a pooled connection per query.
    """

    def __init__(self, engine: Engine, translator: QueryTranslator):
        super().__init__(translator)
        self.engine = engine
        self.connection: Optional[Connection] = None

    def prepare(self) -> None:
        if self.connection is None:
            try:
                self.connection = self.engine.connect()
            except SQLAlchemyError as e:
                raise BackendUnavailable(f"{self.name}: cannot connect: {e}", backend=self.name) from e

    def cleanup(self) -> None:
        if self.connection is not None:
            try:
                self.connection.close()
            finally:
                self.connection = None

    def abort(self) -> None:
        # the connection is closed under the running query and never
        # returned to the pool
        if self.connection is not None:
            connection, self.connection = self.connection, None
            connection.invalidate()

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if self.connection is not None:
            yield self.connection
        else:
            with self.engine.connect() as conn:
                yield conn

    def fetch(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            with self._connection() as conn:
                result = conn.execute(text(sql), dict(params or {}))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            logger.error(f"{self.name} query failed: {e}")
            raise BackendUnavailable(f"{self.name}: {e}", backend=self.name) from e

    def warmup(self) -> None:
        self.fetch("SELECT 1")

    def execute(self, native: NativeQuery) -> List[HitRecord]:
        logger.debug(f"{self.name} [{native.kind}]: {native.text} {native.params}")
        return [to_hit(row, native) for row in self.fetch(native.text, native.params)]
