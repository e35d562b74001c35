"""Transactional database client over SQLAlchemy Core.

SQL throughout Fieldward uses positional ``$1, $2 ...`` placeholders so
that RLS fragments can be composed with caller conditions by offset. The
client rewrites them into SQLAlchemy named binds (``:p1, :p2 ...``) before
execution, which keeps the same SQL working on SQLite and PostgreSQL.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import Connection, Engine, text
from sqlalchemy.exc import SQLAlchemyError

from fieldward.core.errors import StorageError
from fieldward.persistence.config import DatabaseConfig, create_db_engine

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$(\d+)")


@dataclass
class QueryResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0


@runtime_checkable
class TransactionalClient(Protocol):
    """A single exclusive connection with explicit transaction control."""

    supports_row_locks: bool

    def begin(self) -> None: ...

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def release(self) -> None: ...


@runtime_checkable
class ConnectionSource(Protocol):
    """Hands out transactional clients."""

    def acquire(self) -> TransactionalClient: ...


def bind_positional(sql: str, params: Sequence[Any] | None) -> tuple[str, dict[str, Any]]:
    """Rewrite ``$N`` placeholders into ``:pN`` named binds.

    Raises:
        StorageError: If the SQL references a placeholder with no value
    """
    values = list(params or [])
    referenced = {int(n) for n in _PLACEHOLDER.findall(sql)}
    missing = [n for n in referenced if n < 1 or n > len(values)]
    if missing:
        raise StorageError(
            f"Placeholder(s) {sorted(missing)} have no bound value ({len(values)} given)"
        )
    bound_sql = _PLACEHOLDER.sub(lambda m: f":p{m.group(1)}", sql)
    return bound_sql, {f"p{i}": value for i, value in enumerate(values, start=1)}


def _run(conn: Connection, sql: str, params: Sequence[Any] | None) -> QueryResult:
    bound_sql, bind = bind_positional(sql, params)
    logger.debug("SQL: %s params=%s", sql, list(params or []))
    try:
        result = conn.execute(text(bound_sql), bind)
        rows = [dict(row._mapping) for row in result] if result.returns_rows else []
        return QueryResult(rows=rows, rowcount=result.rowcount)
    except SQLAlchemyError as exc:
        raise StorageError(str(exc.orig) if getattr(exc, "orig", None) else str(exc)) from exc


class SQLAlchemyClient:
    """TransactionalClient backed by one SQLAlchemy connection."""

    def __init__(self, connection: Connection, supports_row_locks: bool = False):
        self._conn = connection
        self._tx = None
        self.supports_row_locks = supports_row_locks

    def begin(self) -> None:
        try:
            self._tx = self._conn.begin()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        return _run(self._conn, sql, params)

    def commit(self) -> None:
        if self._tx is None:
            return
        try:
            self._tx.commit()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        finally:
            self._tx = None

    def rollback(self) -> None:
        if self._tx is None:
            return
        try:
            if self._tx.is_active:
                self._tx.rollback()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        finally:
            self._tx = None

    def release(self) -> None:
        self._conn.close()


class Database:
    """Engine wrapper: autocommit queries plus transactional clients.

    Dialect-neutral via SQLAlchemy Core (SQLite and PostgreSQL).
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> Database:
        return cls(create_db_engine(config))

    @classmethod
    def from_url(cls, url: str) -> Database:
        return cls.from_config(DatabaseConfig(url=url))

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def supports_row_locks(self) -> bool:
        return self.dialect != "sqlite"

    def query(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run a single statement in its own transaction."""
        with self.engine.connect() as conn:
            result = _run(conn, sql, params)
            conn.commit()
            return result

    def acquire(self) -> SQLAlchemyClient:
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return SQLAlchemyClient(conn, supports_row_locks=self.supports_row_locks)

    def dispose(self) -> None:
        self.engine.dispose()
