"""Database adapter base class.

Manifesto:
    Every relational backend shares the same lifecycle (connect/disconnect),
    the same scoped-connection rule, and the same transaction shape. The
    abstract base class owns those rules so the concrete adapters only say
    how to borrow a raw connection and how to read their driver's errors.

    A connection is never shared between concurrent requests: ``connection()``
    and ``transaction()`` each borrow one for the duration of the ``with``
    block and return it on every exit path.

Features:
    - ``SqlSession``: cursor handling, dict rows, driver-error translation
    - ``connection()``: scoped connection, committed on success
    - ``transaction()``: explicit BEGIN (optionally exclusive), COMMIT or
      ROLLBACK and re-raise, optional statement timeout
    - Context-manager protocol for adapter lifecycle

Tags:
    equiptrak, database, abstract-base, adapter-pattern, transactions

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from equiptrak.core.dialect import Dialect, get_dialect
from equiptrak.core.errors import EquiptrakError
from equiptrak.core.logging import get_logger

from .types import DatabaseConfig, DatabaseType

logger = get_logger(__name__)

ErrorTranslator = Callable[[Exception], EquiptrakError | None]


class SqlSession:
    """
    One borrowed DB-API connection plus the dialect that speaks to it.

    All driver exceptions raised while executing are translated into the
    equiptrak error taxonomy; the original stays chained as ``cause``.
    """

    def __init__(self, conn: Any, dialect: Dialect, translate: ErrorTranslator):
        self._conn = conn
        self._dialect = dialect
        self._translate = translate

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def raw_connection(self) -> Any:
        return self._conn

    def _run(self, sql: str, params: Sequence[Any]) -> tuple[list[dict[str, Any]], int]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(params))
            rows: list[dict[str, Any]] = []
            if cursor.description:
                columns = [desc[0] for desc in cursor.description]
                rows = [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]
            return rows, cursor.rowcount
        except Exception as exc:
            translated = self._translate(exc)
            if translated is None:
                raise
            raise translated from exc
        finally:
            cursor.close()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement and return the affected row count."""
        _, rowcount = self._run(sql, params)
        return rowcount

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute a query and return rows as dicts."""
        rows, _ = self._run(sql, params)
        return rows

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Execute a query and return the first row, if any."""
        rows = self.query(sql, params)
        return rows[0] if rows else None


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Subclasses implement connection borrowing (``_acquire``/``_release``)
    and ``translate_error``; everything else is shared.
    """

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._connected = False
        self._dialect: Dialect = get_dialect(config.db_type.value)

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this adapter's database type."""
        return self._dialect

    @property
    def db_type(self) -> DatabaseType:
        """Database type."""
        return self._config.db_type

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        """Whether adapter is connected."""
        return self._connected

    @abstractmethod
    def connect(self) -> None:
        """Establish connection (or pool) to the database."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection or pool."""
        ...

    @abstractmethod
    def _acquire(self) -> Any:
        """Borrow a raw connection."""
        ...

    @abstractmethod
    def _release(self, conn: Any, *, broken: bool = False) -> None:
        """Return a borrowed connection."""
        ...

    @abstractmethod
    def translate_error(self, exc: Exception) -> EquiptrakError | None:
        """Map a driver exception onto the error taxonomy (None = not a driver error)."""
        ...

    def _commit(self, conn: Any) -> None:
        conn.commit()

    def _rollback(self, conn: Any) -> bool:
        """Roll back; returns False when the connection is no longer usable."""
        try:
            conn.rollback()
            return True
        except Exception as exc:
            logger.warning("rollback_failed", db_type=self.db_type.value, error=str(exc))
            return False

    def _session(self, conn: Any) -> SqlSession:
        return SqlSession(conn, self._dialect, self.translate_error)

    @contextmanager
    def connection(self) -> Iterator[SqlSession]:
        """Scoped connection. Committed on success, rolled back on error."""
        conn = self._acquire()
        broken = False
        try:
            yield self._session(conn)
            self._commit(conn)
        except BaseException:
            broken = not self._rollback(conn)
            raise
        finally:
            self._release(conn, broken=broken)

    @contextmanager
    def transaction(
        self,
        *,
        exclusive: bool = False,
        statement_timeout_ms: int | None = None,
    ) -> Iterator[SqlSession]:
        """
        Transaction context manager.

        ``exclusive=True`` takes the backend's writer lock up front
        (``BEGIN IMMEDIATE`` on SQLite) so read-then-write sequences inside
        the block cannot interleave with another writer.
        """
        conn = self._acquire()
        session = self._session(conn)
        broken = False
        try:
            begin = self._dialect.begin(exclusive)
            if begin:
                session.execute(begin)
            if statement_timeout_ms:
                timeout_sql = self._dialect.statement_timeout(statement_timeout_ms)
                if timeout_sql:
                    session.execute(timeout_sql)
            yield session
            self._commit(conn)
        except BaseException:
            broken = not self._rollback(conn)
            raise
        finally:
            self._release(conn, broken=broken)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute one statement on its own scoped connection."""
        with self.connection() as session:
            return session.execute(sql, params)

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute query and return results as dicts."""
        with self.connection() as session:
            return session.query(sql, params)

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Execute query and return single result."""
        results = self.query(sql, params)
        return results[0] if results else None

    def __enter__(self) -> DatabaseAdapter:
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.disconnect()


__all__ = [
    "DatabaseAdapter",
    "SqlSession",
]
