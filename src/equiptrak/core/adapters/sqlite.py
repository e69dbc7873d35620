"""SQLite database adapter."""

from __future__ import annotations

import sqlite3
import threading
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from equiptrak.core.errors import (
    BackendUnavailableError,
    ConflictError,
    EquiptrakError,
    InternalError,
    NotFoundError,
)

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(date, lambda value: value.isoformat())
sqlite3.register_adapter(datetime, lambda value: value.isoformat(timespec="microseconds"))


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter.

    Uses the built-in sqlite3 module in autocommit mode with explicit
    ``BEGIN``/``BEGIN IMMEDIATE``. Suitable for:
    - Development and testing
    - Single-site deployments

    File databases open one connection per scope (WAL journal, busy
    timeout). ``:memory:`` databases only exist on one connection, so that
    connection is shared and each scope holds a re-entrant lock on it.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        timeout: float = 5.0,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.SQLITE,
            path=path,
            options=kwargs,
        )
        super().__init__(config)
        self._timeout = timeout
        self._shared: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    def _open(self, path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(
            path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def connect(self) -> None:
        """Connect to SQLite database."""
        with self._lock:
            if self._connected:
                return
            try:
                if self._config.is_memory:
                    self._shared = self._open(":memory:")
                else:
                    Path(self._config.path).parent.mkdir(parents=True, exist_ok=True)
                    conn = self._open(self._config.path)
                    try:
                        conn.execute("PRAGMA journal_mode = WAL")
                    finally:
                        conn.close()
                self._connected = True
            except sqlite3.Error as e:
                raise BackendUnavailableError(
                    f"Failed to connect to SQLite: {e}",
                    cause=e,
                ) from e

    def disconnect(self) -> None:
        """Close SQLite connection."""
        with self._lock:
            if self._shared is not None:
                self._shared.close()
                self._shared = None
            self._connected = False

    def _acquire(self) -> sqlite3.Connection:
        if not self._connected:
            self.connect()
        if self._shared is not None:
            self._lock.acquire()
            self._depth += 1
            return self._shared
        try:
            return self._open(self._config.path)
        except sqlite3.Error as e:
            raise BackendUnavailableError(f"Failed to open SQLite database: {e}", cause=e) from e

    def _release(self, conn: Any, *, broken: bool = False) -> None:  # noqa: ARG002
        if conn is self._shared:
            self._depth -= 1
            self._lock.release()
        else:
            conn.close()

    def _nested(self, conn: Any) -> bool:
        # A scope opened inside another scope on the shared connection
        # must not end the outer transaction.
        return conn is self._shared and self._depth > 1

    def _commit(self, conn: Any) -> None:
        if not self._nested(conn):
            conn.commit()

    def _rollback(self, conn: Any) -> bool:
        if self._nested(conn):
            return True
        return super()._rollback(conn)

    def translate_error(self, exc: Exception) -> EquiptrakError | None:
        if isinstance(exc, sqlite3.IntegrityError):
            return ConflictError("Write conflicts with an existing row", cause=exc)
        if isinstance(exc, sqlite3.OperationalError):
            text = str(exc)
            if text.startswith("no such table"):
                return NotFoundError("Table does not exist", cause=exc)
            if "locked" in text or "busy" in text:
                return BackendUnavailableError("Database is busy", cause=exc)
            return InternalError("Database operation failed", cause=exc)
        if isinstance(exc, sqlite3.Error):
            return InternalError("Database operation failed", cause=exc)
        return None


__all__ = [
    "SQLiteAdapter",
]
