"""PostgreSQL database adapter."""

from __future__ import annotations

from typing import Any

from equiptrak.core.errors import (
    BackendUnavailableError,
    ConfigError,
    ConflictError,
    EquiptrakError,
    InternalError,
    NotFoundError,
    TransactionAbortedError,
    ValidationError,
)

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

# SQLSTATE codes that need a more specific error than their psycopg2 class.
_UNDEFINED_TABLE = "42P01"
_UNDEFINED_COLUMN = "42703"


class PostgreSQLAdapter(DatabaseAdapter):
    """
    PostgreSQL database adapter.

    Uses a psycopg2 ``ThreadedConnectionPool``; each scope borrows one
    connection and returns it in ``finally``. Suitable for production
    deployments.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        *,
        pool_size: int = 5,
        connect_timeout: int = 10,
        ssl_mode: str = "prefer",
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.POSTGRESQL,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            pool_size=pool_size,
            connect_timeout=connect_timeout,
            ssl_mode=ssl_mode,
            options=kwargs,
        )
        super().__init__(config)
        self._pool: Any = None

    def connect(self) -> None:
        """Connect to PostgreSQL database."""
        if self._pool is not None:
            return
        try:
            import psycopg2
            import psycopg2.pool
        except ImportError:
            raise ConfigError(
                "psycopg2 is required for PostgreSQL. Install with: pip install psycopg2-binary"
            ) from None

        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=self._config.pool_size,
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
                user=self._config.username,
                password=self._config.password,
                connect_timeout=self._config.connect_timeout,
                sslmode=self._config.ssl_mode,
            )
            self._connected = True
        except psycopg2.Error as e:
            raise BackendUnavailableError(
                f"Failed to connect to PostgreSQL: {e}",
                cause=e,
            ) from e

    def disconnect(self) -> None:
        """Close PostgreSQL connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            self._connected = False

    def _acquire(self) -> Any:
        if not self._pool:
            self.connect()
        import psycopg2
        import psycopg2.pool

        try:
            return self._pool.getconn()
        except psycopg2.pool.PoolError as e:
            raise BackendUnavailableError("Connection pool exhausted", cause=e) from e
        except psycopg2.Error as e:
            raise BackendUnavailableError(f"Failed to borrow connection: {e}", cause=e) from e

    def _release(self, conn: Any, *, broken: bool = False) -> None:
        """Return connection to pool."""
        if self._pool:
            self._pool.putconn(conn, close=broken)

    def translate_error(self, exc: Exception) -> EquiptrakError | None:
        import psycopg2
        import psycopg2.extensions

        if not isinstance(exc, psycopg2.Error):
            return None
        if isinstance(exc, psycopg2.IntegrityError):
            return ConflictError("Write conflicts with an existing row", cause=exc)
        if isinstance(exc, psycopg2.extensions.QueryCanceledError):
            return TransactionAbortedError(
                "Statement timed out", reason="timeout", cause=exc
            )
        if isinstance(exc, psycopg2.OperationalError):
            return BackendUnavailableError("Database is unavailable", cause=exc)
        if exc.pgcode == _UNDEFINED_TABLE:
            return NotFoundError("Table does not exist", cause=exc)
        if exc.pgcode == _UNDEFINED_COLUMN:
            return ValidationError("Unknown column", cause=exc)
        if isinstance(exc, psycopg2.DataError):
            return ValidationError("Value rejected by the database", cause=exc)
        return InternalError("Database operation failed", cause=exc)


__all__ = [
    "PostgreSQLAdapter",
]
