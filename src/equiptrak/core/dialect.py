"""SQL dialect abstraction for the relational driver.

The relational driver builds every statement from a ``Dialect`` so that the
same code path runs against SQLite in development and tests, and against
PostgreSQL in production.

Manifesto:
    Storage code must not care whether placeholders are ``?`` or ``%s``,
    or how a namespace lock is spelled.

    - **One interface:** Dialect protocol for all SQL fragments
    - **Zero coupling:** Callers never import a database driver
    - **Testable:** SQLiteDialect for tests, PostgreSQLDialect for prod

Architecture::

    ┌────────────────────────────────────────────────────────────────┐
    │  sql = f"SELECT * FROM t WHERE id = {d.placeholder(1)}"        │
    │  sql += d.limit_offset(limit, offset)                          │
    └────────────────────────────────────────────────────────────────┘
                              │
                 ┌────────────┴─────────────┐
                 ▼                          ▼
         ┌──────────────┐          ┌──────────────────────┐
         │ SQLite       │          │ PostgreSQL           │
         │ ?, ?, ?      │          │ %s, %s, %s           │
         │ BEGIN        │          │ pg_advisory_xact_lock│
         │  IMMEDIATE   │          │ statement_timeout    │
         └──────────────┘          └──────────────────────┘

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> d.limit_offset(None, 20)
    ' LIMIT -1 OFFSET 20'

Guardrails:
    ❌ DON'T: Interpolate values into a fragment
    ✅ DO: Interpolate only validated identifiers, bind every value

Tags:
    dialect, sql, abstraction, portability, database, equiptrak

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .errors import ConfigError


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a SQL fragment valid for the target database.
    Values are never part of a fragment; they travel as bound parameters.
    """

    @property
    def name(self) -> str:
        """Short identifier: ``"sqlite"`` or ``"postgresql"``."""
        ...

    def placeholder(self, index: int) -> str:
        """A single positional placeholder (``index`` is 0-based)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholders for *count* values."""
        ...

    def now(self) -> str:
        """Current-timestamp expression."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently skips primary-key conflicts."""
        ...

    def table_catalog_query(self, count: int) -> str:
        """Query returning ``table_name`` for each of *count* candidate names that exists."""
        ...

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        """Pagination suffix; empty string when neither is set."""
        ...

    def begin(self, exclusive: bool) -> str | None:
        """Explicit BEGIN statement, or None when the driver opens transactions itself."""
        ...

    def namespace_lock(self) -> str | None:
        """Transaction-scoped lock on a namespace string, or None if unsupported."""
        ...

    def statement_timeout(self, milliseconds: int) -> str | None:
        """Transaction-local statement timeout, or None if unsupported."""
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders, ``BEGIN IMMEDIATE`` for writer locks."""

    @property
    def name(self) -> str:
        return "sqlite"

    # -- Placeholders ------------------------------------------------------

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    # -- Timestamps --------------------------------------------------------

    def now(self) -> str:
        return "datetime('now')"

    # -- DML ---------------------------------------------------------------

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({ph})"

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        if limit is None and offset is None:
            return ""
        # SQLite only accepts OFFSET after a LIMIT; -1 means unbounded.
        sql = f" LIMIT {int(limit) if limit is not None else -1}"
        if offset:
            sql += f" OFFSET {int(offset)}"
        return sql

    # -- Transactions ------------------------------------------------------

    def begin(self, exclusive: bool) -> str | None:
        return "BEGIN IMMEDIATE" if exclusive else "BEGIN"

    def namespace_lock(self) -> str | None:
        # BEGIN IMMEDIATE already holds the database-wide writer lock.
        return None

    def statement_timeout(self, milliseconds: int) -> str | None:  # noqa: ARG002
        return None

    # -- Introspection -----------------------------------------------------

    def table_catalog_query(self, count: int) -> str:
        return (
            "SELECT name AS table_name FROM sqlite_master "
            f"WHERE type = 'table' AND name IN ({self.placeholders(count)})"
        )


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg2), advisory locks."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def now(self) -> str:
        return "NOW()"

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT INTO {table} ({cols}) VALUES ({ph}) ON CONFLICT DO NOTHING"

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        sql = ""
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        if offset:
            sql += f" OFFSET {int(offset)}"
        return sql

    def begin(self, exclusive: bool) -> str | None:  # noqa: ARG002
        # psycopg2 opens the transaction on the first statement.
        return None

    def namespace_lock(self) -> str | None:
        return "SELECT pg_advisory_xact_lock(hashtext(%s))"

    def statement_timeout(self, milliseconds: int) -> str | None:
        return f"SET LOCAL statement_timeout = {int(milliseconds)}"

    def table_catalog_query(self, count: int) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() "
            f"AND table_name IN ({self.placeholders(count)})"
        )


# =========================================================================
# Dialect lookup
# =========================================================================

_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Return the dialect for a database type name."""
    try:
        return _DIALECTS[db_type.lower()]
    except KeyError:
        raise ConfigError(f"Unsupported database dialect: {db_type}") from None


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
]
