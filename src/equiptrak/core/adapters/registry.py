"""Database adapter registry and URL factory.

Manifesto:
    Callers never hard-code adapter class names. The registry maps
    ``DatabaseType`` strings to adapter classes, and ``create_adapter()``
    builds a configured instance straight from ``EQUIPTRAK_DATABASE_URL``.

Supported URL schemes
---------------------
==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:``                  SQLite RAM
``sqlite``          ``sqlite:///data/equiptrak.db``             SQLite file
``postgresql``      ``postgresql://user:pw@host:5432/equiptrak``  PostgreSQL
``postgres``        ``postgres://user:pw@host:5432/equiptrak``    PostgreSQL
==================  ==========================================  ============

Tags:
    equiptrak, database, registry, factory

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any
from urllib.parse import unquote, urlsplit

from equiptrak.core.errors import ConfigError

from .base import DatabaseAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter
from .types import DatabaseType


class AdapterRegistry:
    """
    Registry for database adapter factories.

    Pre-registered adapters:
    - ``sqlite``: :class:`SQLiteAdapter`
    - ``postgresql`` / ``postgres``: :class:`PostgreSQLAdapter`
    """

    def __init__(self):
        self._factories: dict[str, type[DatabaseAdapter]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories["sqlite"] = SQLiteAdapter
        self._factories["postgresql"] = PostgreSQLAdapter
        self._factories["postgres"] = PostgreSQLAdapter  # Alias

    def register(self, name: str, adapter_class: type[DatabaseAdapter]) -> None:
        """Register an adapter factory."""
        self._factories[name.lower()] = adapter_class

    def create(self, name: str, **kwargs: Any) -> DatabaseAdapter:
        """Create an adapter by name."""
        name = name.lower()
        if name not in self._factories:
            raise ConfigError(f"Unknown database adapter: {name}")
        return self._factories[name](**kwargs)

    def list_adapters(self) -> list[str]:
        """List registered adapter names."""
        return sorted(self._factories.keys())


# Global registry
adapter_registry = AdapterRegistry()


def get_adapter(
    db_type: DatabaseType | str,
    **kwargs: Any,
) -> DatabaseAdapter:
    """
    Get a database adapter by type.

    Usage:
        adapter = get_adapter(DatabaseType.SQLITE, path="data/equiptrak.db")
        adapter = get_adapter("postgresql", host="localhost", database="equiptrak")
    """
    name = db_type.value if isinstance(db_type, DatabaseType) else db_type
    return adapter_registry.create(name, **kwargs)


# ── URL parsing ──────────────────────────────────────────────────────────


def _parse_url(url: str | None) -> tuple[str, str]:
    """Parse a database URL into (scheme, target).

    ``scheme`` is one of ``"memory"``, ``"sqlite"``, ``"postgresql"``.
    """
    if url is None or url in ("", "memory", ":memory:", "sqlite:///:memory:"):
        return "memory", ":memory:"
    if url.startswith("sqlite:///"):
        return "sqlite", url[len("sqlite:///"):]
    if url.startswith(("postgresql://", "postgres://")):
        return "postgresql", url
    raise ConfigError(f"Unsupported database URL: {url.split('://', 1)[0]}://...")


def create_adapter(
    url: str | None,
    *,
    pool_size: int = 5,
    connect_timeout: int = 10,
) -> DatabaseAdapter:
    """Create an (unconnected) adapter from a database URL."""
    scheme, target = _parse_url(url)
    if scheme == "memory":
        return get_adapter(DatabaseType.SQLITE, path=":memory:")
    if scheme == "sqlite":
        return get_adapter(DatabaseType.SQLITE, path=target)

    parts = urlsplit(target)
    return get_adapter(
        DatabaseType.POSTGRESQL,
        host=parts.hostname or "localhost",
        port=parts.port or 5432,
        database=parts.path.lstrip("/"),
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        pool_size=pool_size,
        connect_timeout=connect_timeout,
    )


__all__ = [
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
    "create_adapter",
]
