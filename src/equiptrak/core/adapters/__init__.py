"""
Relational database adapters.

Exactly two backends are supported: SQLite (development, tests, single
site) and PostgreSQL (production). Both expose the same scoped
``connection()`` / ``transaction()`` API yielding a ``SqlSession``.

Usage:
    from equiptrak.core.adapters import create_adapter

    adapter = create_adapter("sqlite:///data/equiptrak.db")
    with adapter.transaction(exclusive=True) as session:
        session.execute("UPDATE record_sequences SET last_value = last_value + 1")
"""

from .base import DatabaseAdapter, SqlSession
from .postgresql import PostgreSQLAdapter
from .registry import AdapterRegistry, adapter_registry, create_adapter, get_adapter
from .sqlite import SQLiteAdapter
from .types import DatabaseConfig, DatabaseType

__all__ = [
    # Types
    "DatabaseType",
    "DatabaseConfig",
    # Base
    "DatabaseAdapter",
    "SqlSession",
    # Adapters
    "SQLiteAdapter",
    "PostgreSQLAdapter",
    # Registry
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
    "create_adapter",
]
