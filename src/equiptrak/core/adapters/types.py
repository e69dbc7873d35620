"""Database types and configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from equiptrak.core.errors import ConfigError


class DatabaseType(str, Enum):
    """Supported database types."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


@dataclass
class DatabaseConfig:
    """
    Configuration for database connection.

    Different fields are used by different database types.
    """

    # Common
    db_type: DatabaseType = DatabaseType.SQLITE

    # SQLite
    path: str | None = None

    # PostgreSQL
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    username: str | None = None
    password: str | None = None

    # Connection pool
    pool_size: int = 5

    # SSL
    ssl_mode: str = "prefer"

    # Options
    connect_timeout: int = 10

    # Extra options (driver-specific)
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_memory(self) -> bool:
        return self.db_type == DatabaseType.SQLITE and self.path in (None, "", ":memory:")

    def to_connection_string(self) -> str:
        """Connection string with the password masked, for logs and CLI output."""
        match self.db_type:
            case DatabaseType.SQLITE:
                return f"sqlite:///{self.path or ':memory:'}"
            case DatabaseType.POSTGRESQL:
                user = f"{self.username}:***@" if self.username else ""
                return f"postgresql://{user}{self.host}:{self.port}/{self.database}"
            case _:
                raise ConfigError(f"Connection string not supported for: {self.db_type}")


__all__ = [
    "DatabaseType",
    "DatabaseConfig",
]
