"""
Storage drivers: exactly two, chosen once.

``build_driver(settings)`` reads ``storage_backend`` a single time and
returns either a ``SqlDriver`` (SQLite / PostgreSQL over DB-API) or a
``RestDriver`` (PostgREST over httpx). Nothing downstream inspects which
one it received.
"""

from __future__ import annotations

from equiptrak.core.adapters import create_adapter
from equiptrak.core.enums import StorageBackend
from equiptrak.core.logging import get_logger
from equiptrak.core.settings import EquiptrakSettings

from .base import NO_DEADLINE, Deadline, DriverSession, Row, StorageDriver
from .rest import RestDriver, RestDriverSession
from .sql import SqlDriver, SqlDriverSession, rewrite_numbered_params

logger = get_logger(__name__)


def build_driver(settings: EquiptrakSettings) -> StorageDriver:
    """Construct the driver named by ``settings.storage_backend``."""
    if settings.storage_backend == StorageBackend.REST:
        driver: StorageDriver = RestDriver(
            settings.rest_url,
            settings.rest_api_key,
            timeout=settings.rest_timeout_seconds,
        )
    else:
        adapter = create_adapter(
            settings.database_url,
            pool_size=settings.database_pool_size,
            connect_timeout=settings.database_connect_timeout,
        )
        driver = SqlDriver(adapter)
    logger.info("storage_driver_selected", driver=driver.name)
    return driver


__all__ = [
    "Row",
    "Deadline",
    "NO_DEADLINE",
    "DriverSession",
    "StorageDriver",
    "SqlDriver",
    "SqlDriverSession",
    "RestDriver",
    "RestDriverSession",
    "rewrite_numbered_params",
    "build_driver",
]
