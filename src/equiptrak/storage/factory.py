"""Process wiring: settings -> driver -> resolver -> adapter -> sequences."""

from __future__ import annotations

from dataclasses import dataclass

from equiptrak.core.logging import get_logger
from equiptrak.core.settings import EquiptrakSettings, get_settings
from equiptrak.records.status import CertificateStatusPolicy

from .adapter import QueryAdapter
from .drivers import StorageDriver, build_driver
from .entities import EntityRegistry, default_registry
from .interpreter import SQLStringInterpreter
from .resolver import TableResolver
from .sequence import SequenceGenerator, default_namespaces

logger = get_logger(__name__)


@dataclass
class Storage:
    """Everything one process needs to reach storage, built once."""

    settings: EquiptrakSettings
    driver: StorageDriver
    registry: EntityRegistry
    resolver: TableResolver
    adapter: QueryAdapter
    sequences: SequenceGenerator
    interpreter: SQLStringInterpreter

    def close(self) -> None:
        self.driver.close()

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_storage(
    settings: EquiptrakSettings | None = None,
    *,
    driver: StorageDriver | None = None,
    policy: CertificateStatusPolicy | None = None,
) -> Storage:
    """
    Build the storage stack from settings.

    ``driver`` replaces the one ``settings.storage_backend`` would select;
    tests use it to plug in a REST driver over a mock transport.
    """
    settings = settings or get_settings()
    driver = driver or build_driver(settings)
    registry = default_registry()
    resolver = TableResolver(driver, registry)
    adapter = QueryAdapter(
        driver,
        resolver,
        registry,
        policy,
        transaction_timeout=settings.transaction_timeout_seconds,
    )
    sequences = SequenceGenerator(adapter, settings.sequence_mode, default_namespaces(settings))
    logger.info(
        "storage_opened",
        driver=driver.name,
        sequence_mode=settings.sequence_mode.value,
    )
    return Storage(
        settings=settings,
        driver=driver,
        registry=registry,
        resolver=resolver,
        adapter=adapter,
        sequences=sequences,
        interpreter=adapter.interpreter,
    )


__all__ = [
    "Storage",
    "open_storage",
]
