"""
TableResolver: which physical table backs a logical entity.

Resolution asks the active driver which of the entity's candidate tables
exist and applies the entity's documented tie-break:

    0 matches  -> ResolvedTable(physical_name=None)   (entity absent)
    1 match    -> that table
    N matches  -> entity.preferred if it is among them,
                  otherwise AmbiguousSchemaError

Results are cached per logical name for the life of the process; each
entity is computed at most once. A catalog failure is logged, reported as
"absent" and NOT cached, so the next call asks the catalog again.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass

from equiptrak.core.errors import AmbiguousSchemaError, EquiptrakError, NotFoundError
from equiptrak.core.logging import get_logger

from .drivers.base import StorageDriver
from .entities import EntityRegistry, LogicalEntity, default_registry

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedTable:
    logical_name: str
    physical_name: str | None

    @property
    def absent(self) -> bool:
        return self.physical_name is None

    def require(self) -> str:
        """Physical name, or NotFoundError when the entity has no table."""
        if self.physical_name is None:
            raise NotFoundError(f"No table backs entity '{self.logical_name}'").with_context(
                entity=self.logical_name
            )
        return self.physical_name


class TableResolver:
    """Resolve and cache logical entity → physical table."""

    def __init__(self, driver: StorageDriver, registry: EntityRegistry | None = None):
        self._driver = driver
        self._registry = registry or default_registry()
        self._cache: dict[str, ResolvedTable] = {}
        self._lock = threading.Lock()

    @property
    def registry(self) -> EntityRegistry:
        return self._registry

    def resolve(self, logical_name: str, candidates: Sequence[str] | None = None) -> ResolvedTable:
        """
        Resolve *logical_name*.

        ``candidates`` overrides the registered list (an unregistered name
        must supply it). The override is only consulted on a cold cache.
        """
        with self._lock:
            cached = self._cache.get(logical_name)
            if cached is not None:
                return cached

            entity = self._entity(logical_name, candidates)
            try:
                existing = self._driver.existing_tables(entity.candidates)
            except EquiptrakError as e:
                logger.warning(
                    "catalog_unavailable",
                    entity=logical_name,
                    error=e.message,
                    category=e.category.value,
                )
                return ResolvedTable(logical_name, None)

            resolved = ResolvedTable(logical_name, self._choose(entity, existing))
            self._cache[logical_name] = resolved

        if resolved.absent:
            logger.info("table_absent", entity=logical_name, candidates=list(entity.candidates))
        else:
            logger.debug("table_resolved", entity=logical_name, table=resolved.physical_name)
        return resolved

    def invalidate(self, logical_name: str | None = None) -> None:
        """Forget one cached resolution, or all of them."""
        with self._lock:
            if logical_name is None:
                self._cache.clear()
            else:
                self._cache.pop(logical_name, None)

    def _entity(self, logical_name: str, candidates: Sequence[str] | None) -> LogicalEntity:
        registered = self._registry.get(logical_name)
        if candidates is None:
            if registered is None:
                raise NotFoundError(f"Unknown entity '{logical_name}'").with_context(entity=logical_name)
            return registered
        preferred = registered.preferred if registered else None
        if preferred is not None and preferred not in candidates:
            preferred = None
        return LogicalEntity(logical_name, tuple(candidates), preferred=preferred)

    @staticmethod
    def _choose(entity: LogicalEntity, existing: set[str]) -> str | None:
        # Candidate order, not catalog order.
        matches = [name for name in entity.candidates if name in existing]
        if not matches:
            return None
        if len(matches) == 1:
            return matches[0]
        if entity.preferred in matches:
            return entity.preferred
        raise AmbiguousSchemaError(entity.logical_name, matches)


__all__ = [
    "ResolvedTable",
    "TableResolver",
]
