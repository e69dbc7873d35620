"""
Logical entities and the physical tables that may back them.

Incremental migrations left some entities with more than one possible
table name (``compressor_records`` was created first, ``compressors_records``
later; spot welders moved from ``spot_welders`` to ``spot_welder_records``).
Instead of guessing names ad hoc at each call site, every entity declares
its candidates here, in order, together with the name that wins when
several exist.

Registered entities
-------------------
=====================  ==============================================  ========================
Logical name           Candidates                                      Preferred
=====================  ==============================================  ========================
``compressors``        ``compressor_records``, ``compressors_records``  ``compressors_records``
``service_records``    ``service_records``                             -
``lift_services``      ``lift_service_records``                        -
``spot_welders``       ``spot_welders``, ``spot_welder_records``        ``spot_welder_records``
``companies``          ``companies``                                   -
``contacts``           ``contacts``                                    -
``equipment``          ``equipment``                                   -
``work_orders``        ``work_orders``                                 -
``work_order_items``   ``work_order_items``                            -
=====================  ==============================================  ========================

The plural ``compressors_records`` is preferred because it is the table the
current create script writes to; the singular table only survives on
databases that ran the older migration. Spot welders prefer
``spot_welder_records`` for the same reason: the create script and the
record routes write there, while ``spot_welders`` is only still read by the
older cross-equipment listing.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from equiptrak.core.errors import ConfigError

from .schema import TABLE_COLUMNS, check_identifier


@dataclass(frozen=True)
class LogicalEntity:
    """A business object and the candidate tables that may hold it."""

    logical_name: str
    candidates: tuple[str, ...]
    preferred: str | None = None
    certificate: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "candidates", tuple(self.candidates))
        if not self.candidates:
            raise ConfigError(f"Entity '{self.logical_name}' has no candidate tables")
        for name in self.candidates:
            check_identifier(name)
        if self.preferred is not None and self.preferred not in self.candidates:
            raise ConfigError(
                f"Preferred table '{self.preferred}' is not a candidate of '{self.logical_name}'"
            )


class EntityRegistry:
    """Name → LogicalEntity lookup with certificate-table bookkeeping."""

    def __init__(self, entities: list[LogicalEntity] | None = None):
        self._entities: dict[str, LogicalEntity] = {}
        for entity in entities or []:
            self.register(entity)

    def register(self, entity: LogicalEntity) -> None:
        for name in entity.candidates:
            if name not in TABLE_COLUMNS:
                raise ConfigError(
                    f"Candidate table '{name}' of '{entity.logical_name}' has no column allow-list"
                )
        self._entities[entity.logical_name] = entity

    def get(self, logical_name: str) -> LogicalEntity | None:
        return self._entities.get(logical_name)

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self._entities

    def __iter__(self) -> Iterator[LogicalEntity]:
        return iter(self._entities.values())

    def is_certificate_table(self, physical_name: str) -> bool:
        """True when the table backs an entity governed by the retest policy."""
        return any(
            entity.certificate and physical_name in entity.candidates
            for entity in self._entities.values()
        )


def default_registry() -> EntityRegistry:
    """Registry with every entity the application knows about."""
    return EntityRegistry(
        [
            LogicalEntity(
                "compressors",
                ("compressor_records", "compressors_records"),
                preferred="compressors_records",
                certificate=True,
            ),
            LogicalEntity("service_records", ("service_records",), certificate=True),
            LogicalEntity("lift_services", ("lift_service_records",), certificate=True),
            LogicalEntity(
                "spot_welders",
                ("spot_welders", "spot_welder_records"),
                preferred="spot_welder_records",
                certificate=True,
            ),
            LogicalEntity("companies", ("companies",)),
            LogicalEntity("contacts", ("contacts",)),
            LogicalEntity("equipment", ("equipment",)),
            LogicalEntity("work_orders", ("work_orders",)),
            LogicalEntity("work_order_items", ("work_order_items",)),
        ]
    )


__all__ = [
    "LogicalEntity",
    "EntityRegistry",
    "default_registry",
]
