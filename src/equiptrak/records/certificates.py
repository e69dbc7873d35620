"""Certificate records (service, compressor, lift service, spot welder) with claimed numbers."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from equiptrak.core.enums import SortDirection
from equiptrak.core.errors import NotFoundError, ValidationError
from equiptrak.core.logging import get_logger
from equiptrak.storage.adapter import QueryAdapter
from equiptrak.storage.descriptor import QueryDescriptor
from equiptrak.storage.sequence import SequenceGenerator

logger = get_logger(__name__)

NUMBER_COLUMN = "certificate_number"


class CertificateService:
    """
    CRUD for one certificate entity.

    ``entity`` is a logical name (``service_records``, ``compressors``,
    ``lift_services`` or ``spot_welders``); which physical table backs it is
    left to the resolver. The certificate number is claimed inside the
    insert's transaction and never changes afterwards.
    """

    def __init__(
        self,
        adapter: QueryAdapter,
        sequences: SequenceGenerator,
        entity: str = "service_records",
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ):
        self._adapter = adapter
        self._sequences = sequences
        self._entity = entity
        self._namespace = namespace or entity
        self._timeout = timeout

    @property
    def entity(self) -> str:
        return self._entity

    def create(self, fields: Mapping[str, Any], *, cancel: threading.Event | None = None) -> dict[str, Any]:
        payload = {k: v for k, v in fields.items() if k != NUMBER_COLUMN}
        physical = self._adapter.resolve_table(self._entity, write=True)
        self._adapter.check_required(physical, payload)

        with self._adapter.transaction(
            exclusive=self._sequences.requires_exclusive,
            timeout=self._timeout,
            cancel=cancel,
        ) as tx:
            with self._sequences.claim(self._namespace, tx) as number:
                payload[NUMBER_COLUMN] = number
                record = tx.insert(self._entity, payload)
        logger.info(
            "certificate_created",
            entity=self._entity,
            id=record["id"],
            certificate_number=record[NUMBER_COLUMN],
        )
        return record

    def get(self, record_id: str) -> dict[str, Any]:
        record = self._adapter.query(
            QueryDescriptor(self._entity, filters={"id": record_id}, single=True)
        )
        if record is None:
            raise NotFoundError(f"Certificate {record_id} not found").with_context(entity=self._entity)
        return record

    def update(self, record_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        if NUMBER_COLUMN in fields:
            raise ValidationError(
                "certificate_number cannot be changed", field=NUMBER_COLUMN, constraint="immutable"
            )
        record = self._adapter.update(self._entity, fields, {"id": record_id})
        if record is None:
            raise NotFoundError(f"Certificate {record_id} not found").with_context(entity=self._entity)
        return record

    def delete(self, record_id: str) -> dict[str, Any] | None:
        """Delete one certificate; deleting a missing one returns ``None``."""
        return self._adapter.delete(self._entity, {"id": record_id})

    def list_for_company(self, company_id: str) -> list[dict[str, Any]]:
        """Newest service first; ``[]`` when the entity has no table yet."""
        return self._adapter.query(
            QueryDescriptor(
                self._entity,
                filters={"company_id": company_id},
                order={"service_date": SortDirection.DESC, "created_at": SortDirection.DESC},
            )
        )


def service_records(adapter: QueryAdapter, sequences: SequenceGenerator, **kwargs: Any) -> CertificateService:
    return CertificateService(adapter, sequences, "service_records", **kwargs)


def compressor_records(adapter: QueryAdapter, sequences: SequenceGenerator, **kwargs: Any) -> CertificateService:
    return CertificateService(adapter, sequences, "compressors", **kwargs)


def lift_service_records(adapter: QueryAdapter, sequences: SequenceGenerator, **kwargs: Any) -> CertificateService:
    return CertificateService(adapter, sequences, "lift_services", **kwargs)


def spot_welder_records(adapter: QueryAdapter, sequences: SequenceGenerator, **kwargs: Any) -> CertificateService:
    return CertificateService(adapter, sequences, "spot_welders", **kwargs)


__all__ = [
    "CertificateService",
    "service_records",
    "compressor_records",
    "lift_service_records",
    "spot_welder_records",
]
