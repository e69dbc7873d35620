"""
SequenceGenerator: certificate and work-order numbers.

Numbers look like ``BWS-1042``: a namespace prefix followed by digits. The
next number is derived from the most recently created row of the
namespace's table (``created_at desc, id desc``), whose number column must
match ``^<prefix>(\\d+)$``. With no usable row the namespace floor is used.

The read and the insert that consumes the number are two separate
operations, which is a read-then-write race under concurrent writers. How
the race is handled depends on ``SequenceMode``:

==============  =============================================================
Mode            Guarantee
==============  =============================================================
``READ_LAST``   None. Concurrent claims can return the same number; the
                unique constraint on the number column then fails the
                second insert with ``ConflictError``. Kept so the hazard
                stays observable.
``LOCKED``      Process-local lock per namespace, then the storage lock
                (``pg_advisory_xact_lock`` on PostgreSQL; the
                ``BEGIN IMMEDIATE`` writer lock on SQLite, hence
                ``requires_exclusive``). Held across read-last, compute-next
                and the caller's insert.
``ATOMIC``      ``record_sequences`` counter incremented in one statement
                (``/rpc/next_sequence_value`` on REST). Seeded from
                read-last the first time a namespace is used.
==============  =============================================================

Usage::

    with adapter.transaction(exclusive=sequences.requires_exclusive) as tx:
        with sequences.claim("service_records", tx) as number:
            tx.insert("service_records", {**fields, "certificate_number": number})
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from equiptrak.core.enums import SequenceMode, SortDirection
from equiptrak.core.errors import InternalError, ValidationError
from equiptrak.core.logging import get_logger

from .descriptor import QueryDescriptor

if TYPE_CHECKING:
    from equiptrak.core.settings import EquiptrakSettings

    from .adapter import QueryAdapter

logger = get_logger(__name__)


@dataclass(frozen=True)
class SequenceNamespace:
    """One numbering namespace and where its issued numbers live."""

    name: str
    table: str
    column: str
    prefix: str
    floor: int = 1000

    @property
    def pattern(self) -> re.Pattern[str]:
        return re.compile(rf"^{re.escape(self.prefix)}(\d+)$")

    def format(self, number: int) -> str:
        return f"{self.prefix}{number}"

    def parse(self, value: object) -> int | None:
        if not isinstance(value, str):
            return None
        match = self.pattern.match(value)
        return int(match.group(1)) if match else None


def default_namespaces(settings: EquiptrakSettings | None = None) -> dict[str, SequenceNamespace]:
    """The namespaces the application numbers, with prefixes from settings."""
    cert_prefix = settings.certificate_prefix if settings else "BWS-"
    cert_floor = settings.certificate_floor if settings else 1000
    namespaces = [
        SequenceNamespace("service_records", "service_records", "certificate_number", cert_prefix, cert_floor),
        SequenceNamespace(
            "compressors",
            "compressors",
            "certificate_number",
            settings.compressor_prefix if settings else "CMP-",
            cert_floor,
        ),
        SequenceNamespace(
            "lift_services",
            "lift_services",
            "certificate_number",
            settings.lift_service_prefix if settings else "LFT-",
            cert_floor,
        ),
        SequenceNamespace(
            "spot_welders",
            "spot_welders",
            "certificate_number",
            settings.spot_welder_prefix if settings else "SW-",
            cert_floor,
        ),
        SequenceNamespace(
            "work_orders",
            "work_orders",
            "work_order_number",
            settings.work_order_prefix if settings else "WO-",
            settings.work_order_floor if settings else 1000,
        ),
    ]
    return {ns.name: ns for ns in namespaces}


class SequenceGenerator:
    """Issue ``{prefix}{n}`` numbers per namespace under the configured mode."""

    def __init__(
        self,
        adapter: QueryAdapter,
        mode: SequenceMode = SequenceMode.LOCKED,
        namespaces: dict[str, SequenceNamespace] | None = None,
    ):
        self._adapter = adapter
        self._mode = SequenceMode(mode)
        self._namespaces = dict(namespaces or default_namespaces())
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._seeded: set[str] = set()

    @property
    def mode(self) -> SequenceMode:
        return self._mode

    @property
    def requires_exclusive(self) -> bool:
        """Whether ``claim()`` must run inside ``transaction(exclusive=True)``."""
        return self._mode == SequenceMode.LOCKED

    def namespace(self, name: str, prefix: str | None = None) -> SequenceNamespace:
        try:
            namespace = self._namespaces[name]
        except KeyError:
            raise ValidationError(
                f"Unknown sequence namespace: {name}", field="namespace", value=name
            ) from None
        if prefix is not None and prefix != namespace.prefix:
            namespace = replace(namespace, prefix=prefix)
        return namespace

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    # -- Read-last ------------------------------------------------------------

    def _next_from_last(self, namespace: SequenceNamespace, adapter: QueryAdapter) -> int:
        row = adapter.query(
            QueryDescriptor(
                table=namespace.table,
                select=(namespace.column,),
                order={"created_at": SortDirection.DESC, "id": SortDirection.DESC},
                single=True,
            )
        )
        if row is None:
            return namespace.floor
        last = namespace.parse(row.get(namespace.column))
        if last is None:
            logger.warning(
                "sequence_last_unparseable",
                namespace=namespace.name,
                value=row.get(namespace.column),
                prefix=namespace.prefix,
            )
            return namespace.floor
        return max(last + 1, namespace.floor)

    def next(self, namespace: str, prefix: str | None = None) -> str:
        """
        The number read-last would issue now.

        Nothing is reserved: two calls before an insert return the same
        value. Use ``claim()`` to number a row.
        """
        ns = self.namespace(namespace, prefix)
        return ns.format(self._next_from_last(ns, self._adapter))

    # -- Claims ---------------------------------------------------------------

    @contextmanager
    def claim(self, namespace: str, adapter: QueryAdapter, prefix: str | None = None) -> Iterator[str]:
        """
        Reserve a number for one insert performed inside the block.

        *adapter* is the caller's transaction. The block must perform the
        insert that consumes the number before it exits.
        """
        ns = self.namespace(namespace, prefix)

        if self._mode == SequenceMode.READ_LAST:
            number = ns.format(self._next_from_last(ns, adapter))
            logger.info("sequence_issued", namespace=ns.name, number=number, mode=self._mode.value)
            yield number
            return

        if not adapter.in_transaction:
            raise InternalError(
                f"{self._mode.value} numbering must run inside the caller's transaction"
            ).with_context(operation="claim", namespace=ns.name)
        if self.requires_exclusive and not adapter.exclusive:
            raise InternalError(
                "locked numbering needs transaction(exclusive=True)"
            ).with_context(operation="claim", namespace=ns.name)

        with self._lock_for(ns.name):
            if self._mode == SequenceMode.LOCKED:
                adapter.lock_namespace(ns.name)
                number = ns.format(self._next_from_last(ns, adapter))
            else:
                number = ns.format(self._atomic(ns, adapter))
            logger.info("sequence_issued", namespace=ns.name, number=number, mode=self._mode.value)
            yield number

    def _atomic(self, namespace: SequenceNamespace, adapter: QueryAdapter) -> int:
        key = f"{namespace.name}:{namespace.prefix}"
        start = namespace.floor
        if key not in self._seeded:
            start = self._next_from_last(namespace, adapter)
        value = adapter.next_sequence_value(key, start)
        self._seeded.add(key)
        return value


__all__ = [
    "SequenceNamespace",
    "SequenceGenerator",
    "default_namespaces",
]
