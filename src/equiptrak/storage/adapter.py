"""
QueryAdapter: the one query surface the application uses to reach storage.

Manifesto:
    Application code describes WHAT it wants (a ``QueryDescriptor``, a row
    to insert, a filter to update by) and never HOW the active backend
    spells it. The adapter owns every rule that must hold on both drivers:

    - table names are logical entities or allow-listed physical tables
    - every column is checked against the table's allow-list
    - ``id``, ``created_at`` and ``updated_at`` are generated here
    - update and delete refuse an empty filter before touching storage
    - certificate rows get their retest date and status from the policy

Architecture:
    ::

        QueryAdapter ──► TableResolver ──► StorageDriver.existing_tables
             │
             ├─► DriverSession (select / insert / update / delete)
             │        ├── SqlDriverSession   (DB-API, bound parameters)
             │        └── RestDriverSession  (PostgREST, httpx)
             │
             └─► SQLStringInterpreter (raw_query, on both drivers)

Features:
    - ``query`` / ``insert`` / ``update`` / ``delete`` / ``raw_query``
    - ``transaction()`` yields a bound adapter sharing one driver session
    - Deliberate read/write asymmetry for absent entities: reads return
      ``[]`` / ``None``, writes raise ``NotFoundError``

Examples:
    >>> adapter = QueryAdapter(SqlDriver(create_adapter("sqlite:///:memory:")))
    >>> with adapter.transaction() as tx:
    ...     company = tx.insert("companies", {"company_name": "Acme Hoists"})
    >>> adapter.query(QueryDescriptor("companies", filters={"id": company["id"]}, single=True))

Tags:
    equiptrak, storage, query-adapter, allow-list, transactions

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from equiptrak.core.errors import InternalError, NotFoundError, ValidationError
from equiptrak.core.logging import get_logger
from equiptrak.records.status import CertificateStatusPolicy

from .descriptor import QueryDescriptor
from .drivers.base import NO_DEADLINE, Deadline, DriverSession, Row, StorageDriver
from .entities import EntityRegistry, default_registry
from .interpreter import SQLStringInterpreter
from .resolver import TableResolver
from .schema import REQUIRED_COLUMNS, SERVER_COLUMNS, TABLE_COLUMNS, check_columns

logger = get_logger(__name__)


# ── Timestamps ───────────────────────────────────────────────────────────


class MonotonicClock:
    """UTC timestamps that never repeat or go backwards within a process.

    Read-last numbering orders by ``created_at``, so two inserts in the
    same microsecond must still sort in insertion order.
    """

    def __init__(self) -> None:
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = datetime.now(UTC)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


utc_now = MonotonicClock()


def new_id() -> str:
    return uuid.uuid4().hex


# ── Adapter ──────────────────────────────────────────────────────────────


class QueryAdapter:
    """Backend-agnostic CRUD surface over one StorageDriver."""

    def __init__(
        self,
        driver: StorageDriver,
        resolver: TableResolver | None = None,
        registry: EntityRegistry | None = None,
        policy: CertificateStatusPolicy | None = None,
        *,
        transaction_timeout: float | None = None,
    ):
        self._driver = driver
        self._registry = registry or (resolver.registry if resolver else default_registry())
        self._resolver = resolver or TableResolver(driver, self._registry)
        self._policy = policy or CertificateStatusPolicy()
        self._transaction_timeout = transaction_timeout
        self._interpreter: SQLStringInterpreter | None = None
        # Set only on the bound copy yielded by transaction().
        self._session: DriverSession | None = None
        self._deadline: Deadline = NO_DEADLINE
        self._exclusive = False

    # -- Properties -----------------------------------------------------------

    @property
    def driver(self) -> StorageDriver:
        return self._driver

    @property
    def resolver(self) -> TableResolver:
        return self._resolver

    @property
    def registry(self) -> EntityRegistry:
        return self._registry

    @property
    def policy(self) -> CertificateStatusPolicy:
        return self._policy

    @property
    def in_transaction(self) -> bool:
        return self._session is not None

    @property
    def exclusive(self) -> bool:
        return self._exclusive

    @property
    def interpreter(self) -> SQLStringInterpreter:
        if self._interpreter is None:
            self._interpreter = SQLStringInterpreter(self)
        return self._interpreter

    # -- Table names ----------------------------------------------------------

    def resolve_table(self, name: str, *, write: bool = False) -> str | None:
        """
        Physical table for *name*.

        A registered entity goes through the resolver; an absent entity is
        ``None`` for reads and ``NotFoundError`` for writes. A bare physical
        table on the allow-list is used as-is.
        """
        if name in self._registry:
            resolved = self._resolver.resolve(name)
            if write:
                return resolved.require()
            return resolved.physical_name
        if name in TABLE_COLUMNS:
            return name
        raise ValidationError(f"Unknown table: {name}", field="table", value=name)

    def is_certificate_table(self, physical: str) -> bool:
        return self._registry.is_certificate_table(physical)

    def check_required(self, physical: str, fields: Mapping[str, Any]) -> None:
        """Raise ValidationError naming every required field that is missing."""
        missing = sorted(
            column for column in REQUIRED_COLUMNS.get(physical, ())
            if fields.get(column) in (None, "")
        )
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                field=missing[0],
                constraint="required",
            ).with_context(table=physical, operation="insert")

    # -- Scopes ---------------------------------------------------------------

    @contextmanager
    def _scope(self) -> Iterator[DriverSession]:
        if self._session is not None:
            yield self._session
        else:
            with self._driver.session() as session:
                yield session

    @contextmanager
    def transaction(
        self,
        *,
        exclusive: bool = False,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[QueryAdapter]:
        """
        Run a block atomically; yields an adapter bound to one driver session.

        A nested call reuses the enclosing transaction. ``timeout`` (seconds)
        and ``cancel`` abort the transaction at the next storage operation or
        at commit, whichever comes first, and roll it back.
        """
        if self._session is not None:
            if exclusive and not self._exclusive:
                raise InternalError("An exclusive transaction cannot be nested in a shared one")
            yield self
            return

        seconds = timeout if timeout is not None else self._transaction_timeout
        deadline = Deadline.after(seconds, cancel)
        with self._driver.transaction(exclusive=exclusive, deadline=deadline) as session:
            bound = copy.copy(self)
            bound._session = session
            bound._deadline = deadline
            bound._exclusive = exclusive
            bound._interpreter = None
            yield bound

    # -- Row shaping ----------------------------------------------------------

    def _on_read(self, physical: str, row: Row) -> Row:
        if self.is_certificate_table(physical):
            return self._policy.on_read(row)
        return row

    # -- Operations -----------------------------------------------------------

    def query(self, descriptor: QueryDescriptor) -> list[Row] | Row | None:
        """Rows for *descriptor*; one row or ``None`` when ``single`` is set."""
        physical = self.resolve_table(descriptor.table)
        if physical is None:
            return None if descriptor.single else []

        effective = descriptor.with_table(physical).normalized()
        if not effective.selects_all:
            check_columns(physical, effective.select, role="column")
        check_columns(physical, effective.filters, role="filter")
        check_columns(physical, effective.order, role="order column")

        with self._scope() as session:
            rows = [self._on_read(physical, row) for row in session.select(effective)]
        if descriptor.single:
            return rows[0] if rows else None
        return rows

    def insert(self, table: str, fields: Mapping[str, Any]) -> Row:
        """Insert one row; returns it as stored."""
        physical = self.resolve_table(table, write=True)
        row = {k: v for k, v in fields.items() if k not in SERVER_COLUMNS}
        check_columns(physical, row, role="field")
        self.check_required(physical, row)
        if self.is_certificate_table(physical):
            row = self._policy.on_write(row)

        if row.get("id") is None:
            row["id"] = new_id()
        now = utc_now()
        row["created_at"] = now
        row["updated_at"] = now

        with self._scope() as session:
            stored = session.insert(physical, row)
        logger.debug("row_inserted", table=physical, id=row["id"])
        return self._on_read(physical, stored)

    def update(self, table: str, fields: Mapping[str, Any], filters: Mapping[str, Any]) -> Row | None:
        """Update matching rows; returns the first one afterwards, or ``None``."""
        if not filters:
            raise ValidationError(
                "update requires at least one filter", field="filters", constraint="non-empty"
            ).with_context(table=table, operation="update")
        if not fields:
            raise ValidationError(
                "update requires at least one field", field="fields", constraint="non-empty"
            ).with_context(table=table, operation="update")

        physical = self.resolve_table(table, write=True)
        changes = {k: v for k, v in fields.items() if k not in SERVER_COLUMNS}
        if "id" in changes:
            raise ValidationError("id cannot be updated", field="id").with_context(table=physical)
        check_columns(physical, changes, role="field")
        check_columns(physical, filters, role="filter")
        for column in REQUIRED_COLUMNS.get(physical, ()):
            if column in changes and changes[column] in (None, ""):
                raise ValidationError(
                    f"Required field '{column}' cannot be cleared", field=column, constraint="required"
                ).with_context(table=physical, operation="update")

        if self.is_certificate_table(physical):
            if "service_date" in changes:
                changes = self._policy.on_write(changes)
            else:
                changes.pop("retest_date", None)
                changes.pop("status", None)
        changes["updated_at"] = utc_now()

        with self._scope() as session:
            rows = session.update(physical, changes, filters)
        return self._on_read(physical, rows[0]) if rows else None

    def delete(self, table: str, filters: Mapping[str, Any]) -> Row | None:
        """Delete matching rows. A missing row is not an error: returns ``None``."""
        if not filters:
            raise ValidationError(
                "delete requires at least one filter", field="filters", constraint="non-empty"
            ).with_context(table=table, operation="delete")

        physical = self.resolve_table(table, write=True)
        check_columns(physical, filters, role="filter")
        with self._scope() as session:
            rows = session.delete(physical, filters)
        if rows:
            logger.debug("rows_deleted", table=physical, count=len(rows))
        return self._on_read(physical, rows[0]) if rows else None

    def raw_query(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """
        Parameterized SQL with ``$1``-style placeholders.

        The text is lowered through ``SQLStringInterpreter`` into a single
        adapter call on either driver, so allow-lists, entity resolution and
        the certificate policy apply exactly as they do to ``query`` and
        ``insert``. Statements outside that vocabulary raise ``ParseError``;
        schema work goes through ``equiptrak db exec`` instead.
        """
        return self.interpreter.execute(sql, params)

    # -- Numbering primitives -------------------------------------------------

    def lock_namespace(self, namespace: str) -> None:
        if self._session is None:
            raise InternalError("Namespace locks are only valid inside a transaction")
        self._session.lock_namespace(namespace)

    def next_sequence_value(self, namespace: str, start: int) -> int:
        with self._scope() as session:
            return session.next_sequence_value(namespace, start)


__all__ = [
    "MonotonicClock",
    "QueryAdapter",
    "new_id",
    "utc_now",
]
