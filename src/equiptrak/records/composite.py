"""
TransactionalRecordWriter: parent row + line items as one atomic unit.

Manifesto:
    A work order's ``total`` and ``vat`` are a pure function of its line
    items. They are never taken from the request and never summed from the
    in-memory payload: after every item mutation the items are re-read
    inside the same transaction and the parent is rewritten from them.

    Every composite write runs as::

        BEGIN -> [number] -> parent -> child[0..n] -> aggregate -> COMMIT

    and any failure rolls the whole unit back and surfaces ONE
    ``CompositeWriteError`` naming the step (``"number"``, ``"lookup"``,
    ``"parent"``, ``"child[i]"``, ``"aggregate"``). Readers never see a
    parent without its items or a total computed from stale items.

Features:
    - ``create_composite`` / ``add_items`` / ``remove_item``
    - ``update_parent`` (allow-listed fields; re-aggregates on rate change)
    - ``delete_composite`` (items first, then parent; idempotent)
    - Money is ``Decimal`` rounded ``ROUND_HALF_UP`` to 0.01

Tags:
    equiptrak, records, composite-write, transactions, work-orders

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from equiptrak.core.enums import SortDirection
from equiptrak.core.errors import CompositeWriteError, EquiptrakError, NotFoundError, ValidationError
from equiptrak.core.logging import get_logger
from equiptrak.storage.adapter import QueryAdapter
from equiptrak.storage.descriptor import QueryDescriptor
from equiptrak.storage.sequence import SequenceGenerator

logger = get_logger(__name__)

CENT = Decimal("0.01")

# PATCH-able work order fields.
WORK_ORDER_UPDATE_FIELDS = frozenset(
    {
        "date",
        "job_tracker",
        "order_number",
        "taken_by",
        "staff",
        "status",
        "description",
        "internal_notes",
        "quickbooks_ref",
        "vat_rate",
        "discount",
        "type",
        "carrier",
    }
)


def to_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number", field=field_name, value=value)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a number", field=field_name, value=value) from None


@dataclass(frozen=True)
class CompositeSpec:
    """Tables and columns of one parent/child composite."""

    parent_table: str = "work_orders"
    child_table: str = "work_order_items"
    foreign_key: str = "work_order_id"
    namespace: str | None = "work_orders"
    number_column: str | None = "work_order_number"
    total_column: str = "total"
    vat_column: str = "vat"
    rate_column: str = "vat_rate"
    quantity_column: str = "quantity"
    price_column: str = "price"
    subtotal_column: str = "subtotal"
    parent_update_fields: frozenset[str] = field(default=WORK_ORDER_UPDATE_FIELDS)

    @property
    def derived_parent_columns(self) -> frozenset[str]:
        columns = {self.total_column, self.vat_column}
        if self.number_column:
            columns.add(self.number_column)
        return frozenset(columns)


WORK_ORDERS = CompositeSpec()


@dataclass
class CompositeRecord:
    """A parent row and its children as read back after a write."""

    parent: dict[str, Any]
    children: list[dict[str, Any]]
    spec: CompositeSpec = field(default=WORK_ORDERS, repr=False)

    @property
    def id(self) -> str:
        return self.parent["id"]

    @property
    def total(self) -> Decimal:
        return to_money(self.parent[self.spec.total_column])

    @property
    def vat(self) -> Decimal:
        return to_money(self.parent[self.spec.vat_column])

    @property
    def vat_rate(self) -> Decimal:
        return to_decimal(self.parent[self.spec.rate_column], self.spec.rate_column)

    def to_dict(self) -> dict[str, Any]:
        return {**self.parent, "items": list(self.children)}


class _Steps:
    """Tracks which step of a composite write is running."""

    def __init__(self, first: str):
        self.current = first


class TransactionalRecordWriter:
    """Atomic composite writes with server-side aggregates."""

    def __init__(
        self,
        adapter: QueryAdapter,
        sequences: SequenceGenerator | None = None,
        spec: CompositeSpec = WORK_ORDERS,
        *,
        default_rate: Decimal = Decimal("20"),
        timeout: float | None = None,
    ):
        self._adapter = adapter
        self._sequences = sequences
        self._spec = spec
        self._default_rate = to_decimal(default_rate, spec.rate_column)
        self._timeout = timeout

    @property
    def spec(self) -> CompositeSpec:
        return self._spec

    @property
    def _numbered(self) -> bool:
        return bool(self._sequences and self._spec.namespace and self._spec.number_column)

    # -- Field shaping --------------------------------------------------------

    def _parent_fields(self, parent: Mapping[str, Any]) -> dict[str, Any]:
        spec = self._spec
        fields = {k: v for k, v in parent.items() if k not in spec.derived_parent_columns}
        rate = fields.get(spec.rate_column)
        rate = self._default_rate if rate in (None, "") else to_decimal(rate, spec.rate_column)
        if rate < 0:
            raise ValidationError(f"{spec.rate_column} cannot be negative", field=spec.rate_column, value=rate)
        fields[spec.rate_column] = rate
        fields[spec.total_column] = to_money(0)
        fields[spec.vat_column] = to_money(0)
        return fields

    def _child_fields(self, item: Mapping[str, Any], parent_id: str) -> dict[str, Any]:
        spec = self._spec
        fields = {k: v for k, v in item.items() if k not in (spec.subtotal_column, spec.foreign_key)}

        quantity = to_decimal(fields.get(spec.quantity_column, 1), spec.quantity_column)
        if quantity <= 0 or quantity != quantity.to_integral_value():
            raise ValidationError(
                "quantity must be a positive whole number",
                field=spec.quantity_column,
                value=fields.get(spec.quantity_column),
                constraint="> 0",
            )
        price = to_decimal(fields.get(spec.price_column, 0), spec.price_column)
        if price < 0:
            raise ValidationError(
                "price cannot be negative", field=spec.price_column, value=price, constraint=">= 0"
            )

        fields[spec.foreign_key] = parent_id
        fields[spec.quantity_column] = int(quantity)
        fields[spec.price_column] = to_money(price)
        fields[spec.subtotal_column] = to_money(quantity * price)
        return fields

    # -- Reads ----------------------------------------------------------------

    def _find_parent(self, adapter: QueryAdapter, parent_id: str) -> dict[str, Any]:
        parent = adapter.query(
            QueryDescriptor(self._spec.parent_table, filters={"id": parent_id}, single=True)
        )
        if parent is None:
            raise NotFoundError(f"{self._spec.parent_table} {parent_id} not found").with_context(
                table=self._spec.parent_table
            )
        return parent

    def _children(self, adapter: QueryAdapter, parent_id: str) -> list[dict[str, Any]]:
        return adapter.query(
            QueryDescriptor(
                self._spec.child_table,
                filters={self._spec.foreign_key: parent_id},
                order={"created_at": SortDirection.ASC, "id": SortDirection.ASC},
            )
        )

    def _aggregate(self, adapter: QueryAdapter, parent: Mapping[str, Any]) -> CompositeRecord:
        spec = self._spec
        children = self._children(adapter, parent["id"])
        total = to_money(sum((to_decimal(c[spec.subtotal_column]) for c in children), Decimal(0)))
        rate = to_decimal(parent[spec.rate_column], spec.rate_column)
        vat = to_money(total * rate / 100)
        updated = adapter.update(
            spec.parent_table,
            {spec.total_column: total, spec.vat_column: vat},
            {"id": parent["id"]},
        )
        if updated is None:
            raise NotFoundError(f"{spec.parent_table} {parent['id']} vanished").with_context(
                table=spec.parent_table
            )
        return CompositeRecord(updated, children, spec)

    def get(self, parent_id: str) -> CompositeRecord:
        """Parent and children; NotFoundError when the parent is absent."""
        with self._adapter.transaction(timeout=self._timeout) as tx:
            parent = self._find_parent(tx, parent_id)
            return CompositeRecord(parent, self._children(tx, parent_id), self._spec)

    # -- Writes ---------------------------------------------------------------

    def _fail(self, steps: _Steps, operation: str, error: Exception) -> CompositeWriteError:
        if isinstance(error, CompositeWriteError):
            return error
        logger.error(
            "composite_write_failed",
            operation=operation,
            table=self._spec.parent_table,
            step=steps.current,
            error_type=type(error).__name__,
            error=error.message if isinstance(error, EquiptrakError) else str(error),
        )
        failure = CompositeWriteError(steps.current, error, table=self._spec.parent_table)
        failure.with_context(operation=operation)
        return failure

    def _insert_children(
        self, tx: QueryAdapter, steps: _Steps, parent_id: str, items: Iterable[Mapping[str, Any]]
    ) -> None:
        for index, item in enumerate(items):
            steps.current = f"child[{index}]"
            tx.insert(self._spec.child_table, self._child_fields(item, parent_id))

    def create_composite(
        self,
        parent: Mapping[str, Any],
        children: Iterable[Mapping[str, Any]] = (),
        *,
        cancel: threading.Event | None = None,
    ) -> CompositeRecord:
        """Insert the parent, then every child, then the aggregates."""
        spec = self._spec
        sequences = self._sequences if self._numbered else None
        steps = _Steps("parent")
        try:
            fields = self._parent_fields(parent)
            exclusive = sequences is not None and sequences.requires_exclusive
            with self._adapter.transaction(exclusive=exclusive, timeout=self._timeout, cancel=cancel) as tx:
                if sequences is not None:
                    steps.current = "number"
                    with sequences.claim(spec.namespace, tx) as number:
                        fields[spec.number_column] = number
                        steps.current = "parent"
                        created = tx.insert(spec.parent_table, fields)
                else:
                    created = tx.insert(spec.parent_table, fields)
                self._insert_children(tx, steps, created["id"], children)
                steps.current = "aggregate"
                record = self._aggregate(tx, created)
        except Exception as e:
            raise self._fail(steps, "create", e) from e
        logger.info(
            "composite_created",
            table=self._spec.parent_table,
            id=record.id,
            items=len(record.children),
            total=str(record.total),
        )
        return record

    def add_items(
        self,
        parent_id: str,
        items: Iterable[Mapping[str, Any]],
        *,
        cancel: threading.Event | None = None,
    ) -> CompositeRecord:
        """Append items to an existing parent and re-aggregate."""
        steps = _Steps("lookup")
        try:
            with self._adapter.transaction(timeout=self._timeout, cancel=cancel) as tx:
                parent = self._find_parent(tx, parent_id)
                self._insert_children(tx, steps, parent_id, items)
                steps.current = "aggregate"
                return self._aggregate(tx, parent)
        except Exception as e:
            raise self._fail(steps, "add_items", e) from e

    def remove_item(
        self,
        parent_id: str,
        item_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> CompositeRecord:
        """Delete one item owned by *parent_id* and re-aggregate."""
        spec = self._spec
        steps = _Steps("lookup")
        try:
            with self._adapter.transaction(timeout=self._timeout, cancel=cancel) as tx:
                parent = self._find_parent(tx, parent_id)
                item = tx.query(
                    QueryDescriptor(
                        spec.child_table,
                        filters={"id": item_id, spec.foreign_key: parent_id},
                        single=True,
                    )
                )
                if item is None:
                    raise NotFoundError(f"Item {item_id} not found on {parent_id}").with_context(
                        table=spec.child_table
                    )
                steps.current = "child[0]"
                tx.delete(spec.child_table, {"id": item_id, spec.foreign_key: parent_id})
                steps.current = "aggregate"
                return self._aggregate(tx, parent)
        except Exception as e:
            raise self._fail(steps, "remove_item", e) from e

    def update_parent(
        self,
        parent_id: str,
        fields: Mapping[str, Any],
        *,
        cancel: threading.Event | None = None,
    ) -> CompositeRecord:
        """
        PATCH allow-listed parent fields.

        Unknown keys are ignored; nothing updatable is a ValidationError.
        A changed rate re-aggregates from the stored items.
        """
        spec = self._spec
        changes = {k: v for k, v in fields.items() if k in spec.parent_update_fields}
        if not changes:
            raise ValidationError(
                "No updatable fields supplied",
                field="fields",
                constraint=", ".join(sorted(spec.parent_update_fields)),
            )
        if spec.rate_column in changes:
            rate = to_decimal(changes[spec.rate_column], spec.rate_column)
            if rate < 0:
                raise ValidationError(
                    f"{spec.rate_column} cannot be negative", field=spec.rate_column, value=rate
                )
            changes[spec.rate_column] = rate

        steps = _Steps("lookup")
        try:
            with self._adapter.transaction(timeout=self._timeout, cancel=cancel) as tx:
                self._find_parent(tx, parent_id)
                steps.current = "parent"
                parent = tx.update(spec.parent_table, changes, {"id": parent_id})
                steps.current = "aggregate"
                if spec.rate_column in changes:
                    return self._aggregate(tx, parent)  # type: ignore[arg-type]
                return CompositeRecord(parent, self._children(tx, parent_id), spec)  # type: ignore[arg-type]
        except Exception as e:
            raise self._fail(steps, "update_parent", e) from e

    def delete_composite(
        self,
        parent_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> CompositeRecord | None:
        """Delete items, then the parent. A missing parent returns ``None``."""
        spec = self._spec
        steps = _Steps("lookup")
        try:
            with self._adapter.transaction(timeout=self._timeout, cancel=cancel) as tx:
                parent = tx.query(QueryDescriptor(spec.parent_table, filters={"id": parent_id}, single=True))
                if parent is None:
                    return None
                children = self._children(tx, parent_id)
                for index, child in enumerate(children):
                    steps.current = f"child[{index}]"
                    tx.delete(spec.child_table, {"id": child["id"]})
                steps.current = "parent"
                tx.delete(spec.parent_table, {"id": parent_id})
        except Exception as e:
            raise self._fail(steps, "delete", e) from e
        logger.info("composite_deleted", table=spec.parent_table, id=parent_id, items=len(children))
        return CompositeRecord(parent, children, spec)


__all__ = [
    "CENT",
    "WORK_ORDER_UPDATE_FIELDS",
    "CompositeSpec",
    "WORK_ORDERS",
    "CompositeRecord",
    "TransactionalRecordWriter",
    "to_money",
    "to_decimal",
]
