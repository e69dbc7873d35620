"""Direct relational driver (SQLite or PostgreSQL over DB-API)."""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from equiptrak.core.adapters.base import DatabaseAdapter, SqlSession
from equiptrak.core.errors import InternalError, ValidationError
from equiptrak.storage.descriptor import QueryDescriptor
from equiptrak.storage.schema import SEQUENCE_TABLE, check_identifier

from .base import NO_DEADLINE, Deadline, DriverSession, Row, StorageDriver, iter_filter_items

_NUMBERED_PARAM = re.compile(r"\$(\d+)")
_QUOTED = re.compile(r"('(?:[^']|'')*')")


def rewrite_numbered_params(sql: str, params: Sequence[Any], placeholder: str) -> tuple[str, list[Any]]:
    """
    Rewrite ``$1``-style placeholders to the driver's style.

    DB-API placeholders are positional, so the bound list is rebuilt in the
    order the ``$n`` markers appear (``$1`` may appear twice). Text inside
    single quotes is left alone, except that with the ``%s`` paramstyle
    every literal ``%`` is doubled so the driver's formatting keeps it.
    """
    ordered: list[Any] = []
    pyformat = placeholder == "%s"

    def _swap(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if index < 1 or index > len(params):
            raise ValidationError(
                f"Placeholder ${index} has no bound parameter",
                field="params",
                value=len(params),
            )
        ordered.append(params[index - 1])
        return placeholder

    pieces = _QUOTED.split(sql)
    if pyformat:
        pieces = [piece.replace("%", "%%") for piece in pieces]
    for i in range(0, len(pieces), 2):
        pieces[i] = _NUMBERED_PARAM.sub(_swap, pieces[i])
    return "".join(pieces), ordered


class SqlDriverSession(DriverSession):
    """DriverSession over one borrowed ``SqlSession``."""

    def __init__(self, sql: SqlSession, deadline: Deadline, *, in_transaction: bool):
        super().__init__(deadline)
        self._sql = sql
        self._in_transaction = in_transaction

    # -- Statement building -------------------------------------------------

    def _ph(self, index: int) -> str:
        return self._sql.dialect.placeholder(index)

    def _where(self, filters: Mapping[str, Any], params: list[Any]) -> str:
        clauses = []
        for column, value in iter_filter_items(filters):
            check_identifier(column)
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = {self._ph(len(params))}")
                params.append(value)
        return f" WHERE {' AND '.join(clauses)}" if clauses else ""

    def _id_in(self, ids: list[Any], params: list[Any]) -> str:
        marks = []
        for value in ids:
            marks.append(self._ph(len(params)))
            params.append(value)
        return f" WHERE id IN ({', '.join(marks)})"

    # -- Operations ---------------------------------------------------------

    def select(self, descriptor: QueryDescriptor) -> list[Row]:
        self.deadline.check()
        table = check_identifier(descriptor.table)
        if descriptor.selects_all:
            columns = "*"
        else:
            columns = ", ".join(check_identifier(c) for c in descriptor.select)
        params: list[Any] = []
        sql = f"SELECT {columns} FROM {table}{self._where(descriptor.filters, params)}"
        if descriptor.order:
            terms = [
                f"{check_identifier(column)} {direction.value.upper()}"
                for column, direction in descriptor.order.items()
            ]
            sql += f" ORDER BY {', '.join(terms)}"
        sql += self._sql.dialect.limit_offset(descriptor.limit, descriptor.offset)
        return self._sql.query(sql, params)

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        self.deadline.check()
        table = check_identifier(table)
        columns = [check_identifier(c) for c in row]
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({self._sql.dialect.placeholders(len(columns))})"
        )
        self._sql.execute(sql, list(row.values()))
        stored = self._sql.query_one(f"SELECT * FROM {table} WHERE id = {self._ph(0)}", [row["id"]])
        if stored is None:
            raise InternalError("Inserted row could not be read back").with_context(table=table)
        return stored

    def update(self, table: str, fields: Mapping[str, Any], filters: Mapping[str, Any]) -> list[Row]:
        self.deadline.check()
        table = check_identifier(table)
        params: list[Any] = []
        ids = [r["id"] for r in self._sql.query(
            f"SELECT id FROM {table}{self._where(filters, params)} ORDER BY id", params
        )]
        if not ids:
            return []

        params = []
        assignments = []
        for column, value in fields.items():
            assignments.append(f"{check_identifier(column)} = {self._ph(len(params))}")
            params.append(value)
        self._sql.execute(f"UPDATE {table} SET {', '.join(assignments)}{self._id_in(ids, params)}", params)

        params = []
        return self._sql.query(f"SELECT * FROM {table}{self._id_in(ids, params)} ORDER BY id", params)

    def delete(self, table: str, filters: Mapping[str, Any]) -> list[Row]:
        self.deadline.check()
        table = check_identifier(table)
        params: list[Any] = []
        rows = self._sql.query(f"SELECT * FROM {table}{self._where(filters, params)} ORDER BY id", params)
        if not rows:
            return []
        params = []
        self._sql.execute(f"DELETE FROM {table}{self._id_in([r['id'] for r in rows], params)}", params)
        return rows

    def raw(self, sql: str, params: Sequence[Any]) -> list[Row]:
        self.deadline.check()
        text, bound = rewrite_numbered_params(sql, params, self._ph(0))
        return self._sql.query(text, bound)

    def lock_namespace(self, namespace: str) -> None:
        if not self._in_transaction:
            raise InternalError("Namespace locks are only valid inside a transaction")
        self.deadline.check()
        lock_sql = self._sql.dialect.namespace_lock()
        if lock_sql:
            self._sql.query(lock_sql, [namespace])

    def next_sequence_value(self, namespace: str, start: int) -> int:
        self.deadline.check()
        dialect = self._sql.dialect
        now = datetime.now(UTC)
        self._sql.execute(
            dialect.insert_or_ignore(SEQUENCE_TABLE, ["namespace", "last_value", "updated_at"]),
            [namespace, start - 1, now],
        )
        ph = self._ph(0)
        self._sql.execute(
            f"UPDATE {SEQUENCE_TABLE} SET "
            f"last_value = CASE WHEN last_value + 1 < {ph} THEN {ph} ELSE last_value + 1 END, "
            f"updated_at = {ph} WHERE namespace = {ph}",
            [start, start, now, namespace],
        )
        row = self._sql.query_one(
            f"SELECT last_value FROM {SEQUENCE_TABLE} WHERE namespace = {ph}", [namespace]
        )
        if row is None:
            raise InternalError("Sequence counter vanished").with_context(namespace=namespace)
        return int(row["last_value"])


class SqlDriver(StorageDriver):
    """
    Storage driver speaking parameterized SQL through a ``DatabaseAdapter``.

    Each scope borrows its own connection from the adapter; connections are
    never shared between concurrent requests.
    """

    name = "sql"
    supports_raw_sql = True

    def __init__(self, adapter: DatabaseAdapter):
        self._adapter = adapter

    @property
    def adapter(self) -> DatabaseAdapter:
        return self._adapter

    @contextmanager
    def session(self, deadline: Deadline = NO_DEADLINE) -> Iterator[DriverSession]:
        with self._adapter.connection() as sql:
            yield SqlDriverSession(sql, deadline, in_transaction=False)

    @contextmanager
    def transaction(
        self,
        *,
        exclusive: bool = False,
        deadline: Deadline = NO_DEADLINE,
    ) -> Iterator[DriverSession]:
        deadline.check()
        with self._adapter.transaction(
            exclusive=exclusive,
            statement_timeout_ms=deadline.remaining_ms,
        ) as sql:
            yield SqlDriverSession(sql, deadline, in_transaction=True)
            # Checked again before COMMIT.
            deadline.check()

    def existing_tables(self, candidates: Sequence[str]) -> set[str]:
        names = [check_identifier(c) for c in candidates]
        if not names:
            return set()
        with self._adapter.connection() as sql:
            rows = sql.query(sql.dialect.table_catalog_query(len(names)), names)
        return {row["table_name"] for row in rows}

    def close(self) -> None:
        self._adapter.disconnect()


__all__ = [
    "SqlDriver",
    "SqlDriverSession",
    "rewrite_numbered_params",
]
