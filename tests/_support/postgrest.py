"""
In-memory PostgREST double for RestDriver tests.

Speaks the subset of the PostgREST protocol the driver uses, over
``httpx.MockTransport`` so no socket is opened::

    GET    /<table>?select=a,b&col=eq.v&col=is.null&order=a.desc,id.asc&limit=&offset=
    POST   /<table>                     (Prefer: return=representation)
    PATCH  /<table>?col=eq.v
    DELETE /<table>?col=eq.v
    POST   /rpc/next_sequence_value     {"p_namespace": ..., "p_start": ...}

Unknown tables answer 404 ``PGRST205``; unknown columns 400; unique
collisions 409 ``23505``. ``fail_next()`` injects one failing response and
``offline`` makes every request raise ``httpx.ConnectError``.

Usage::

    server = FakePostgREST(api_key="anon")
    driver = RestDriver(server.base_url, "anon", transport=server.transport())
"""

from __future__ import annotations

import copy
import json
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from equiptrak.storage.schema import TABLE_COLUMNS

BASE_URL = "http://postgrest.test/rest/v1"
_PREFIX = "/rest/v1/"

UNIQUE_COLUMNS = ("certificate_number", "work_order_number")


@dataclass
class _Fault:
    method: str
    table: str
    status: int
    skip: int = 0


@dataclass
class FakePostgREST:
    """Tables, counters and fault hooks of one fake REST backend."""

    api_key: str = "anon-key"
    tables: Iterable[str] | None = None
    base_url: str = BASE_URL
    offline: bool = False
    select_hook: Callable[[str], None] | None = None
    rows: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def __post_init__(self) -> None:
        names = list(self.tables) if self.tables is not None else list(TABLE_COLUMNS)
        self.rows = {name: [] for name in names}
        self._faults: list[_Fault] = []
        self._lock = threading.RLock()

    # -- Test controls ------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail_next(self, method: str, table: str, status: int = 500, *, skip: int = 0) -> None:
        """Answer the (skip+1)-th matching request with *status*."""
        self._faults.append(_Fault(method.upper(), table, status, skip))

    def drop_table(self, name: str) -> None:
        self.rows.pop(name, None)

    def table(self, name: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.rows[name])

    # -- Dispatch -----------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        with self._lock:
            self.requests.append(request)

        if self.api_key and request.headers.get("apikey") != self.api_key:
            return _error(401, "PGRST301", "invalid api key")

        path = request.url.path
        if not path.startswith(_PREFIX):
            return _error(404, "PGRST000", "unknown path")
        name = path[len(_PREFIX):]

        fault = self._take_fault(request.method, name)
        if fault is not None:
            return _error(fault.status, "XX000", "injected failure")

        if name == "rpc/next_sequence_value":
            return self._rpc_next(json.loads(request.content))
        if name not in self.rows:
            return _error(404, "PGRST205", f"Could not find the table 'public.{name}'")

        params = list(request.url.params.multi_items())
        if request.method == "GET":
            response = self._select(name, params)
            if self.select_hook is not None:
                self.select_hook(name)
            return response
        body = json.loads(request.content) if request.content else None
        representation = "return=representation" in request.headers.get("prefer", "")
        if request.method == "POST":
            return self._insert(name, body, representation)
        if request.method == "PATCH":
            return self._update(name, params, body, representation)
        if request.method == "DELETE":
            return self._delete(name, params, representation)
        return _error(405, "PGRST000", "method not allowed")

    def _take_fault(self, method: str, table: str) -> _Fault | None:
        with self._lock:
            for fault in self._faults:
                if fault.method == method and fault.table == table:
                    if fault.skip:
                        fault.skip -= 1
                        return None
                    self._faults.remove(fault)
                    return fault
        return None

    # -- Operations ---------------------------------------------------------

    def _select(self, name: str, params: list[tuple[str, str]]) -> httpx.Response:
        select = "*"
        order: list[tuple[str, bool]] = []
        limit = offset = None
        filters = []
        for key, value in params:
            if key == "select":
                select = value
            elif key == "order":
                for term in value.split(","):
                    column, _, direction = term.partition(".")
                    order.append((column, direction == "desc"))
            elif key == "limit":
                limit = int(value)
            elif key == "offset":
                offset = int(value)
            else:
                filters.append((key, value))

        columns = None if select == "*" else select.split(",")
        for column in [c for c, _ in filters] + [c for c, _ in order] + (columns or []):
            if column not in TABLE_COLUMNS[name]:
                return _error(400, "42703", f"column {name}.{column} does not exist")

        with self._lock:
            rows = [r for r in self.rows[name] if _matches(r, filters)]
            for column, descending in reversed(order):
                rows.sort(key=lambda r, c=column: _sort_key(r.get(c)), reverse=descending)
            start = offset or 0
            rows = rows[start:] if limit is None else rows[start:start + limit]
            result = [
                {c: r.get(c) for c in columns} if columns else dict(r)
                for r in rows
            ]
        return _json(200, result)

    def _insert(self, name: str, body: Any, representation: bool) -> httpx.Response:
        incoming = body if isinstance(body, list) else [body]
        allowed = TABLE_COLUMNS[name]
        stored = []
        with self._lock:
            for payload in incoming:
                unknown = set(payload) - allowed
                if unknown:
                    return _error(400, "PGRST204", f"Could not find column {sorted(unknown)[0]}")
                row = {column: None for column in sorted(allowed)}
                row.update(payload)
                if self._violates_unique(name, row):
                    return _error(409, "23505", "duplicate key value violates unique constraint")
                self.rows[name].append(row)
                stored.append(dict(row))
        return _json(201, stored if representation else [])

    def _update(self, name: str, params: list, body: dict[str, Any], representation: bool) -> httpx.Response:
        unknown = set(body) - TABLE_COLUMNS[name]
        if unknown:
            return _error(400, "PGRST204", f"Could not find column {sorted(unknown)[0]}")
        with self._lock:
            updated = []
            for row in self.rows[name]:
                if _matches(row, params):
                    candidate = {**row, **body}
                    if self._violates_unique(name, candidate, ignore=row):
                        return _error(409, "23505", "duplicate key value violates unique constraint")
                    row.update(body)
                    updated.append(dict(row))
        return _json(200, updated if representation else [])

    def _delete(self, name: str, params: list, representation: bool) -> httpx.Response:
        with self._lock:
            removed = [dict(r) for r in self.rows[name] if _matches(r, params)]
            self.rows[name] = [r for r in self.rows[name] if not _matches(r, params)]
        return _json(200, removed if representation else [])

    def _rpc_next(self, body: dict[str, Any]) -> httpx.Response:
        namespace = body["p_namespace"]
        start = int(body["p_start"])
        with self._lock:
            value = max(self.counters.get(namespace, start - 1) + 1, start)
            self.counters[namespace] = value
        return _json(200, value)

    def _violates_unique(self, name: str, row: dict[str, Any], ignore: dict | None = None) -> bool:
        for existing in self.rows[name]:
            if existing is ignore:
                continue
            if existing.get("id") == row.get("id"):
                return True
            for column in UNIQUE_COLUMNS:
                if row.get(column) is not None and existing.get(column) == row.get(column):
                    return True
        return False


# -- Helpers ----------------------------------------------------------------


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _matches(row: dict[str, Any], filters: Iterable[tuple[str, str]]) -> bool:
    for column, expression in filters:
        operator, _, operand = expression.partition(".")
        value = row.get(column)
        if operator == "is" and operand == "null":
            if value is not None:
                return False
        elif operator == "eq":
            if value is None or _text(value) != operand:
                return False
        else:
            raise AssertionError(f"unsupported operator in fake: {expression}")
    return True


def _sort_key(value: Any) -> tuple[bool, Any]:
    # NULL sorts as the largest value: last for ASC, first for DESC.
    return (value is None, "" if value is None else value)


def _json(status: int, payload: Any) -> httpx.Response:
    return httpx.Response(status, json=payload)


def _error(status: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(status, json={"code": code, "message": message, "details": None, "hint": None})


__all__ = [
    "BASE_URL",
    "FakePostgREST",
]
