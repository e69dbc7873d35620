"""
REST-fronted BaaS driver (PostgREST / Supabase REST API).

Translates the QueryDescriptor contract into PostgREST query parameters::

    QueryDescriptor(table="service_records",
                    filters={"company_id": "c1", "notes": None},
                    order={"service_date": "desc"}, limit=20, offset=40)

    GET /service_records?select=*&company_id=eq.c1&notes=is.null
        &order=service_date.desc,id.asc&limit=20&offset=40

Writes send ``Prefer: return=representation`` so that inserts, updates
and deletes return the rows exactly as stored, like the relational driver.

PostgREST has no multi-request transactions. ``transaction()`` therefore
keeps a compensation log: every write records how to undo itself, and on
failure the log is replayed in reverse (delete what was inserted, restore
what was updated, re-insert what was deleted). This is best-effort: a
concurrent reader can observe the intermediate state, and a compensation
that itself fails is logged and attached to the raised error.

Numbering in ``SequenceMode.ATOMIC`` calls the ``next_sequence_value``
database function through ``POST /rpc/next_sequence_value``.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import httpx

from equiptrak.core.errors import (
    BackendUnavailableError,
    ConfigError,
    ConflictError,
    EquiptrakError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from equiptrak.core.logging import get_logger
from equiptrak.storage.descriptor import QueryDescriptor
from equiptrak.storage.schema import check_identifier

from .base import NO_DEADLINE, Deadline, DriverSession, Row, StorageDriver, iter_filter_items

logger = get_logger(__name__)

_RETURN_ROWS = {"Prefer": "return=representation"}
_UNKNOWN_RELATION_CODES = {"PGRST205", "42P01"}


def encode_value(value: Any) -> str:
    """Render a filter value the way PostgREST parses it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def filter_params(filters: Mapping[str, Any]) -> list[tuple[str, str]]:
    params = []
    for column, value in iter_filter_items(filters):
        check_identifier(column)
        params.append((column, "is.null" if value is None else f"eq.{encode_value(value)}"))
    return params


def query_params(descriptor: QueryDescriptor) -> list[tuple[str, str]]:
    """PostgREST query string for a descriptor."""
    select = "*" if descriptor.selects_all else ",".join(check_identifier(c) for c in descriptor.select)
    params = [("select", select)]
    params.extend(filter_params(descriptor.filters))
    if descriptor.order:
        params.append((
            "order",
            ",".join(f"{check_identifier(c)}.{d.value}" for c, d in descriptor.order.items()),
        ))
    if descriptor.limit is not None:
        params.append(("limit", str(descriptor.limit)))
    if descriptor.offset:
        params.append(("offset", str(descriptor.offset)))
    return params


class RestDriverSession(DriverSession):
    """DriverSession issuing one HTTP request per operation."""

    def __init__(self, driver: RestDriver, deadline: Deadline, undo: list[tuple[str, str, Any]] | None):
        super().__init__(deadline)
        self._driver = driver
        self._undo = undo

    def _record(self, action: str, table: str, payload: Any) -> None:
        if self._undo is not None:
            self._undo.append((action, table, payload))

    def select(self, descriptor: QueryDescriptor) -> list[Row]:
        self.deadline.check()
        table = check_identifier(descriptor.table)
        return self._driver.request("GET", table, params=query_params(descriptor)).json()

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        self.deadline.check()
        table = check_identifier(table)
        rows = self._driver.request("POST", table, body=dict(row), headers=_RETURN_ROWS).json()
        if not rows:
            raise InternalError("Insert returned no representation").with_context(table=table)
        self._record("delete", table, rows[0]["id"])
        return rows[0]

    def update(self, table: str, fields: Mapping[str, Any], filters: Mapping[str, Any]) -> list[Row]:
        self.deadline.check()
        table = check_identifier(table)
        params = filter_params(filters)
        if self._undo is not None:
            before = self._driver.request("GET", table, params=[("select", "*"), *params]).json()
            if not before:
                return []
            self._record("restore", table, before)
        rows = self._driver.request("PATCH", table, params=params, body=dict(fields), headers=_RETURN_ROWS).json()
        return sorted(rows, key=lambda r: str(r.get("id")))

    def delete(self, table: str, filters: Mapping[str, Any]) -> list[Row]:
        self.deadline.check()
        table = check_identifier(table)
        rows = self._driver.request("DELETE", table, params=filter_params(filters), headers=_RETURN_ROWS).json()
        if rows:
            self._record("reinsert", table, rows)
        return sorted(rows, key=lambda r: str(r.get("id")))

    def raw(self, sql: str, params: Sequence[Any]) -> list[Row]:
        raise InternalError("The REST driver does not execute SQL text; use SQLStringInterpreter")

    def lock_namespace(self, namespace: str) -> None:
        # No cross-request lock exists over HTTP; SequenceGenerator's
        # process-local lock is the only guard on this driver.
        self.deadline.check()

    def next_sequence_value(self, namespace: str, start: int) -> int:
        self.deadline.check()
        response = self._driver.request(
            "POST",
            "rpc/next_sequence_value",
            body={"p_namespace": namespace, "p_start": start},
        )
        return int(response.json())


class RestDriver(StorageDriver):
    """
    Storage driver for a PostgREST-compatible HTTP API.

    ``transport`` is passed straight to ``httpx.Client`` (tests use
    ``httpx.MockTransport``).
    """

    name = "rest"
    supports_raw_sql = False

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not base_url:
            raise ConfigError("REST driver needs a base URL")
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    # -- HTTP -----------------------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and translate any failure into the error taxonomy."""
        request_headers = dict(headers or {})
        content = None
        if body is not None:
            content = json.dumps(body, default=_json_default)
            request_headers["Content-Type"] = "application/json"
        try:
            response = self._client.request(
                method, f"/{path}", params=params, content=content, headers=request_headers
            )
        except httpx.TimeoutException as e:
            raise BackendUnavailableError("REST backend timed out", cause=e).with_context(
                url=path, operation=method
            ) from e
        except httpx.TransportError as e:
            raise BackendUnavailableError("REST backend unreachable", cause=e).with_context(
                url=path, operation=method
            ) from e

        if response.is_success:
            return response
        raise self._translate(response, path, method)

    @staticmethod
    def _translate(response: httpx.Response, path: str, method: str) -> EquiptrakError:
        status = response.status_code
        try:
            detail = response.json()
        except ValueError:
            detail = {}
        code = detail.get("code") if isinstance(detail, dict) else None

        error: EquiptrakError
        if status == 404 and code in _UNKNOWN_RELATION_CODES:
            error = NotFoundError("Table does not exist")
        elif status == 404:
            error = NotFoundError("Resource not found")
        elif status == 409:
            error = ConflictError("Write conflicts with an existing row")
        elif status in (400, 422):
            error = ValidationError("Request rejected by the REST backend")
        elif status in (401, 403):
            error = ConfigError("REST backend rejected the configured credentials")
        elif status >= 500:
            error = BackendUnavailableError("REST backend failed")
        else:
            error = InternalError(f"Unexpected REST response {status}")
        return error.with_context(url=path, http_status=status, operation=method, code=code)

    # -- StorageDriver --------------------------------------------------------

    @contextmanager
    def session(self, deadline: Deadline = NO_DEADLINE) -> Iterator[DriverSession]:
        yield RestDriverSession(self, deadline, undo=None)

    @contextmanager
    def transaction(
        self,
        *,
        exclusive: bool = False,  # noqa: ARG002
        deadline: Deadline = NO_DEADLINE,
    ) -> Iterator[DriverSession]:
        deadline.check()
        undo: list[tuple[str, str, Any]] = []
        try:
            yield RestDriverSession(self, deadline, undo=undo)
            deadline.check()
        except BaseException as exc:
            failures = self._compensate(undo)
            if failures and isinstance(exc, EquiptrakError):
                exc.with_context(compensation_failures=failures)
            raise

    def _compensate(self, undo: list[tuple[str, str, Any]]) -> list[str]:
        """Replay the undo log newest-first; return descriptions of what failed."""
        failures = []
        for action, table, payload in reversed(undo):
            try:
                if action == "delete":
                    self.request("DELETE", table, params=[("id", f"eq.{encode_value(payload)}")])
                elif action == "restore":
                    for row in payload:
                        fields = {k: v for k, v in row.items() if k != "id"}
                        self.request(
                            "PATCH", table, params=[("id", f"eq.{encode_value(row['id'])}")], body=fields
                        )
                elif action == "reinsert":
                    self.request("POST", table, body=payload)
            except EquiptrakError as e:
                logger.error("rest_compensation_failed", table=table, action=action, error=e.message)
                failures.append(f"{action} {table}")
        if undo:
            logger.info("rest_transaction_compensated", steps=len(undo), failed=len(failures))
        return failures

    def existing_tables(self, candidates: Sequence[str]) -> set[str]:
        found = set()
        for name in candidates:
            check_identifier(name)
            try:
                self.request("GET", name, params=[("select", "*"), ("limit", "0")])
            except NotFoundError:
                continue
            found.add(name)
        return found

    def close(self) -> None:
        self._client.close()


__all__ = [
    "RestDriver",
    "RestDriverSession",
    "encode_value",
    "filter_params",
    "query_params",
]
