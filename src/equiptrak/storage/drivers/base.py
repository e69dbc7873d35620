"""Storage driver contract.

Manifesto:
    The application sees one query surface; the deployment decides whether
    it is served by a direct relational connection or by a REST-fronted
    BaaS. That decision is made once, when the driver is built. Nothing
    above this module branches on which driver it got.

    Both drivers implement the same session operations with the same
    semantics: equality filters (``None`` = IS NULL), ordered columns,
    ``limit`` bounds row count, ``offset`` is a zero-based skip.

Features:
    - ``StorageDriver``: ``session()`` / ``transaction()`` / catalog lookup
    - ``DriverSession``: select, insert, update, delete, raw, namespace lock,
      atomic counter
    - ``Deadline``: timeout and cancellation checked before every operation

Tags:
    equiptrak, storage, driver, abstract-base, transactions

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any

from equiptrak.core.errors import TransactionAbortedError
from equiptrak.storage.descriptor import QueryDescriptor

Row = dict[str, Any]


@dataclass
class Deadline:
    """Timeout and cancellation state for one transaction."""

    expires_at: float | None = None
    cancel: threading.Event | None = None

    @classmethod
    def after(cls, seconds: float | None, cancel: threading.Event | None = None) -> Deadline:
        expires = time.monotonic() + seconds if seconds else None
        return cls(expires_at=expires, cancel=cancel)

    @property
    def remaining_ms(self) -> int | None:
        if self.expires_at is None:
            return None
        return max(1, int((self.expires_at - time.monotonic()) * 1000))

    def check(self) -> None:
        """Raise TransactionAbortedError once cancelled or past the deadline."""
        if self.cancel is not None and self.cancel.is_set():
            raise TransactionAbortedError("Transaction cancelled by caller", reason="cancelled")
        if self.expires_at is not None and time.monotonic() >= self.expires_at:
            raise TransactionAbortedError("Transaction timed out", reason="timeout")


NO_DEADLINE = Deadline()


class DriverSession(ABC):
    """
    Operations available inside one driver scope.

    Tables and columns reaching a session have already been checked against
    the allow-list by the QueryAdapter; sessions only deal with wire format.
    """

    def __init__(self, deadline: Deadline = NO_DEADLINE):
        self.deadline = deadline

    @abstractmethod
    def select(self, descriptor: QueryDescriptor) -> list[Row]:
        """Rows matching the descriptor, in its order."""
        ...

    @abstractmethod
    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert one row and return it as stored."""
        ...

    @abstractmethod
    def update(self, table: str, fields: Mapping[str, Any], filters: Mapping[str, Any]) -> list[Row]:
        """Update matching rows; return them as stored afterwards."""
        ...

    @abstractmethod
    def delete(self, table: str, filters: Mapping[str, Any]) -> list[Row]:
        """Delete matching rows; return what was deleted."""
        ...

    @abstractmethod
    def raw(self, sql: str, params: Sequence[Any]) -> list[Row]:
        """Run parameterized SQL (``$1``-style) if the backend can."""
        ...

    @abstractmethod
    def lock_namespace(self, namespace: str) -> None:
        """Hold a storage-level lock on *namespace* until the transaction ends."""
        ...

    @abstractmethod
    def next_sequence_value(self, namespace: str, start: int) -> int:
        """Atomically increment the counter for *namespace*; seed it at *start*."""
        ...


class StorageDriver(ABC):
    """One of exactly two storage backends."""

    #: ``"sql"`` or ``"rest"``
    name: str = ""
    #: Whether ``raw()`` executes SQL text directly.
    supports_raw_sql: bool = False

    @abstractmethod
    def session(self, deadline: Deadline = NO_DEADLINE) -> AbstractContextManager[DriverSession]:
        """Scope for a single operation (auto-committed)."""
        ...

    @abstractmethod
    def transaction(
        self,
        *,
        exclusive: bool = False,
        deadline: Deadline = NO_DEADLINE,
    ) -> AbstractContextManager[DriverSession]:
        """Scope whose operations commit together or not at all."""
        ...

    @abstractmethod
    def existing_tables(self, candidates: Sequence[str]) -> set[str]:
        """Which of *candidates* currently exist. Raises on catalog failure."""
        ...

    def close(self) -> None:
        """Release pools and clients."""


def iter_filter_items(filters: Mapping[str, Any]) -> Iterator[tuple[str, Any]]:
    """Filters in a stable order, so generated SQL and URLs are deterministic."""
    return iter(sorted(filters.items()))


__all__ = [
    "Row",
    "Deadline",
    "NO_DEADLINE",
    "DriverSession",
    "StorageDriver",
    "iter_filter_items",
]
