"""Enumerations shared across the storage and records packages."""

from __future__ import annotations

from enum import Enum


class StorageBackend(str, Enum):
    """Which driver serves the QueryAdapter. Chosen once per process."""

    SQL = "sql"
    REST = "rest"


class SequenceMode(str, Enum):
    """How SequenceGenerator protects a numbering namespace.

    READ_LAST reproduces the unguarded read-then-insert race and exists so
    the hazard stays observable in tests. LOCKED serializes the namespace
    for the lifetime of the numbering transaction. ATOMIC delegates to a
    database counter row.
    """

    READ_LAST = "read_last"
    LOCKED = "locked"
    ATOMIC = "atomic"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class CertificateStatus(str, Enum):
    """Lifecycle status of a certificate relative to today."""

    VALID = "valid"
    UPCOMING = "upcoming"
    EXPIRED = "expired"


__all__ = [
    "StorageBackend",
    "SequenceMode",
    "SortDirection",
    "CertificateStatus",
]
