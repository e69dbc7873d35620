"""
Structured error types for the equiptrak persistence core.

Every failure that leaves the storage layer is one of the typed errors
below. Each carries a category for routing, a retryable flag, structured
context, and an ``http_status`` the enclosing HTTP service maps straight
onto its response. Driver exceptions (sqlite3, psycopg2, httpx) are
translated at the driver boundary and never escape raw.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure the caller can act on
    - **Explicit Retry Semantics:** Conflicts and outages are retryable, bad
      input is not
    - **No Leaked Internals:** ``error_payload()`` renders what a client may
      see; driver messages stay in ``cause`` for the logs
    - **Error Chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       EquiptrakError                             │
        │  (category, retryable, context, cause, http_status)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  NotFoundError (404)      ValidationError (400)                  │
        │  ParseError (400)         ConflictError (409, retryable)         │
        │  AmbiguousSchemaError     BackendUnavailableError (503, retry)   │
        │  ConfigError              TransactionAbortedError (503, retry)   │
        │  InternalError            CompositeWriteError (status of cause)  │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ValidationError("update requires a filter", field="filters")
    >>> error.http_status
    400
    >>> http_status_for(KeyError("boom"))
    500

Guardrails:
    ❌ DON'T: Raise sqlite3/psycopg2/httpx exceptions past a driver
    ✅ DO: Translate them and pass the original as ``cause=``

    ❌ DON'T: Put SQL text or driver messages into ``message``
    ✅ DO: Keep them in ``context``/``cause`` where only logs see them

Tags:
    error-handling, exception-hierarchy, http-status, retry-logic, equiptrak

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # REST transport, DNS, TLS
    DATABASE = "DATABASE"         # Connection pool, locks, statement timeout

    # Request errors
    NOT_FOUND = "NOT_FOUND"       # Missing row or entity
    PARSE = "PARSE"               # Unsupported SQL text
    VALIDATION = "VALIDATION"     # Bad filters, columns, required fields
    CONFLICT = "CONFLICT"         # Unique collisions, concurrent numbering

    # Schema / configuration (never retryable)
    SCHEMA = "SCHEMA"             # Ambiguous physical tables
    CONFIG = "CONFIG"             # Missing or invalid settings

    # Internal errors
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error for logging.

    Only non-None fields are emitted by ``to_dict()``; anything that has no
    dedicated field goes into ``metadata``.
    """

    # Storage context
    table: str | None = None
    entity: str | None = None
    operation: str | None = None
    step: str | None = None

    # Request context
    url: str | None = None
    http_status: int | None = None

    # Additional metadata
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["table", "entity", "operation", "step", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EquiptrakError(Exception):
    """
    Base exception for all equiptrak errors.

    Subclasses set ``default_category``, ``default_retryable`` and
    ``http_status`` so that callers rarely pass them explicitly.

    Examples:
        >>> error = EquiptrakError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(table="work_orders").context.table
        'work_orders'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False
    http_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EquiptrakError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Work order not found").with_context(
                table="work_orders", operation="add_items"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# REQUEST ERRORS
# =============================================================================


class NotFoundError(EquiptrakError):
    """No matching row, or no physical table behind a logical entity on a write."""

    default_category = ErrorCategory.NOT_FOUND
    http_status = 404


class ParseError(EquiptrakError):
    """SQL text outside the supported grammar."""

    default_category = ErrorCategory.PARSE
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        construct: str | None = None,
        position: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.construct = construct
        self.position = position

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.construct:
            result["construct"] = self.construct
        if self.position is not None:
            result["position"] = self.position
        return result


class ValidationError(EquiptrakError):
    """
    Input validation error.

    Never retryable - the request must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        return result


class ConflictError(EquiptrakError):
    """Unique-key collision, typically two writers claiming the same number."""

    default_category = ErrorCategory.CONFLICT
    default_retryable = True
    http_status = 409


# =============================================================================
# SCHEMA / CONFIG ERRORS
# =============================================================================


class AmbiguousSchemaError(EquiptrakError):
    """Several candidate tables exist and the entity names no preferred one."""

    default_category = ErrorCategory.SCHEMA
    http_status = 500

    def __init__(self, logical_name: str, matches: list[str], **kwargs: Any):
        super().__init__(
            f"Entity '{logical_name}' is backed by several tables ({', '.join(matches)}) "
            "and has no documented preference",
            **kwargs,
        )
        self.logical_name = logical_name
        self.matches = list(matches)
        self.with_context(entity=logical_name, candidates=self.matches)


class ConfigError(EquiptrakError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG
    http_status = 500


# =============================================================================
# INFRASTRUCTURE ERRORS (Retryable)
# =============================================================================


class BackendUnavailableError(EquiptrakError):
    """Connection or transport failure talking to the storage backend."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True
    http_status = 503


class TransactionAbortedError(EquiptrakError):
    """The caller cancelled or timed out; the transaction was rolled back."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True
    http_status = 503

    def __init__(self, message: str, *, reason: str = "cancelled", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.reason = reason


class InternalError(EquiptrakError):
    """Unexpected state or an untranslated driver failure."""

    default_category = ErrorCategory.INTERNAL


# =============================================================================
# COMPOSITE WRITES
# =============================================================================


class CompositeWriteError(EquiptrakError):
    """
    A multi-row write failed and was rolled back as a whole.

    ``step`` names where it failed: ``"number"``, ``"lookup"``, ``"parent"``,
    ``"child[2]"`` or ``"aggregate"``. Category, retryability and HTTP
    status follow the underlying cause, so a missing parent still maps
    to 404 and a unique collision to 409.
    """

    def __init__(self, step: str, cause: BaseException, *, table: str | None = None):
        detail = cause.message if isinstance(cause, EquiptrakError) else "storage error"
        super().__init__(
            f"Composite write failed at {step}: {detail}",
            category=categorize_error(cause),
            retryable=is_retryable(cause),
            cause=cause,
        )
        self.step = step
        self.with_context(step=step, table=table)

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return http_status_for(self.cause)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, EquiptrakError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, EquiptrakError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def http_status_for(error: BaseException | None) -> int:
    """HTTP status the enclosing service should answer with."""
    if isinstance(error, EquiptrakError):
        return error.http_status
    return 500


def error_payload(error: BaseException) -> dict[str, Any]:
    """JSON body for a failed request. Never includes the driver cause."""
    if not isinstance(error, EquiptrakError):
        return {"error": "InternalError", "message": "Internal server error"}
    payload: dict[str, Any] = {
        "error": error.__class__.__name__,
        "message": error.message,
        "retryable": error.retryable,
    }
    if isinstance(error, CompositeWriteError):
        payload["step"] = error.step
    if isinstance(error, ValidationError) and error.field:
        payload["field"] = error.field
    if isinstance(error, ParseError) and error.construct:
        payload["construct"] = error.construct
    return payload


__all__ = [
    # Category enum
    "ErrorCategory",
    # Context
    "ErrorContext",
    # Base
    "EquiptrakError",
    # Request
    "NotFoundError",
    "ParseError",
    "ValidationError",
    "ConflictError",
    # Schema / config
    "AmbiguousSchemaError",
    "ConfigError",
    # Infrastructure
    "BackendUnavailableError",
    "TransactionAbortedError",
    "InternalError",
    # Composite
    "CompositeWriteError",
    # Utilities
    "is_retryable",
    "categorize_error",
    "http_status_for",
    "error_payload",
]
