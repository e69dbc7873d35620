"""
CertificateStatusPolicy: retest dates and lifecycle status.

The retest date is never taken from the caller. It is always
``service_date + 364 days``; status follows from it relative to today::

    retest_date <= today                      -> expired
    today < retest_date <= today + 30 days    -> upcoming
    otherwise                                 -> valid

Everything here is a pure function of its arguments; ``today`` is injected
by tests and defaults to the local calendar date.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from equiptrak.core.enums import CertificateStatus
from equiptrak.core.errors import ValidationError

RETEST_INTERVAL = timedelta(days=364)
UPCOMING_WINDOW = timedelta(days=30)


@dataclass(frozen=True)
class StatusResult:
    retest_date: date
    status: CertificateStatus


def coerce_date(value: Any, *, field: str = "service_date") -> date:
    """Accept a ``date``, a ``datetime`` or an ISO-8601 string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
    raise ValidationError(
        f"{field} is not a valid date: {value!r}",
        field=field,
        value=value,
        constraint="YYYY-MM-DD",
    )


def derive_status(
    service_date: Any,
    retest_date_override: Any = None,  # noqa: ARG001
    *,
    today: date | None = None,
) -> StatusResult:
    """
    Retest date and status for a certificate serviced on *service_date*.

    ``retest_date_override`` is accepted so call sites can pass through
    whatever the client sent; it never affects the result.
    """
    serviced = coerce_date(service_date)
    today = today or date.today()
    retest = serviced + RETEST_INTERVAL
    if retest <= today:
        status = CertificateStatus.EXPIRED
    elif retest <= today + UPCOMING_WINDOW:
        status = CertificateStatus.UPCOMING
    else:
        status = CertificateStatus.VALID
    return StatusResult(retest_date=retest, status=status)


def apply_to_fields(fields: Mapping[str, Any], *, today: date | None = None) -> dict[str, Any]:
    """Write-side: overwrite ``retest_date`` and ``status`` from ``service_date``."""
    result = dict(fields)
    if result.get("service_date") is None:
        result.pop("retest_date", None)
        result.pop("status", None)
        return result
    derived = derive_status(result["service_date"], result.get("retest_date"), today=today)
    result["retest_date"] = derived.retest_date
    result["status"] = derived.status.value
    return result


def apply_to_row(row: Mapping[str, Any], today: date | None = None) -> dict[str, Any]:
    """Read-side: a copy of *row* with the policy applied.

    Rows without a ``service_date`` (partial selects) are returned unchanged.
    """
    result = dict(row)
    if result.get("service_date") is None:
        return result
    derived = derive_status(result["service_date"], today=today)
    result["retest_date"] = derived.retest_date.isoformat()
    result["status"] = derived.status.value
    return result


class CertificateStatusPolicy:
    """The policy as an injectable object, with a fixed clock for tests."""

    retest_interval = RETEST_INTERVAL
    upcoming_window = UPCOMING_WINDOW

    def __init__(self, today: date | None = None):
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def derive(self, service_date: Any, retest_date_override: Any = None) -> StatusResult:
        return derive_status(service_date, retest_date_override, today=self.today)

    def on_write(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        return apply_to_fields(fields, today=self.today)

    def on_read(self, row: Mapping[str, Any]) -> dict[str, Any]:
        return apply_to_row(row, self.today)


__all__ = [
    "RETEST_INTERVAL",
    "UPCOMING_WINDOW",
    "StatusResult",
    "CertificateStatusPolicy",
    "coerce_date",
    "derive_status",
    "apply_to_fields",
    "apply_to_row",
]
