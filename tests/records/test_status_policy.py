"""Tests for ``equiptrak.records.status``."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from equiptrak.core.enums import CertificateStatus
from equiptrak.core.errors import ValidationError
from equiptrak.records.status import (
    CertificateStatusPolicy,
    apply_to_fields,
    apply_to_row,
    coerce_date,
    derive_status,
)

TODAY = date(2025, 6, 1)


class TestCoerceDate:
    @pytest.mark.parametrize(
        "value",
        [date(2025, 3, 1), datetime(2025, 3, 1, 14, 30), "2025-03-01", " 2025-03-01T09:00:00+00:00"],
    )
    def test_accepted(self, value):
        assert coerce_date(value) == date(2025, 3, 1)

    @pytest.mark.parametrize("value", ["01/03/2025", "", None, 20250301])
    def test_rejected(self, value):
        with pytest.raises(ValidationError) as info:
            coerce_date(value)
        assert info.value.field == "service_date"


class TestDeriveStatus:
    @pytest.mark.parametrize(
        ("service_date", "retest_date", "status"),
        [
            ("2024-06-02", date(2025, 6, 1), CertificateStatus.EXPIRED),
            ("2024-06-03", date(2025, 6, 2), CertificateStatus.UPCOMING),
            ("2024-07-02", date(2025, 7, 1), CertificateStatus.UPCOMING),
            ("2024-07-03", date(2025, 7, 2), CertificateStatus.VALID),
            ("2023-01-01", date(2023, 12, 31), CertificateStatus.EXPIRED),
        ],
    )
    def test_boundaries(self, service_date, retest_date, status):
        result = derive_status(service_date, today=TODAY)
        assert result.retest_date == retest_date
        assert result.status == status

    def test_override_is_ignored(self):
        assert derive_status("2025-03-01", "2099-01-01", today=TODAY).retest_date == date(2026, 2, 28)


class TestApply:
    def test_fields_overwritten(self):
        fields = apply_to_fields(
            {"service_date": "2025-03-01", "retest_date": "2099-01-01", "status": "expired", "notes": "x"},
            today=TODAY,
        )
        assert fields == {
            "service_date": "2025-03-01",
            "retest_date": date(2026, 2, 28),
            "status": "valid",
            "notes": "x",
        }

    def test_fields_without_service_date_drop_derived(self):
        assert apply_to_fields({"notes": "x", "status": "valid", "retest_date": "2030-01-01"}) == {"notes": "x"}

    def test_row_is_copied(self):
        row = {"id": "r1", "service_date": "2024-06-02", "status": "valid"}
        result = apply_to_row(row, TODAY)
        assert result["status"] == "expired"
        assert result["retest_date"] == "2025-06-01"
        assert row["status"] == "valid"

    def test_partial_row_unchanged(self):
        assert apply_to_row({"status": "valid"}, TODAY) == {"status": "valid"}


class TestCertificateStatusPolicy:
    def test_fixed_clock(self):
        policy = CertificateStatusPolicy(today=TODAY)
        assert policy.today == TODAY
        assert policy.derive("2024-06-10").status == CertificateStatus.UPCOMING
        assert policy.on_read({"service_date": "2024-06-10"})["status"] == "upcoming"
        assert policy.on_write({"service_date": "2024-06-10"})["retest_date"] == date(2025, 6, 9)

    def test_defaults_to_today(self):
        assert CertificateStatusPolicy().today == date.today()
