"""Tests for ``equiptrak.records.certificates``."""

from __future__ import annotations

import pytest

from equiptrak.core.errors import NotFoundError, ValidationError
from equiptrak.records.certificates import (
    compressor_records,
    lift_service_records,
    service_records,
    spot_welder_records,
)
from equiptrak.storage.adapter import QueryAdapter
from equiptrak.storage.descriptor import QueryDescriptor
from equiptrak.storage.drivers import SqlDriver
from equiptrak.storage.sequence import SequenceGenerator


@pytest.fixture
def sequences(query_adapter) -> SequenceGenerator:
    return SequenceGenerator(query_adapter)


@pytest.fixture
def certificates(query_adapter, sequences):
    return service_records(query_adapter, sequences)


def _fields(company, **extra):
    fields = {"company_id": company["id"], "service_date": "2025-03-01", "engineer_name": "J. Patel"}
    fields.update(extra)
    return fields


class TestCreate:
    def test_numbers_are_issued(self, certificates, company):
        first = certificates.create(_fields(company))
        second = certificates.create(_fields(company))
        assert first["certificate_number"] == "BWS-1000"
        assert second["certificate_number"] == "BWS-1001"
        assert first["status"] == "valid"
        assert first["retest_date"] == "2026-02-28"

    def test_caller_number_ignored(self, certificates, company):
        record = certificates.create(_fields(company, certificate_number="BWS-9999"))
        assert record["certificate_number"] == "BWS-1000"

    def test_missing_required(self, certificates, company):
        with pytest.raises(ValidationError) as info:
            certificates.create({"company_id": company["id"]})
        assert info.value.field == "engineer_name"

    def test_compressors_use_own_prefix(self, query_adapter, sequences, company):
        compressors = compressor_records(query_adapter, sequences)
        record = compressors.create(_fields(company))
        assert record["certificate_number"] == "CMP-1000"
        assert compressors.get(record["id"])["id"] == record["id"]

    def test_compressors_without_table(self, driver, postgrest, policy, company):
        for table in ("compressor_records", "compressors_records"):
            if isinstance(driver, SqlDriver):
                driver.adapter.execute(f"DROP TABLE {table}")
            else:
                postgrest.drop_table(table)
        adapter = QueryAdapter(driver, policy=policy)
        compressors = compressor_records(adapter, SequenceGenerator(adapter))
        with pytest.raises(NotFoundError):
            compressors.create(_fields(company))
        assert compressors.list_for_company(company["id"]) == []

    def test_lift_services_use_own_prefix(self, query_adapter, sequences, company):
        lifts = lift_service_records(query_adapter, sequences)
        record = lifts.create(_fields(company, swl="500kg", hydraulic_system_test=True))
        assert record["certificate_number"] == "LFT-1000"
        assert record["swl"] == "500kg"
        assert record["retest_date"] == "2026-02-28"
        assert record["status"] == "valid"

    def test_spot_welders_write_preferred_table(self, query_adapter, sequences, company):
        welders = spot_welder_records(query_adapter, sequences)
        record = welders.create(_fields(company, model="PW-300", machine1="Tip dresser"))
        assert record["certificate_number"] == "SW-1000"
        stored = query_adapter.query(
            QueryDescriptor("spot_welder_records", filters={"id": record["id"]}, single=True)
        )
        assert stored["model"] == "PW-300"
        assert stored["machine1"] == "Tip dresser"
        assert welders.list_for_company(company["id"])[0]["status"] == "valid"

    def test_spot_welders_on_older_table(self, driver, postgrest, policy, company):
        if isinstance(driver, SqlDriver):
            driver.adapter.execute("DROP TABLE spot_welder_records")
        else:
            postgrest.drop_table("spot_welder_records")
        adapter = QueryAdapter(driver, policy=policy)
        record = spot_welder_records(adapter, SequenceGenerator(adapter)).create(_fields(company))
        with driver.session() as session:
            rows = session.select(QueryDescriptor("spot_welders", filters={"id": record["id"]}))
        assert [r["certificate_number"] for r in rows] == ["SW-1000"]


class TestReadUpdateDelete:
    @pytest.fixture
    def record(self, certificates, company):
        return certificates.create(_fields(company))

    def test_get(self, certificates, record):
        assert certificates.get(record["id"])["certificate_number"] == "BWS-1000"

    def test_get_missing(self, certificates):
        with pytest.raises(NotFoundError):
            certificates.get("missing")

    def test_update(self, certificates, record):
        updated = certificates.update(record["id"], {"service_date": "2024-06-10", "notes": "re-inspected"})
        assert updated["retest_date"] == "2025-06-09"
        assert updated["status"] == "upcoming"
        assert updated["certificate_number"] == "BWS-1000"

    def test_number_is_immutable(self, certificates, record):
        with pytest.raises(ValidationError, match="cannot be changed"):
            certificates.update(record["id"], {"certificate_number": "BWS-1"})

    def test_update_missing(self, certificates):
        with pytest.raises(NotFoundError):
            certificates.update("missing", {"notes": "x"})

    def test_delete_is_idempotent(self, certificates, record):
        assert certificates.delete(record["id"])["id"] == record["id"]
        assert certificates.delete(record["id"]) is None

    def test_list_for_company(self, certificates, company, record):
        older = certificates.create(_fields(company, service_date="2024-01-01"))
        newer = certificates.create(_fields(company, service_date="2025-05-01"))
        listed = certificates.list_for_company(company["id"])
        assert [r["id"] for r in listed] == [newer["id"], record["id"], older["id"]]
        assert listed[2]["status"] == "expired"
        assert certificates.list_for_company("other") == []
