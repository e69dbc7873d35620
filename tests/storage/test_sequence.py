"""Tests for ``equiptrak.storage.sequence`` - read-last, locked and atomic numbering."""

from __future__ import annotations

import threading

import pytest

from equiptrak.core.enums import SequenceMode
from equiptrak.core.errors import ConflictError, InternalError, ValidationError
from equiptrak.core.settings import EquiptrakSettings
from equiptrak.storage.adapter import QueryAdapter
from equiptrak.storage.descriptor import QueryDescriptor
from equiptrak.storage.sequence import SequenceGenerator, SequenceNamespace, default_namespaces


def _record(company, number=None):
    fields = {"company_id": company["id"], "service_date": "2025-03-01", "engineer_name": "J. Patel"}
    if number is not None:
        fields["certificate_number"] = number
    return fields


def _issue(adapter, generator, company, namespace="service_records"):
    with adapter.transaction(exclusive=generator.requires_exclusive) as tx:
        with generator.claim(namespace, tx) as number:
            tx.insert(namespace, _record(company, number))
    return number


def _run_threads(count, target):
    errors = []
    threads = []

    def _wrapped():
        try:
            target()
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    for _ in range(count):
        threads.append(threading.Thread(target=_wrapped))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return errors


class TestSequenceNamespace:
    def test_format_and_parse(self):
        ns = SequenceNamespace("service_records", "service_records", "certificate_number", "BWS-")
        assert ns.format(1042) == "BWS-1042"
        assert ns.parse("BWS-1042") == 1042
        assert ns.parse("BWS-10a") is None
        assert ns.parse("XBWS-1") is None
        assert ns.parse(None) is None

    def test_prefix_is_literal(self):
        ns = SequenceNamespace("x", "work_orders", "work_order_number", "W.O+")
        assert ns.parse("W.O+7") == 7
        assert ns.parse("WXO+7") is None

    def test_default_namespaces_follow_settings(self):
        settings = EquiptrakSettings(_env_file=None, certificate_prefix="CERT-", work_order_floor=50)
        namespaces = default_namespaces(settings)
        assert namespaces["service_records"].prefix == "CERT-"
        assert namespaces["compressors"].prefix == "CMP-"
        assert namespaces["lift_services"].prefix == "LFT-"
        assert namespaces["spot_welders"].prefix == "SW-"
        assert namespaces["work_orders"].floor == 50


class TestReadLast:
    def test_empty_table_uses_floor(self, query_adapter):
        assert SequenceGenerator(query_adapter).next("service_records") == "BWS-1000"

    def test_increments_last(self, query_adapter, company):
        query_adapter.insert("service_records", _record(company, "BWS-1041"))
        assert SequenceGenerator(query_adapter).next("service_records") == "BWS-1042"

    def test_most_recent_row_wins(self, query_adapter, company):
        query_adapter.insert("service_records", _record(company, "BWS-1500"))
        query_adapter.insert("service_records", _record(company, "BWS-1200"))
        assert SequenceGenerator(query_adapter).next("service_records") == "BWS-1201"

    def test_unparseable_last_falls_back_to_floor(self, query_adapter, company):
        query_adapter.insert("service_records", _record(company, "LEGACY-7"))
        assert SequenceGenerator(query_adapter).next("service_records") == "BWS-1000"

    def test_floor_applies(self, query_adapter, company):
        query_adapter.insert("service_records", _record(company, "BWS-5"))
        assert SequenceGenerator(query_adapter).next("service_records") == "BWS-1000"

    def test_prefix_override(self, query_adapter, company):
        query_adapter.insert("service_records", _record(company, "TST-1003"))
        assert SequenceGenerator(query_adapter).next("service_records", prefix="TST-") == "TST-1004"

    def test_work_orders_namespace(self, query_adapter):
        assert SequenceGenerator(query_adapter).next("work_orders") == "WO-1000"

    def test_unknown_namespace(self, query_adapter):
        with pytest.raises(ValidationError, match="Unknown sequence namespace"):
            SequenceGenerator(query_adapter).next("invoices")

    def test_next_reserves_nothing(self, query_adapter):
        generator = SequenceGenerator(query_adapter, SequenceMode.READ_LAST)
        assert generator.next("service_records") == generator.next("service_records")

    def test_claims_outside_a_transaction(self, query_adapter, company):
        generator = SequenceGenerator(query_adapter, SequenceMode.READ_LAST)
        with generator.claim("service_records", query_adapter) as number:
            query_adapter.insert("service_records", _record(company, number))
        assert number == "BWS-1000"

    def test_concurrent_claims_collide(self, postgrest, rest_driver, policy):
        adapter = QueryAdapter(rest_driver, policy=policy)
        company = adapter.insert("companies", {"company_name": "Acme"})
        adapter.resolve_table("service_records")
        generator = SequenceGenerator(adapter, SequenceMode.READ_LAST)

        barrier = threading.Barrier(2, timeout=10)

        def _hold(table):
            if table == "service_records":
                barrier.wait()

        postgrest.select_hook = _hold
        errors = _run_threads(2, lambda: _issue(adapter, generator, company))
        postgrest.select_hook = None

        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        assert [r["certificate_number"] for r in postgrest.table("service_records")] == ["BWS-1000"]


class TestLocked:
    def test_claim_needs_transaction(self, query_adapter):
        generator = SequenceGenerator(query_adapter, SequenceMode.LOCKED)
        with pytest.raises(InternalError, match="inside the caller's transaction"):
            with generator.claim("service_records", query_adapter):
                pass

    def test_claim_needs_exclusive_transaction(self, query_adapter):
        generator = SequenceGenerator(query_adapter, SequenceMode.LOCKED)
        with query_adapter.transaction() as tx:
            with pytest.raises(InternalError, match="exclusive=True"):
                with generator.claim("service_records", tx):
                    pass

    def test_sequential(self, query_adapter, company):
        generator = SequenceGenerator(query_adapter, SequenceMode.LOCKED)
        assert generator.requires_exclusive
        numbers = [_issue(query_adapter, generator, company) for _ in range(3)]
        assert numbers == ["BWS-1000", "BWS-1001", "BWS-1002"]

    def test_rolled_back_number_is_reissued(self, query_adapter, company):
        generator = SequenceGenerator(query_adapter, SequenceMode.LOCKED)
        with pytest.raises(RuntimeError):
            with query_adapter.transaction(exclusive=True) as tx:
                with generator.claim("service_records", tx) as number:
                    tx.insert("service_records", _record(company, number))
                raise RuntimeError("boom")
        assert _issue(query_adapter, generator, company) == "BWS-1000"

    def test_concurrent_claims_are_unique(self, query_adapter, company):
        generator = SequenceGenerator(query_adapter, SequenceMode.LOCKED)

        def _worker():
            for _ in range(5):
                _issue(query_adapter, generator, company)

        errors = _run_threads(4, _worker)
        assert errors == []
        rows = query_adapter.query(QueryDescriptor("service_records"))
        numbers = sorted(r["certificate_number"] for r in rows)
        assert numbers == [f"BWS-{n}" for n in range(1000, 1020)]


class TestAtomic:
    def test_seeded_from_read_last(self, query_adapter, company):
        query_adapter.insert("service_records", _record(company, "BWS-1041"))
        generator = SequenceGenerator(query_adapter, SequenceMode.ATOMIC)
        assert not generator.requires_exclusive
        assert _issue(query_adapter, generator, company) == "BWS-1042"
        assert _issue(query_adapter, generator, company) == "BWS-1043"

    def test_claim_needs_transaction(self, query_adapter):
        generator = SequenceGenerator(query_adapter, SequenceMode.ATOMIC)
        with pytest.raises(InternalError):
            with generator.claim("work_orders", query_adapter):
                pass

    def test_counter_per_prefix(self, query_adapter):
        generator = SequenceGenerator(query_adapter, SequenceMode.ATOMIC)
        with query_adapter.transaction() as tx:
            with generator.claim("work_orders", tx) as first:
                pass
            with generator.claim("work_orders", tx, prefix="JOB-") as other:
                pass
        assert (first, other) == ("WO-1000", "JOB-1000")

    def test_concurrent_claims_on_rest(self, rest_driver, policy):
        adapter = QueryAdapter(rest_driver, policy=policy)
        company = adapter.insert("companies", {"company_name": "Acme"})
        generator = SequenceGenerator(adapter, SequenceMode.ATOMIC)

        def _worker():
            for _ in range(5):
                _issue(adapter, generator, company)

        assert _run_threads(4, _worker) == []
        rows = adapter.query(QueryDescriptor("service_records"))
        assert len({r["certificate_number"] for r in rows}) == 20
