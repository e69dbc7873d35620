"""Tests for ``equiptrak.storage.resolver`` - logical entity to physical table."""

from __future__ import annotations

import threading
from collections.abc import Sequence

import pytest

from equiptrak.core.errors import (
    AmbiguousSchemaError,
    BackendUnavailableError,
    ConfigError,
    NotFoundError,
)
from equiptrak.storage.entities import EntityRegistry, LogicalEntity, default_registry
from equiptrak.storage.resolver import ResolvedTable, TableResolver
from equiptrak.storage.schema import create_tables


class CatalogStub:
    """Driver stand-in that only answers catalog lookups."""

    def __init__(self, tables: Sequence[str] = (), *, fail: int = 0):
        self.tables = set(tables)
        self.fail = fail
        self.calls = 0

    def existing_tables(self, candidates):
        self.calls += 1
        if self.fail:
            self.fail -= 1
            raise BackendUnavailableError("catalog offline")
        return {name for name in candidates if name in self.tables}


class TestResolvedTable:
    def test_absent(self):
        resolved = ResolvedTable("compressors", None)
        assert resolved.absent
        with pytest.raises(NotFoundError, match="No table backs entity 'compressors'"):
            resolved.require()

    def test_present(self):
        assert ResolvedTable("companies", "companies").require() == "companies"


class TestEntityRegistry:
    def test_default_entities(self):
        registry = default_registry()
        assert "compressors" in registry
        assert registry.get("compressors").preferred == "compressors_records"
        assert registry.is_certificate_table("compressor_records")
        assert registry.is_certificate_table("service_records")
        assert registry.is_certificate_table("lift_service_records")
        assert registry.is_certificate_table("spot_welders")
        assert not registry.is_certificate_table("work_orders")

    def test_spot_welders_prefer_current_table(self):
        entity = default_registry().get("spot_welders")
        assert entity.candidates == ("spot_welders", "spot_welder_records")
        assert entity.preferred == "spot_welder_records"

    def test_preferred_must_be_candidate(self):
        with pytest.raises(ConfigError, match="not a candidate"):
            LogicalEntity("compressors", ("compressor_records",), preferred="compressors_records")

    def test_candidate_needs_allow_list(self):
        with pytest.raises(ConfigError, match="no column allow-list"):
            EntityRegistry([LogicalEntity("gadgets", ("gadgets",))])


class TestTableResolver:
    def test_single_match(self):
        resolver = TableResolver(CatalogStub(["compressor_records"]))
        assert resolver.resolve("compressors").physical_name == "compressor_records"

    def test_preferred_wins(self):
        resolver = TableResolver(CatalogStub(["compressor_records", "compressors_records"]))
        assert resolver.resolve("compressors").physical_name == "compressors_records"

    def test_no_match_is_absent(self):
        resolved = TableResolver(CatalogStub()).resolve("compressors")
        assert resolved.absent

    def test_ambiguous_without_preference(self):
        resolver = TableResolver(CatalogStub(["compressor_records", "compressors_records"]))
        with pytest.raises(AmbiguousSchemaError) as info:
            resolver.resolve("legacy", candidates=["compressor_records", "compressors_records"])
        assert info.value.matches == ["compressor_records", "compressors_records"]

    def test_override_keeps_registered_preference(self):
        resolver = TableResolver(CatalogStub(["compressor_records", "compressors_records"]))
        resolved = resolver.resolve("compressors", candidates=["compressors_records", "compressor_records"])
        assert resolved.physical_name == "compressors_records"

    def test_unknown_entity(self):
        with pytest.raises(NotFoundError, match="Unknown entity 'gadgets'"):
            TableResolver(CatalogStub()).resolve("gadgets")

    def test_cached_per_entity(self):
        stub = CatalogStub(["companies"])
        resolver = TableResolver(stub)
        for _ in range(3):
            resolver.resolve("companies")
        assert stub.calls == 1

    def test_absent_is_cached_until_invalidated(self):
        stub = CatalogStub()
        resolver = TableResolver(stub)
        assert resolver.resolve("compressors").absent
        stub.tables.add("compressors_records")
        assert resolver.resolve("compressors").absent
        resolver.invalidate("compressors")
        assert resolver.resolve("compressors").physical_name == "compressors_records"

    def test_invalidate_all(self):
        stub = CatalogStub(["companies", "contacts"])
        resolver = TableResolver(stub)
        resolver.resolve("companies")
        resolver.resolve("contacts")
        resolver.invalidate()
        resolver.resolve("companies")
        assert stub.calls == 3

    def test_catalog_failure_not_cached(self):
        stub = CatalogStub(["companies"], fail=1)
        resolver = TableResolver(stub)
        assert resolver.resolve("companies").absent
        assert resolver.resolve("companies").physical_name == "companies"
        assert stub.calls == 2

    def test_concurrent_resolution_asks_catalog_once(self):
        stub = CatalogStub(["work_orders"])
        resolver = TableResolver(stub)
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(resolver.resolve("work_orders")))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert stub.calls == 1
        assert {r.physical_name for r in results} == {"work_orders"}


class TestResolverAgainstDrivers:
    def test_both_compressor_tables(self, driver):
        assert TableResolver(driver).resolve("compressors").physical_name == "compressors_records"

    def test_legacy_table_only(self, sqlite_adapter, sql_driver):
        sqlite_adapter.execute("DROP TABLE compressors_records")
        assert TableResolver(sql_driver).resolve("compressors").physical_name == "compressor_records"

    def test_both_spot_welder_tables(self, driver):
        assert TableResolver(driver).resolve("spot_welders").physical_name == "spot_welder_records"

    def test_older_spot_welder_table_only(self, postgrest, rest_driver):
        postgrest.drop_table("spot_welder_records")
        assert TableResolver(rest_driver).resolve("spot_welders").physical_name == "spot_welders"

    def test_rest_missing_tables(self, postgrest, rest_driver):
        postgrest.drop_table("compressor_records")
        postgrest.drop_table("compressors_records")
        assert TableResolver(rest_driver).resolve("compressors").absent

    def test_fresh_sqlite_has_nothing(self, tmp_path):
        from equiptrak.core.adapters import SQLiteAdapter
        from equiptrak.storage.drivers import SqlDriver

        adapter = SQLiteAdapter(str(tmp_path / "empty.db"))
        resolver = TableResolver(SqlDriver(adapter))
        assert resolver.resolve("work_orders").absent
        create_tables(adapter, ["work_orders"])
        resolver.invalidate()
        assert resolver.resolve("work_orders").physical_name == "work_orders"
