"""
Shared pytest fixtures for equiptrak tests.

This module provides:
- SQLite file databases in ``tmp_path`` with the full schema
- An in-memory PostgREST double and a RestDriver bound to it
- A ``driver`` fixture parametrized over both backends
- A QueryAdapter with a fixed "today" for the certificate policy
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

import pytest

from equiptrak.core.adapters import SQLiteAdapter
from equiptrak.core.settings import EquiptrakSettings
from equiptrak.records.status import CertificateStatusPolicy
from equiptrak.storage.adapter import QueryAdapter
from equiptrak.storage.drivers import RestDriver, SqlDriver, StorageDriver
from equiptrak.storage.schema import create_tables
from tests._support.postgrest import FakePostgREST

TODAY = date(2025, 6, 1)


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "equiptrak.db")


@pytest.fixture
def sqlite_adapter(db_path) -> Iterator[SQLiteAdapter]:
    adapter = SQLiteAdapter(db_path)
    create_tables(adapter)
    yield adapter
    adapter.disconnect()


@pytest.fixture
def sql_driver(sqlite_adapter) -> SqlDriver:
    return SqlDriver(sqlite_adapter)


@pytest.fixture
def postgrest() -> FakePostgREST:
    return FakePostgREST(api_key="anon-key")


@pytest.fixture
def rest_driver(postgrest) -> Iterator[RestDriver]:
    driver = RestDriver(postgrest.base_url, "anon-key", transport=postgrest.transport())
    yield driver
    driver.close()


@pytest.fixture(params=["sql", "rest"])
def driver(request) -> StorageDriver:
    """Each test using this runs once per backend."""
    return request.getfixturevalue(f"{request.param}_driver")


@pytest.fixture
def policy() -> CertificateStatusPolicy:
    return CertificateStatusPolicy(today=TODAY)


@pytest.fixture
def query_adapter(driver, policy) -> QueryAdapter:
    return QueryAdapter(driver, policy=policy)


@pytest.fixture
def company(query_adapter) -> dict:
    return query_adapter.insert("companies", {"company_name": "Acme Hoists Ltd"})


@pytest.fixture
def settings(db_path) -> EquiptrakSettings:
    return EquiptrakSettings(
        _env_file=None,
        database_url=f"sqlite:///{db_path}",
        transaction_timeout_seconds=None,
    )
