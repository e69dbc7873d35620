"""Tests for the ``equiptrak`` Typer CLI."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from equiptrak import __version__
from equiptrak.cli.app import app

runner = CliRunner()

INSERT_COMPANY = "INSERT INTO companies (id, company_name, created_at, updated_at) VALUES ($1, $2, $3, $3)"
INSERT_CERTIFICATE = (
    "INSERT INTO service_records (id, company_id, certificate_number, service_date, engineer_name, "
    "created_at, updated_at) VALUES ($1, $2, $3, $4, $5, $6, $6)"
)
STAMP = "2025-03-01T09:00:00+00:00"


@pytest.fixture
def db_url(tmp_path) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    result = runner.invoke(app, ["db", "init", "-d", url])
    assert result.exit_code == 0, result.output
    return url


def _invoke(*args: str):
    return runner.invoke(app, list(args))


class TestRoot:
    def test_version(self):
        result = _invoke("--version")
        assert result.exit_code == 0
        assert f"equiptrak {__version__}" in result.output

    def test_no_args_shows_help(self):
        result = _invoke()
        assert "Usage" in result.output


class TestDb:
    def test_init_json(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'fresh.db'}"
        result = _invoke("db", "init", "-d", url, "--json")
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["dialect"] == "sqlite"
        assert "work_order_items" in payload["tables"]
        assert (tmp_path / "fresh.db").exists()

    def test_init_is_repeatable(self, db_url):
        assert _invoke("db", "init", "-d", db_url).exit_code == 0

    def test_functions(self):
        result = _invoke("db", "functions")
        assert result.exit_code == 0
        assert "next_sequence_value" in result.output


class TestSql:
    def test_insert_then_select(self, db_url):
        inserted = _invoke("sql", INSERT_COMPANY, "-p", "c1", "-p", "Acme", "-p", STAMP, "-d", db_url)
        assert inserted.exit_code == 0, inserted.output

        result = _invoke("sql", "SELECT company_name FROM companies WHERE id = $1", "-p", "c1", "-d", db_url, "--json")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [{"company_name": "Acme"}]

    def test_empty_result(self, db_url):
        result = _invoke("sql", "SELECT * FROM companies", "-d", db_url)
        assert result.exit_code == 0
        assert "No rows" in result.output

    def test_storage_error_exits_nonzero(self, db_url):
        result = _invoke("sql", "SELECT * FROM invoices", "-d", db_url)
        assert result.exit_code == 1
        assert "ValidationError" in result.output

    def test_ddl_is_rejected(self, db_url):
        result = _invoke("sql", "DROP TABLE companies", "-d", db_url)
        assert result.exit_code == 1
        assert "ParseError" in result.output

    def test_certificate_policy_applies(self, db_url):
        _invoke("sql", INSERT_COMPANY, "-p", "c1", "-p", "Acme", "-p", STAMP, "-d", db_url)
        inserted = _invoke(
            "sql",
            "INSERT INTO service_records (id, company_id, service_date, engineer_name, retest_date, status) "
            "VALUES ($1, $2, $3, $4, $5, $6)",
            "-p", "r9", "-p", "c1", "-p", "2020-01-01", "-p", "J. Patel", "-p", "2099-12-31", "-p", "valid",
            "-d", db_url,
        )
        assert inserted.exit_code == 0, inserted.output
        stored = _invoke(
            "db", "exec", "SELECT retest_date, status FROM service_records WHERE id = $1", "-p", "r9",
            "-d", db_url, "--json",
        )
        assert json.loads(stored.stdout) == [{"retest_date": "2020-12-30", "status": "expired"}]


class TestDbExec:
    def test_runs_sql_as_written(self, db_url):
        result = _invoke("db", "exec", "SELECT COUNT(*) AS n FROM companies", "-d", db_url, "--json")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [{"n": 0}]

    def test_ddl(self, db_url):
        assert _invoke("db", "exec", "DROP TABLE contacts", "-d", db_url).exit_code == 0
        assert "No rows" in _invoke("sql", "SELECT * FROM contacts", "-d", db_url).output
        result = _invoke("sql", "INSERT INTO contacts (company_id) VALUES ($1)", "-p", "c1", "-d", db_url)
        assert result.exit_code == 1
        assert "NotFoundError" in result.output


class TestResolve:
    def test_prefers_plural_compressor_table(self, db_url):
        result = _invoke("resolve", "compressors", "-d", db_url, "--json")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"entity": "compressors", "table": "compressors_records"}

    def test_absent(self, db_url):
        _invoke("db", "exec", "DROP TABLE compressor_records", "-d", db_url)
        _invoke("db", "exec", "DROP TABLE compressors_records", "-d", db_url)
        result = _invoke("resolve", "compressors", "-d", db_url, "--json")
        assert json.loads(result.stdout)["table"] == "(absent)"


class TestNumbers:
    @pytest.fixture
    def seeded(self, db_url):
        _invoke("sql", INSERT_COMPANY, "-p", "c1", "-p", "Acme", "-p", STAMP, "-d", db_url)
        result = _invoke(
            "sql", INSERT_CERTIFICATE,
            "-p", "r1", "-p", "c1", "-p", "BWS-1041", "-p", "2025-03-01", "-p", "J. Patel", "-p", STAMP,
            "-d", db_url,
        )
        assert result.exit_code == 0, result.output
        return db_url

    def test_next_number(self, seeded):
        result = _invoke("next-number", "service_records", "-d", seeded)
        assert result.exit_code == 0, result.output
        assert "BWS-1042" in result.output

    def test_next_work_order_number(self, db_url):
        assert "WO-1000" in _invoke("next-number", "work_orders", "-d", db_url).output

    def test_unknown_namespace(self, db_url):
        result = _invoke("next-number", "invoices", "-d", db_url)
        assert result.exit_code == 1
        assert "ValidationError" in result.output

    def test_certificates_listing(self, seeded):
        result = _invoke("certificates", "c1", "-d", seeded, "--json")
        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert rows == [
            {
                "certificate_number": "BWS-1041",
                "service_date": "2025-03-01",
                "retest_date": "2026-02-28",
                "status": "expired",
                "engineer_name": "J. Patel",
            }
        ]

    def test_certificates_table(self, seeded):
        result = _invoke("certificates", "c1", "-d", seeded)
        assert result.exit_code == 0
        assert "BWS-1041" in result.output
