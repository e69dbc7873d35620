"""
Root Typer application for the equiptrak CLI.

Every command opens storage from the environment (``EQUIPTRAK_*``), with
``--database`` overriding the relational URL for one invocation.
"""

from __future__ import annotations

import typer
from typer import Typer

from equiptrak import __version__
from equiptrak.cli.db import app as db_app
from equiptrak.cli.utils import console, output_dict, output_rows, storage_from_options
from equiptrak.core.logging import configure_logging

app = Typer(
    name="equiptrak",
    help="equiptrak: certificate and work-order persistence tools.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version / logging callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"equiptrak {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for storage events."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines."),
) -> None:
    """equiptrak CLI: schema, raw SQL, table resolution, numbering, certificates."""
    configure_logging(level=log_level, json_format=json_logs)


app.add_typer(db_app, name="db", help="Database operations.")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def sql(
    text: str = typer.Argument(..., help="SQL with $1-style placeholders"),
    param: list[str] = typer.Option([], "--param", "-p", help="Positional parameter (repeatable)"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Run parameterized SQL through the interpreter (single-table CRUD only)."""
    with storage_from_options(database) as storage:
        rows = storage.adapter.raw_query(text, param)
        output_rows(rows, as_json=json_out, title="Result")


@app.command()
def resolve(
    entity: str = typer.Argument(..., help="Logical entity, e.g. compressors"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show which physical table backs a logical entity."""
    with storage_from_options(database) as storage:
        resolved = storage.resolver.resolve(entity)
        output_dict(
            {"entity": resolved.logical_name, "table": resolved.physical_name or "(absent)"},
            as_json=json_out,
            title="Resolution",
        )


@app.command("next-number")
def next_number(
    namespace: str = typer.Argument(..., help="service_records, compressors or work_orders"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
) -> None:
    """Preview the next number for a namespace (nothing is reserved)."""
    with storage_from_options(database) as storage:
        console.print(storage.sequences.next(namespace))


@app.command()
def certificates(
    company_id: str = typer.Argument(..., help="Company id"),
    entity: str = typer.Option("service_records", "--entity", "-e", help="service_records, compressors, lift_services or spot_welders"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List a company's certificates with their derived status."""
    from equiptrak.records.certificates import CertificateService

    with storage_from_options(database) as storage:
        service = CertificateService(storage.adapter, storage.sequences, entity)
        rows = [
            {
                "certificate_number": row.get("certificate_number"),
                "service_date": row.get("service_date"),
                "retest_date": row.get("retest_date"),
                "status": row.get("status"),
                "engineer_name": row.get("engineer_name"),
            }
            for row in service.list_for_company(company_id)
        ]
        output_rows(rows, as_json=json_out, title=f"Certificates ({entity})")
