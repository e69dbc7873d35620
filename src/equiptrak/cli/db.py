"""
CLI: ``equiptrak db`` - schema management commands.
"""

from __future__ import annotations

import typer

from equiptrak.cli.utils import console, err_console, output_dict, output_rows, storage_from_options

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Create every table plus the sequence counter table."""
    from equiptrak.storage.drivers import SqlDriver
    from equiptrak.storage.schema import create_tables

    with storage_from_options(database) as storage:
        if not isinstance(storage.driver, SqlDriver):
            err_console.print(
                "[bold red]Error[/bold red]: the REST backend's schema is managed by its provider; "
                "run [cyan]equiptrak db functions[/cyan] for the RPC functions it needs."
            )
            raise typer.Exit(code=1)
        tables = create_tables(storage.driver.adapter)
        storage.resolver.invalidate()
        output_dict(
            {"dialect": storage.driver.adapter.dialect.name, "tables": ", ".join(tables)},
            as_json=json_out,
            title="Schema created",
        )


@app.command("exec")
def exec_sql(
    text: str = typer.Argument(..., help="SQL with $1-style placeholders"),
    param: list[str] = typer.Option([], "--param", "-p", help="Positional parameter (repeatable)"),
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Run SQL as written on the relational backend (DDL, repairs).

    Unlike [cyan]equiptrak sql[/cyan], nothing here is checked against the
    allow-lists or the certificate policy.
    """
    with storage_from_options(database) as storage:
        if not storage.driver.supports_raw_sql:
            err_console.print("[bold red]Error[/bold red]: the REST backend does not execute SQL.")
            raise typer.Exit(code=1)
        with storage.driver.session() as session:
            rows = session.raw(text, list(param))
        storage.resolver.invalidate()
        output_rows(rows, as_json=json_out, title="Result")


@app.command()
def functions() -> None:
    """Print the SQL functions a PostgREST deployment must expose."""
    from equiptrak.storage.schema import POSTGREST_FUNCTIONS

    console.print(POSTGREST_FUNCTIONS.strip(), markup=False, highlight=False)
