"""
CLI utility helpers: storage wiring and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from equiptrak.core.errors import EquiptrakError, error_payload
from equiptrak.core.settings import EquiptrakSettings, get_settings
from equiptrak.storage.factory import Storage, open_storage

console = Console()
err_console = Console(stderr=True)


# ── Storage helper ───────────────────────────────────────────────────────


def load_settings(database: str | None = None) -> EquiptrakSettings:
    """Process settings, with ``--database`` taking precedence over the environment."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


@contextmanager
def storage_from_options(database: str | None = None) -> Iterator[Storage]:
    """Open storage for one command and report EquiptrakErrors as exit code 1."""
    try:
        with open_storage(load_settings(database)) as storage:
            yield storage
    except EquiptrakError as e:
        fail(e)


def fail(error: EquiptrakError) -> None:
    payload = error_payload(error)
    err_console.print(f"[bold red]Error[/bold red] ({payload['error']}): {payload['message']}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def output_rows(rows: list[dict[str, Any]], *, as_json: bool = False, title: str = "") -> None:
    """Render rows as JSON or as a Rich table."""
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No rows.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    columns = list(rows[0])
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for key, value in data.items():
        console.print(f"  [cyan]{key}[/cyan]: {value}")


__all__ = [
    "console",
    "err_console",
    "load_settings",
    "storage_from_options",
    "fail",
    "output_rows",
    "output_dict",
]
