"""
CLI: ``fleetspine db`` - database management commands.
"""

from __future__ import annotations

import typer
from rich.table import Table

from fleetspine.cli.utils import console, get_connection
from fleetspine.core.schema import CORE_TABLES
from fleetspine.core.settings import FleetSettings

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    db: str | None = typer.Option(None, "--db", "-d", help="SQLite database path"),
) -> None:
    """Create every fleet table (safe to run repeatedly)."""
    settings = FleetSettings()
    path = db or settings.database_path
    conn = get_connection(path, settings)
    conn.close()
    console.print(f"[bold green]Initialised[/bold green] {path} ({len(CORE_TABLES)} tables)")


@app.command()
def tables(
    db: str | None = typer.Option(None, "--db", "-d", help="SQLite database path"),
) -> None:
    """Show row counts for the fleet tables."""
    conn = get_connection(db, FleetSettings())
    table = Table(title="Fleet Tables")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    for name in CORE_TABLES.values():
        row = conn.execute(f"SELECT COUNT(*) FROM {name}").fetchone()
        table.add_row(name, str(row[0]))
    conn.close()
    console.print(table)
