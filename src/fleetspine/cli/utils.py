"""
CLI helpers - consoles and connection management.
"""

from __future__ import annotations

from rich.console import Console

from fleetspine.core.schema import create_core_tables
from fleetspine.core.settings import FleetSettings
from fleetspine.core.sqlite_conn import SqliteConnection

console = Console()
err_console = Console(stderr=True)


def get_connection(database: str | None, settings: FleetSettings) -> SqliteConnection:
    """Open the SQLite store, creating the schema if it is missing."""
    conn = SqliteConnection(database or settings.database_path)
    create_core_tables(conn)
    return conn
