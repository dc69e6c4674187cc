"""SQL dialect abstraction for storage-agnostic repositories.

Repositories use ``Dialect`` methods to generate placeholders, reservation
inserts and key columns without referencing a specific database driver.

Architecture::

    Repository code:
    ┌────────────────────────────────────────────────────────────────┐
    │  sql = d.insert_or_ignore("amr_mission_queue", columns)        │
    │  cursor = conn.execute(sql, values)                            │
    │  reserved = cursor.rowcount > 0                                │
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
            ┌──────────────────────┐   ┌───────────────────────────┐
            │ SQLite               │   │ PostgreSQL                │
            │ ?, ?, ?              │   │ %s, %s, %s                │
            │ INSERT OR IGNORE     │   │ ON CONFLICT DO NOTHING    │
            └──────────────────────┘   └───────────────────────────┘

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'

Tags:
    dialect, sql, abstraction, portability, database, fleetspine
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL fragment generator for one database backend."""

    @property
    def name(self) -> str:
        """Short backend identifier."""
        ...

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholders for *count* values."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently skips rows violating a unique constraint."""
        ...

    def auto_increment(self) -> str:
        """Column definition for an auto-increment integer primary key."""
        ...


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({ph})"

    def auto_increment(self) -> str:
        return "INTEGER PRIMARY KEY AUTOINCREMENT"


class PostgreSQLDialect:
    """PostgreSQL dialect: ``%s`` placeholders (psycopg)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT INTO {table} ({cols}) VALUES ({ph}) ON CONFLICT DO NOTHING"

    def auto_increment(self) -> str:
        return "SERIAL PRIMARY KEY"


__all__ = ["Dialect", "SQLiteDialect", "PostgreSQLDialect"]
