"""
Canonical protocol definitions for fleetspine.

Every repository talks to storage through :class:`Connection`, so the same
queue, schedule and analytics code runs on SQLite in tests and on a
server database in deployment.

Architecture:
    ::

        Connection Protocol:
        ┌────────────────────────────────────────────────────────┐
        │ execute(sql, params)   → Execute single statement      │
        │ executemany(sql, list) → Execute for multiple params   │
        │ fetchone()             → Get one result row            │
        │ fetchall()             → Get all result rows           │
        │ commit()               → Commit transaction            │
        │ rollback()             → Rollback transaction          │
        └────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Add async methods to the Connection protocol
    ✅ DO: Keep repository code sync; network I/O is the async seam

Tags:
    protocol, connection, database, fleetspine, contracts
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal SYNCHRONOUS connection interface for database operations.

    ``execute`` returns a cursor-like object exposing ``rowcount``,
    ``fetchone()`` and ``fetchall()``; repositories rely on ``rowcount``
    for every conditional write (reservations, leases, optimistic updates).
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters. SYNC."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets. SYNC."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query. SYNC."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query. SYNC."""
        ...

    def commit(self) -> None:
        """Commit current transaction. SYNC."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction. SYNC."""
        ...


__all__ = ["Connection"]
