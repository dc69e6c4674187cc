"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~fleetspine.core.protocols.Connection` protocol.

Each adapter owns one cursor and serializes statements with a lock, so a
single adapter can be shared by the scheduler thread and the dispatcher
thread.  Separate process instances open separate adapters on the same
database file; the schedule lease is what keeps them apart.

Usage::

    conn = SqliteConnection(":memory:")
    create_core_tables(conn)
    cursor = conn.execute("SELECT COUNT(*) FROM amr_mission_queue")
    count = cursor.fetchone()[0]
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Rows come back as :class:`sqlite3.Row`, so repositories can use
    ``dict(row)`` as well as positional access.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
        self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()
        self._lock = threading.RLock()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple | list = ()) -> Any:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute(sql, tuple(params))
            self._cursor = cursor
            return cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.executemany(sql, params)
            self._cursor = cursor
            return cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    def executescript(self, script: str) -> None:
        with self._lock:
            self._conn.executescript(script)

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"
