"""Schedule lease manager.

Manifesto:
    Multiple scheduler instances share one store and must never execute
    the same schedule simultaneously.  The lease is the schedule row's own
    ``lock_token`` column, claimed with a conditional write that only
    succeeds while the column is NULL: one statement, and ``rowcount``
    tells us whether we won.

    Lease Flow::

        Instance A: UPDATE ... SET lock_token=T1 WHERE id=S AND lock_token IS NULL  → 1 row
        Instance B: UPDATE ... SET lock_token=T2 WHERE id=S AND lock_token IS NULL  → 0 rows (skip)
        Instance A: UPDATE ... SET lock_token=NULL WHERE id=S AND lock_token=T1     (finally)

    A worker that crashes mid-run leaves its token behind; leases older than
    the configured TTL are reclaimed by :meth:`LockManager.reclaim_stale_leases`.

Tags:
    fleetspine, scheduling, lease, distributed-locks, TTL, concurrency
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any
from uuid import uuid4

from fleetspine.core.dialect import Dialect, SQLiteDialect
from fleetspine.core.errors import LockNotHeldError
from fleetspine.core.protocols import Connection
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.schema import CORE_TABLES
from fleetspine.core.timestamps import Clock, to_iso8601, utc_now

logger = logging.getLogger(__name__)


class LockManager:
    """Lease acquire/release on schedule rows.

    Example:
        >>> manager = LockManager(conn)
        >>> result = manager.acquire(schedule.id)
        >>> if result.is_ok():
        ...     token = result.unwrap()
        ...     try:
        ...         ...  # fire the schedule
        ...     finally:
        ...         manager.release(schedule.id, token)
    """

    table = CORE_TABLES["schedules"]

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self._clock = clock

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    def acquire(self, schedule_id: str) -> Result[str]:
        """Claim the lease.

        Returns:
            Ok(token) on success, Err(LockNotHeldError) if another worker holds it
        """
        token = uuid4().hex
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE {self.table}
            SET lock_token = {p}, lock_acquired_utc = {p}
            WHERE id = {p} AND lock_token IS NULL
            """,
            (token, to_iso8601(self._clock()), schedule_id),
        )
        self.conn.commit()

        if cursor.rowcount > 0:
            logger.debug(f"Acquired lease {token} on schedule {schedule_id}")
            return Ok(token)

        logger.debug(f"Lease already held for schedule {schedule_id}")
        return Err(LockNotHeldError(schedule_id))

    def release(self, schedule_id: str, token: str) -> bool:
        """Clear the lease if *token* still owns it.

        Returns:
            True if released, False if the token no longer owned the lease
        """
        try:
            p = self._p
            cursor = self.conn.execute(
                f"""
                UPDATE {self.table}
                SET lock_token = NULL, lock_acquired_utc = NULL
                WHERE id = {p} AND lock_token = {p}
                """,
                (schedule_id, token),
            )
            self.conn.commit()
        except Exception as e:
            logger.error(f"Lease release failed for schedule {schedule_id}: {e}")
            return False

        if cursor.rowcount > 0:
            logger.debug(f"Released lease {token} on schedule {schedule_id}")
            return True
        return False

    def holder(self, schedule_id: str) -> str | None:
        """Token currently holding the lease, if any."""
        cursor = self.conn.execute(
            f"SELECT lock_token FROM {self.table} WHERE id = {self._p}",
            (schedule_id,),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def is_locked(self, schedule_id: str) -> bool:
        return self.holder(schedule_id) is not None

    # === Maintenance ===

    def reclaim_stale_leases(self, ttl_seconds: int) -> int:
        """Clear leases held longer than *ttl_seconds* (crashed workers).

        Returns:
            Number of leases reclaimed
        """
        cutoff = self._clock() - timedelta(seconds=ttl_seconds)
        cursor = self.conn.execute(
            f"""
            UPDATE {self.table}
            SET lock_token = NULL, lock_acquired_utc = NULL
            WHERE lock_token IS NOT NULL AND lock_acquired_utc < {self._p}
            """,
            (to_iso8601(cutoff),),
        )
        self.conn.commit()

        count = cursor.rowcount
        if count > 0:
            logger.info(f"Reclaimed {count} stale schedule leases")
        return count

    def list_active_leases(self) -> list[dict[str, Any]]:
        cursor = self.conn.execute(
            f"""
            SELECT id, name, lock_token, lock_acquired_utc
            FROM {self.table}
            WHERE lock_token IS NOT NULL
            ORDER BY lock_acquired_utc
            """
        )
        return [
            {
                "schedule_id": row[0],
                "name": row[1],
                "lock_token": row[2],
                "acquired_utc": row[3],
            }
            for row in cursor.fetchall()
        ]


__all__ = ["LockManager"]
