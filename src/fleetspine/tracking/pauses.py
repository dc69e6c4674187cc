"""Manual waypoint pause records.

A pause opens when a robot arrives at a MANUAL waypoint and closes when
operation feedback releases it.  The utilization aggregator reads these
back to separate paused time from working time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fleetspine.core.dialect import Dialect, SQLiteDialect
from fleetspine.core.protocols import Connection
from fleetspine.core.schema import CORE_TABLES
from fleetspine.core.timestamps import from_iso8601, to_iso8601

logger = logging.getLogger(__name__)

_TABLE = CORE_TABLES["manual_pauses"]


@dataclass(frozen=True)
class ManualPause:
    robot_id: str
    mission_code: str
    waypoint_code: str | None
    start: datetime
    end: datetime | None = None
    id: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> ManualPause:
        r = dict(row)
        return cls(
            id=r["id"],
            robot_id=r["robot_id"],
            mission_code=r["mission_code"],
            waypoint_code=r.get("waypoint_code"),
            start=from_iso8601(r["pause_start_utc"]),
            end=from_iso8601(r.get("pause_end_utc")),
        )


class ManualPauseRepository:
    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    def open_pause(self, robot_id: str, mission_code: str, waypoint_code: str | None, start: datetime) -> None:
        self.conn.execute(
            f"""
            INSERT INTO {_TABLE} (robot_id, mission_code, waypoint_code, pause_start_utc, created_utc)
            VALUES ({self._ph(5)})
            """,
            (robot_id, mission_code, waypoint_code, to_iso8601(start), to_iso8601(start)),
        )
        self.conn.commit()
        logger.debug(f"Opened manual pause for robot {robot_id} at {waypoint_code} ({mission_code})")

    def close_open(self, mission_code: str, end: datetime) -> int:
        """Close every open pause of *mission_code*; returns the number closed."""
        p = self.dialect.placeholder(0)
        cursor = self.conn.execute(
            f"""
            UPDATE {_TABLE} SET pause_end_utc = {p}
            WHERE mission_code = {p} AND pause_end_utc IS NULL
            """,
            (to_iso8601(end), mission_code),
        )
        self.conn.commit()
        return cursor.rowcount

    def list_overlapping(self, robot_id: str, start: datetime, end: datetime) -> list[ManualPause]:
        """Pauses of *robot_id* that intersect ``[start, end)``; open pauses included."""
        p = self.dialect.placeholder(0)
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {_TABLE}
            WHERE robot_id = {p}
              AND pause_start_utc < {p}
              AND (pause_end_utc IS NULL OR pause_end_utc > {p})
            ORDER BY pause_start_utc
            """,
            (robot_id, to_iso8601(end), to_iso8601(start)),
        )
        return [ManualPause.from_row(row) for row in cursor.fetchall()]


__all__ = ["ManualPause", "ManualPauseRepository"]
