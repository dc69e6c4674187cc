"""Area-to-node resolution.

A step position may name an area (zone) instead of a physical node.  The
area resolves to its lowest-sort member node; anything that is not a
known area with members is treated as a literal node code.  Results are
cached per mission so a mission keeps walking to the same node even if
the area's membership changes mid-mission.
"""

from __future__ import annotations

import json
import logging

from fleetspine.core.dialect import Dialect, SQLiteDialect
from fleetspine.core.keyed_lock import KeyedCache
from fleetspine.core.protocols import Connection
from fleetspine.core.schema import CORE_TABLES

logger = logging.getLogger(__name__)


class AreaResolver:
    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self._cache = KeyedCache()

    def area_nodes(self, zone_code: str) -> list[str]:
        """Member node codes of *zone_code*, lowest sort first (empty if unknown)."""
        cursor = self.conn.execute(
            f"SELECT area_node_list FROM {CORE_TABLES['areas']} WHERE zone_code = {self.dialect.placeholder(0)}",
            (zone_code,),
        )
        row = cursor.fetchone()
        if row is None or not row[0]:
            return []
        try:
            items = json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Area {zone_code} has malformed node list")
            return []
        nodes = [
            (int(item.get("sort") or 0), str(item["cellCode"]))
            for item in items
            if isinstance(item, dict) and item.get("cellCode")
        ]
        return [code for _sort, code in sorted(nodes, key=lambda n: n[0])]

    def resolve(self, mission_code: str, position: str) -> str:
        """Node code for *position* within *mission_code*."""
        with self._cache.locks.hold(mission_code):
            resolved: dict[str, str] = self._cache.get(mission_code) or {}
            if position in resolved:
                return resolved[position]

            nodes = self.area_nodes(position)
            node = nodes[0] if nodes else position
            if nodes:
                logger.info(f"Area {position} resolved to node {node} (first of {len(nodes)} nodes)")
            self._cache.set(mission_code, {**resolved, position: node})
            return node

    def forget(self, mission_code: str) -> None:
        self._cache.pop(mission_code)


__all__ = ["AreaResolver"]
