"""Last-known robot positions for realtime broadcast.

Only a changed node code is reported, so listeners see one event per move
rather than one per poll.  Entries are guarded per robot.
"""

from __future__ import annotations

from collections.abc import Callable

from fleetspine.core.keyed_lock import KeyedCache

PositionListener = Callable[[str, str], None]


class PositionCache:
    def __init__(self) -> None:
        self._cache = KeyedCache()

    def get(self, robot_id: str) -> str | None:
        return self._cache.get(robot_id)

    def update(self, robot_id: str, node_code: str) -> bool:
        """Record *node_code* for *robot_id*; True when it differs from the last one."""
        with self._cache.locks.hold(robot_id):
            if self._cache.get(robot_id) == node_code:
                return False
            self._cache.set(robot_id, node_code)
            return True

    def forget(self, robot_id: str) -> None:
        self._cache.pop(robot_id)


__all__ = ["PositionCache", "PositionListener"]
