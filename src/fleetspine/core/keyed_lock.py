"""Per-key mutual exclusion.

Caches keyed by mission or robot (area resolution, last known position,
tracker runtime state, chaining evaluation) are read by the polling loops
and by interactive queries at the same time.  One lock per key keeps
unrelated robots from contending on a single global mutex; the registry
lock is held only long enough to look up or create the per-key lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLock:
    """Lazily created ``threading.Lock`` per key."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for *key* for the duration of the ``with`` block."""
        lock = self._lock_for(key)
        with lock:
            yield

    def discard(self, key: str) -> None:
        """Forget the lock for *key* (call once the key will not be used again)."""
        with self._registry_lock:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


class KeyedCache:
    """Dict-like cache whose entries are guarded by a :class:`KeyedLock`.

    Used for the tracker's area-to-node resolution and the dispatcher's
    last-known-position map.
    """

    def __init__(self) -> None:
        self._locks = KeyedLock()
        self._data: dict[str, object] = {}
        self._data_lock = threading.Lock()

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def get(self, key: str, default: object = None) -> object:
        with self._data_lock:
            return self._data.get(key, default)

    def set(self, key: str, value: object) -> None:
        with self._data_lock:
            self._data[key] = value

    def pop(self, key: str) -> None:
        with self._data_lock:
            self._data.pop(key, None)
        self._locks.discard(key)

    def __contains__(self, key: str) -> bool:
        with self._data_lock:
            return key in self._data


__all__ = ["KeyedLock", "KeyedCache"]
