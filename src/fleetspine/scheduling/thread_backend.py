"""Threading-based loop backend.

Each background loop (schedule firing, dispatch cycle, position polling)
gets its own daemon thread.  A tick runs ``asyncio.run(callback())`` so the
callbacks stay async-compatible, and a failing tick is logged and the loop
carries on.

::

    start()  →  daemon thread:
                    while not stop_event.wait(interval):
                        tick_count += 1
                        asyncio.run(tick_callback())
    stop()   →  stop_event.set(); thread.join(timeout)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime

from fleetspine.core.timestamps import Clock, utc_now
from fleetspine.scheduling.protocol import BackendHealth, TickCallback

logger = logging.getLogger(__name__)


class ThreadSchedulerBackend:
    """Daemon-thread tick loop.

    Example:
        >>> backend = ThreadSchedulerBackend(thread_name="fleet-dispatcher")
        >>> backend.start(dispatcher.tick, interval_seconds=5.0)
        >>> backend.stop()
    """

    name = "thread"

    def __init__(
        self,
        *,
        thread_name: str = "fleet-scheduler",
        join_timeout: float = 5.0,
        clock: Clock = utc_now,
    ) -> None:
        self.thread_name = thread_name
        self.join_timeout = join_timeout
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0
        self._started = False
        self._lock = threading.Lock()

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        if self._started:
            logger.warning(f"{self.thread_name} already started")
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info(f"{self.thread_name} started (interval={interval_seconds}s)")
            while not self._stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = self._clock()

                try:
                    asyncio.run(tick_callback())
                except Exception as e:
                    logger.exception(f"{self.thread_name} tick failed: {e}")

            logger.info(f"{self.thread_name} stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name=self.thread_name)
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.join_timeout)
            if self._thread.is_alive():
                logger.warning(f"{self.thread_name} did not stop cleanly")

        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval, "thread": self.thread_name},
        )


__all__ = ["ThreadSchedulerBackend"]
