"""Background loop backend protocol.

The engine runs as "beat-as-poller": a backend decides WHEN a tick
happens, the service decides WHAT happens on it.  The schedule engine and
the dispatcher both plug into the same backend contract.

::

    ┌──────────────────┐   tick()   ┌────────────────────┐
    │  Thread backend  │ ─────────► │  SchedulerService  │
    └──────────────────┘            │  Dispatcher        │
                                    └────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Timing-only backend: calls the tick callback every interval."""

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        """Start the loop.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick.
        """
        ...

    def stop(self) -> None:
        """Stop the loop, waiting for the current tick to finish."""
        ...

    def health(self) -> BackendHealth:
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


__all__ = ["BackendHealth", "SchedulerBackend", "TickCallback"]
