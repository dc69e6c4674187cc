"""Schedule engine: Once / Interval / Cron triggers with a lease lock.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ThreadSchedulerBackend ──tick──► SchedulerService                            │
│                                     ├── ScheduleRepository  (data, run log)   │
│                                     ├── LockManager         (lease)           │
│                                     └── MissionQueueService (enqueue)         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from fleetspine.scheduling.cron import compute_next_run, next_cron_run, normalize_cron, validate_trigger
from fleetspine.scheduling.lock_manager import LockManager
from fleetspine.scheduling.models import Schedule, ScheduleCreate, ScheduleRun, ScheduleUpdate
from fleetspine.scheduling.protocol import BackendHealth, SchedulerBackend, TickCallback
from fleetspine.scheduling.repository import ScheduleRepository, next_run_for
from fleetspine.scheduling.service import (
    LOCK_NOT_ACQUIRED,
    SchedulerHealth,
    SchedulerService,
    SchedulerStats,
    build_submit,
)
from fleetspine.scheduling.thread_backend import ThreadSchedulerBackend

__all__ = [
    "LOCK_NOT_ACQUIRED",
    "BackendHealth",
    "LockManager",
    "Schedule",
    "ScheduleCreate",
    "ScheduleRepository",
    "ScheduleRun",
    "ScheduleUpdate",
    "SchedulerBackend",
    "SchedulerHealth",
    "SchedulerService",
    "SchedulerStats",
    "ThreadSchedulerBackend",
    "TickCallback",
    "build_submit",
    "compute_next_run",
    "next_cron_run",
    "next_run_for",
    "normalize_cron",
    "validate_trigger",
]
