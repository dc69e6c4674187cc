"""
Shared enums for the fleet engine.

Values are persisted as strings (or integers for gateway job codes), so
renaming a member is a schema change.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum, IntEnum


class MissionStatus(str, Enum):
    """Lifecycle state of a queued mission."""

    PENDING = "Pending"
    READY_TO_ASSIGN = "ReadyToAssign"
    ASSIGNED = "Assigned"
    SUBMITTED_TO_AMR = "SubmittedToAmr"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {MissionStatus.COMPLETED, MissionStatus.FAILED, MissionStatus.CANCELLED}
)

ACTIVE_STATUSES = tuple(s for s in MissionStatus if s not in TERMINAL_STATUSES)


class TriggerSource(str, Enum):
    MANUAL = "Manual"
    SCHEDULED = "Scheduled"
    WORKFLOW = "Workflow"
    API = "API"
    DIRECT = "Direct"


class PassStrategy(str, Enum):
    """How a robot treats a waypoint once it arrives."""

    AUTO = "AUTO"
    MANUAL = "MANUAL"


class CancelMode(str, Enum):
    FORCE = "FORCE"
    NORMAL = "NORMAL"
    REDIRECT_START = "REDIRECT_START"

    @classmethod
    def parse(cls, value: str | None) -> "CancelMode | None":
        """Case-insensitive lookup; empty means NORMAL, unknown returns None."""
        if value is None or not value.strip():
            return cls.NORMAL
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class JobStatus(IntEnum):
    """Numeric job status codes reported by the AMR gateway."""

    CREATED = 10
    EXECUTING = 20
    WAITING = 25
    CANCELLING = 28
    COMPLETED = 30
    CANCELLED = 31


class RobotStatus(IntEnum):
    IDLE = 0
    EXECUTING = 20


class OpportunityDecision(str, Enum):
    """Outcome of evaluating a robot after it finishes a mission."""

    PENDING = "Pending"
    JOB_CHAINED = "JobChained"
    RETURN_TO_ORIGINAL = "ReturnToOriginal"
    LIMIT_REACHED = "LimitReached"
    NO_JOBS_AVAILABLE = "NoJobsAvailable"


class TriggerType(str, Enum):
    ONCE = "Once"
    INTERVAL = "Interval"
    CRON = "Cron"


class ScheduleRunStatus(str, Enum):
    PENDING = "Pending"
    QUEUED = "Queued"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class UtilizationGrouping(str, Enum):
    HOUR = "hour"
    DAY = "day"


# Numeric "source" filter values accepted by mission queries.
SOURCE_CODES: dict[int, str] = {
    1: "PDA",
    2: "INTERFACE",
    3: "PDA",
    4: "DEVICE",
    5: "MLS",
    6: "SELF",
    7: "EVENT",
}
DEFAULT_SOURCE = "INTERFACE"


def source_name(code: int | str | None) -> str:
    """Map a numeric source code to its name (unknown codes map to INTERFACE)."""
    if code is None:
        return DEFAULT_SOURCE
    try:
        return SOURCE_CODES.get(int(code), DEFAULT_SOURCE)
    except (TypeError, ValueError):
        return DEFAULT_SOURCE


__all__ = [
    "ACTIVE_STATUSES",
    "CancelMode",
    "DEFAULT_SOURCE",
    "JobStatus",
    "MissionStatus",
    "OpportunityDecision",
    "PassStrategy",
    "RobotStatus",
    "SOURCE_CODES",
    "ScheduleRunStatus",
    "TERMINAL_STATUSES",
    "TriggerSource",
    "TriggerType",
    "UtilizationGrouping",
    "source_name",
]
