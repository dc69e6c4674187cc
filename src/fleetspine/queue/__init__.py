"""Mission queue and lifecycle state machine."""

from fleetspine.queue.models import MissionQuery, MissionRecord, MissionStep, MissionSubmit
from fleetspine.queue.repository import MissionRepository
from fleetspine.queue.service import MissionQueueService
from fleetspine.queue.state_machine import TRANSITIONS, can_transition

__all__ = [
    "MissionQuery",
    "MissionQueueService",
    "MissionRecord",
    "MissionRepository",
    "MissionStep",
    "MissionSubmit",
    "TRANSITIONS",
    "can_transition",
]
