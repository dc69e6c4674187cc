"""Mission execution tracker: status progression, waypoint walk, manual pauses."""

from fleetspine.tracking.areas import AreaResolver
from fleetspine.tracking.pauses import ManualPause, ManualPauseRepository
from fleetspine.tracking.progression import IntervalIndex, StatusProgression, TrackerTimings
from fleetspine.tracking.tracker import MissionRuntime, MissionTracker, RobotState

__all__ = [
    "AreaResolver",
    "IntervalIndex",
    "ManualPause",
    "ManualPauseRepository",
    "MissionRuntime",
    "MissionTracker",
    "RobotState",
    "StatusProgression",
    "TrackerTimings",
]
