"""Opportunistic job chaining."""

from fleetspine.chaining.evaluator import OpportunisticJobEvaluator
from fleetspine.chaining.models import Candidate, MapQueueConfig, RobotJobOpportunity
from fleetspine.chaining.repository import (
    CoordinateSource,
    MapQueueConfigRepository,
    NodeCoordinateRepository,
    OpportunityRepository,
)

__all__ = [
    "Candidate",
    "CoordinateSource",
    "MapQueueConfig",
    "MapQueueConfigRepository",
    "NodeCoordinateRepository",
    "OpportunisticJobEvaluator",
    "OpportunityRepository",
    "RobotJobOpportunity",
]
