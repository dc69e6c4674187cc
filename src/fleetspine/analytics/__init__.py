"""Robot utilization analytics."""

from fleetspine.analytics.aggregator import UtilizationAggregator, execution_start
from fleetspine.analytics.buckets import bucket_start, generate_buckets, split_interval
from fleetspine.analytics.models import (
    ChargingSession,
    MissionDiagnostic,
    UtilizationBucket,
    UtilizationDiagnostics,
    UtilizationMetrics,
    UtilizationMission,
)

__all__ = [
    "ChargingSession",
    "MissionDiagnostic",
    "UtilizationAggregator",
    "UtilizationBucket",
    "UtilizationDiagnostics",
    "UtilizationMetrics",
    "UtilizationMission",
    "bucket_start",
    "execution_start",
    "generate_buckets",
    "split_interval",
]
