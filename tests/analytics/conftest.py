"""Pytest fixtures for utilization analytics tests."""

from __future__ import annotations

from datetime import datetime

import pytest

from fleetspine.analytics import UtilizationAggregator
from fleetspine.queue import MissionSubmit
from fleetspine.tracking import ManualPauseRepository


@pytest.fixture
def pause_repo(db_conn) -> ManualPauseRepository:
    return ManualPauseRepository(db_conn)


@pytest.fixture
def aggregator(mission_repo, pause_repo, settings) -> UtilizationAggregator:
    return UtilizationAggregator(mission_repo, pause_repo, settings=settings)


@pytest.fixture
def add_mission(mission_repo):
    """Insert a mission executed by *robot_id* from *start* to *end*.

    ``end=None`` leaves the mission uncompleted; ``archive=True`` also copies
    it into the history table.
    """

    def _add(
        code: str,
        start: datetime,
        end: datetime | None,
        robot_id: str | None = "1001",
        *,
        template_code: str | None = None,
        workflow_name: str | None = None,
        archive: bool = False,
        **fields,
    ):
        record = mission_repo.reserve(
            MissionSubmit(code, f"REQ-{code}", template_code=template_code, workflow_name=workflow_name),
            start,
        ).unwrap()
        fields.setdefault("processed_utc", start)
        record = mission_repo.update_fields(
            record,
            end or start,
            assigned_robot_id=robot_id,
            completed_utc=end,
            **fields,
        ).unwrap()
        if archive:
            mission_repo.archive(code, end or start)
        return record

    return _add
