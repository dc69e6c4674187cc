"""Tests for MissionTracker status, waypoint walk, feedback and robot query."""

import json

from fleetspine.core.enums import JobStatus, MissionStatus, RobotStatus
from fleetspine.core.errors import ValidationFailedError
from fleetspine.queue import MissionStep


def _steps(*specs):
    return [MissionStep(i + 1, pos, strategy) for i, (pos, strategy) in enumerate(specs)]


class TestJobStatus:
    """Status derived from elapsed time since the first query."""

    def test_progression_from_first_query(self, tracker, assigned_mission, clock):
        """First query starts the clock; later queries follow the thresholds."""
        record = assigned_mission()

        assert tracker.job_status(record) == JobStatus.CREATED
        observed = []
        for delta in (2, 2, 5, 2, 11):  # elapsed 2, 4, 9, 11, 22
            clock.advance(delta)
            observed.append(tracker.job_status(record))

        assert observed == [
            JobStatus.CREATED,
            JobStatus.EXECUTING,
            JobStatus.WAITING,
            JobStatus.EXECUTING,
            JobStatus.COMPLETED,
        ]
        assert tracker.completed_at("M-1") == clock.now

    def test_cancel_overrides_progression(self, tracker, assigned_mission, queue_service, mission_repo, clock):
        """Cancelling for two seconds after cancel, then Cancelled."""
        record = assigned_mission()
        tracker.job_status(record)
        clock.advance(15)
        queue_service.cancel("M-1", "R")
        cancelled = mission_repo.get("M-1")

        assert tracker.job_status(cancelled) == JobStatus.CANCELLING
        clock.advance(1.5)
        assert tracker.job_status(cancelled) == JobStatus.CANCELLING
        clock.advance(0.5)
        assert tracker.job_status(cancelled) == JobStatus.CANCELLED
        clock.advance(100)
        assert tracker.job_status(cancelled) == JobStatus.CANCELLED

    def test_forget_drops_runtime(self, tracker, assigned_mission, queue_service, mission_repo, clock):
        """A forgotten completed mission keeps reporting Completed without new state."""
        record = assigned_mission()
        tracker.job_status(record)
        clock.advance(22)
        tracker.job_status(record)
        queue_service.advance("M-1", MissionStatus.SUBMITTED_TO_AMR)
        queue_service.advance("M-1", MissionStatus.COMPLETED)

        tracker.forget("M-1")

        assert tracker.runtime("M-1") is None
        assert tracker.job_status(mission_repo.get("M-1")) == JobStatus.COMPLETED
        assert tracker.runtime("M-1") is None


class TestWaypointWalk:
    """Step-by-step position simulation."""

    def test_dwell_then_advance(self, tracker, assigned_mission, clock):
        """Each step holds for the dwell time before advancing."""
        record = assigned_mission(steps=_steps(("A1", "AUTO"), ("B1", "AUTO"), ("C1", "AUTO")))

        assert tracker.current_node(record) == "A1"
        clock.advance(3)
        assert tracker.current_node(record) == "A1"
        clock.advance(1)
        assert tracker.current_node(record) == "B1"
        clock.advance(4)
        assert tracker.current_node(record) == "C1"
        clock.advance(4)
        assert tracker.current_node(record) == "C1"
        clock.advance(60)
        assert tracker.current_node(record) == "C1"

    def test_manual_step_blocks_until_feedback(self, tracker, assigned_mission, clock, pauses):
        """A MANUAL step holds the robot until matching feedback arrives."""
        record = assigned_mission(steps=_steps(("A1", "AUTO"), ("B1", "MANUAL"), ("C1", "AUTO")))

        tracker.current_node(record)
        clock.advance(4)
        assert tracker.current_node(record) == "B1"
        clock.advance(4)
        assert tracker.current_node(record) == "B1"
        assert tracker.runtime("M-1").waiting is True

        clock.advance(3600)
        assert tracker.current_node(record) == "B1"

        assert tracker.operation_feedback("REQ-F", "M-1", "b1").is_ok()
        assert tracker.runtime("M-1").waiting is False
        assert tracker.current_node(record) == "B1"
        clock.advance(4)
        assert tracker.current_node(record) == "C1"

    def test_manual_wait_opens_and_closes_pause(self, tracker, assigned_mission, clock, pauses):
        """Waiting at a MANUAL waypoint is recorded for utilization."""
        record = assigned_mission(steps=_steps(("A1", "MANUAL"), ("B1", "AUTO")))
        start = clock.now
        tracker.current_node(record)
        clock.advance(4)
        tracker.current_node(record)
        paused_at = clock.now
        clock.advance(120)
        tracker.operation_feedback("R", "M-1", "A1")

        recorded = pauses.list_overlapping("1001", start, clock.advance(1))
        assert len(recorded) == 1
        assert recorded[0].start == paused_at
        assert (recorded[0].end - recorded[0].start).total_seconds() == 120

    def test_feedback_for_other_position_has_no_effect(self, tracker, assigned_mission, clock):
        """Feedback for a position not in the mission is accepted and ignored."""
        record = assigned_mission(steps=_steps(("A1", "MANUAL"), ("B1", "AUTO")))
        tracker.current_node(record)
        clock.advance(4)
        tracker.current_node(record)

        assert tracker.operation_feedback("R", "M-1", "Z9").is_ok()
        assert tracker.runtime("M-1").waiting is True
        clock.advance(10)
        assert tracker.current_node(record) == "A1"

    def test_feedback_for_later_step_does_not_release_current(self, tracker, assigned_mission, clock):
        """Only the current step's position releases the wait."""
        record = assigned_mission(steps=_steps(("A1", "MANUAL"), ("B1", "MANUAL"), ("C1", "AUTO")))
        tracker.current_node(record)
        clock.advance(4)
        tracker.current_node(record)

        tracker.operation_feedback("R", "M-1", "B1")
        assert tracker.runtime("M-1").waiting is True

    def test_cancelled_mission_stops_walking(self, tracker, assigned_mission, queue_service, mission_repo, clock):
        """After cancellation the position stays put."""
        record = assigned_mission(steps=_steps(("A1", "AUTO"), ("B1", "AUTO")))
        tracker.current_node(record)
        queue_service.cancel("M-1", "R")
        cancelled = mission_repo.get("M-1")
        clock.advance(30)
        assert tracker.current_node(cancelled) == "A1"

    def test_missions_without_steps_use_legacy_path(self, tracker, assigned_mission, clock):
        """No step data: fixed checkpoints by elapsed time."""
        record = assigned_mission(steps=[])

        assert tracker.current_node(record) == "Sim1-1-2"
        clock.advance(6)
        assert tracker.current_node(record) == "Sim1-1-5"
        clock.advance(20)
        assert tracker.current_node(record) == "Sim1-1-20"

    def test_area_position_resolves_to_lowest_sort_node(self, tracker, assigned_mission, db_conn):
        """Area codes resolve to their lowest-sort member node."""
        db_conn.execute(
            "INSERT INTO amr_areas (zone_code, area_node_list) VALUES (?, ?)",
            ("ZONE-A", json.dumps([{"cellCode": "N-9", "sort": 2}, {"cellCode": "N-3", "sort": 1}])),
        )
        db_conn.commit()
        record = assigned_mission(steps=_steps(("ZONE-A", "AUTO"), ("B1", "AUTO")))

        assert tracker.current_node(record) == "N-3"

    def test_area_resolution_is_cached_per_mission(self, tracker, assigned_mission, db_conn):
        """A mission keeps its resolved node even if the area changes."""
        db_conn.execute(
            "INSERT INTO amr_areas (zone_code, area_node_list) VALUES (?, ?)",
            ("ZONE-A", json.dumps([{"cellCode": "N-1", "sort": 1}])),
        )
        db_conn.commit()
        record = assigned_mission(steps=_steps(("ZONE-A", "AUTO")))
        assert tracker.current_node(record) == "N-1"

        db_conn.execute(
            "UPDATE amr_areas SET area_node_list = ? WHERE zone_code = ?",
            (json.dumps([{"cellCode": "N-7", "sort": 0}]), "ZONE-A"),
        )
        db_conn.commit()
        assert tracker.current_node(record) == "N-1"


class TestFeedbackValidation:
    """operation_feedback input rules."""

    def test_missing_fields(self, tracker):
        """requestId, missionCode and position are required."""
        for args in (("", "M", "P"), ("R", "", "P"), ("R", "M", " ")):
            assert isinstance(tracker.operation_feedback(*args).error, ValidationFailedError)

    def test_unknown_mission_is_accepted(self, tracker):
        """Feedback for unknown missions is logged, not an error."""
        assert tracker.operation_feedback("R", "NOPE", "A1").is_ok()


class TestRobotQuery:
    """query_robot contract."""

    def test_empty_robot_id(self, tracker):
        """robotId is required."""
        assert isinstance(tracker.query_robot("").error, ValidationFailedError)

    def test_idle_robot_at_home(self, tracker):
        """A robot without an active mission is idle at the home node."""
        state = tracker.query_robot("1005").unwrap()

        assert state.status == RobotStatus.IDLE
        assert state.node_code == "Sim1-1-2"
        assert state.mission_code is None
        assert (state.robot_type, state.map_code, state.floor_number) == ("LIFT", "M001", "A001")
        assert state.battery_level == 85

    def test_executing_robot_reports_mission(self, tracker, assigned_mission):
        """A robot with an active mission is executing at the mission's position."""
        assigned_mission(steps=_steps(("A1", "AUTO")))
        state = tracker.query_robot("1001", map_code="M002").unwrap()

        assert state.status == RobotStatus.EXECUTING
        assert state.mission_code == "M-1"
        assert state.node_code == "A1"
        assert state.map_code == "M002"
