"""Tests for MissionQueueService submit / cancel / query."""

from fleetspine.core.enums import MissionStatus, TriggerSource
from fleetspine.core.errors import (
    ConflictError,
    DuplicateMissionCodeError,
    DuplicateRequestIdError,
    InvalidTransitionError,
    MissionNotFoundError,
    ValidationFailedError,
)
from fleetspine.core.result import Err, Ok
from fleetspine.queue import MissionQuery


class TestSubmit:
    """Reservation of missionCode / requestId."""

    def test_submit_creates_pending_record(self, queue_service, mission_repo, make_submit):
        """A fresh submission succeeds with no payload and stores a Pending record."""
        result = queue_service.submit(make_submit("M-1"))

        assert result == Ok(None)
        record = mission_repo.get("M-1")
        assert record.status == MissionStatus.PENDING
        assert record.request_id == "REQ-M-1"
        assert [s.position for s in record.steps] == ["A1", "B1"]

    def test_default_priority_from_settings(self, queue_service, mission_repo, make_submit):
        """Missing priority falls back to the configured default."""
        queue_service.submit(make_submit("M-1"))
        assert mission_repo.get("M-1").priority == 5

    def test_duplicate_request_id(self, queue_service, make_submit):
        """Reusing a requestId is a conflict."""
        queue_service.submit(make_submit("M-1", request_id="R-1"))
        result = queue_service.submit(make_submit("M-2", request_id="R-1"))

        assert isinstance(result, Err)
        assert isinstance(result.error, DuplicateRequestIdError)
        assert result.error.code == "100408"
        assert result.error.message == "RequestId:[R-1] is already used"

    def test_duplicate_mission_code(self, queue_service, make_submit):
        """Reusing a missionCode is a conflict."""
        queue_service.submit(make_submit("M-1", request_id="R-1"))
        result = queue_service.submit(make_submit("M-1", request_id="R-2"))

        assert isinstance(result.error, DuplicateMissionCodeError)
        assert isinstance(result.error, ConflictError)
        assert result.error.message == "MissionCode:[M-1] is already used"

    def test_same_pair_succeeds_exactly_once(self, queue_service, make_submit):
        """Resubmitting the same pair fails every time after the first."""
        results = [queue_service.submit(make_submit("M-1", request_id="R-1")) for _ in range(3)]

        assert results[0].is_ok()
        assert all(r.is_err() for r in results[1:])

    def test_missing_required_fields(self, queue_service, make_submit):
        """orgId, requestId and missionCode are required."""
        for overrides in ({"org_id": ""}, {"request_id": " "}):
            result = queue_service.submit(make_submit("M-1", **overrides))
            assert isinstance(result.error, ValidationFailedError)

        result = queue_service.submit(make_submit(""))
        assert result.error.field == "mission_code"

    def test_two_repositories_share_uniqueness(self, db_conn, queue_service, make_submit, settings, clock):
        """Uniqueness lives in the store, not in a service instance."""
        from fleetspine.queue import MissionQueueService, MissionRepository

        other = MissionQueueService(MissionRepository(db_conn), settings=settings, clock=clock)
        assert queue_service.submit(make_submit("M-1")).is_ok()
        assert other.submit(make_submit("M-1")).is_err()


class TestCancel:
    """Cancellation rules."""

    def test_cancel_pending(self, queue_service, mission_repo, make_submit, clock):
        """Cancel marks the record cancelled and stamps the time."""
        queue_service.submit(make_submit("M-1"))
        result = queue_service.cancel("M-1", "REQ-C1", "force", "operator stop")

        assert result.is_ok()
        record = mission_repo.get("M-1")
        assert record.status == MissionStatus.CANCELLED
        assert record.cancel_mode == "FORCE"
        assert record.cancel_reason == "operator stop"
        assert record.cancelled_utc == clock.now

    def test_cancel_archives_record(self, queue_service, mission_repo, make_submit):
        """Terminal transitions copy the record into history."""
        queue_service.submit(make_submit("M-1"))
        queue_service.cancel("M-1", "REQ-C1")

        archived = mission_repo.get_history("M-1")
        assert archived is not None
        assert archived.status == MissionStatus.CANCELLED

    def test_empty_mode_means_normal(self, queue_service, make_submit):
        """An empty cancelMode defaults to NORMAL."""
        queue_service.submit(make_submit("M-1"))
        result = queue_service.cancel("M-1", "REQ-C1", "")
        assert result.unwrap().cancel_mode == "NORMAL"

    def test_invalid_mode(self, queue_service, make_submit):
        """Unsupported modes are rejected."""
        queue_service.submit(make_submit("M-1"))
        result = queue_service.cancel("M-1", "REQ-C1", "ABORT")
        assert isinstance(result.error, ValidationFailedError)
        assert result.error.field == "cancel_mode"

    def test_missing_fields(self, queue_service):
        """missionCode and requestId are required."""
        assert isinstance(queue_service.cancel("", "R").error, ValidationFailedError)
        assert isinstance(queue_service.cancel("M", "").error, ValidationFailedError)

    def test_unknown_mission(self, queue_service):
        """Cancelling an unknown mission is NotFound."""
        assert isinstance(queue_service.cancel("NOPE", "R").error, MissionNotFoundError)

    def test_cancel_twice_keeps_first_timestamp(self, queue_service, make_submit, clock):
        """A second cancel is idempotent."""
        queue_service.submit(make_submit("M-1"))
        first = queue_service.cancel("M-1", "R").unwrap()
        clock.advance(30)
        second = queue_service.cancel("M-1", "R").unwrap()

        assert second.cancelled_utc == first.cancelled_utc
        assert second.version == first.version

    def test_cannot_cancel_completed(self, queue_service, make_submit):
        """Completed missions cannot be cancelled."""
        queue_service.submit(make_submit("M-1"))
        queue_service.advance("M-1", MissionStatus.ASSIGNED, assigned_robot_id="1001")
        queue_service.advance("M-1", MissionStatus.SUBMITTED_TO_AMR)
        queue_service.advance("M-1", MissionStatus.COMPLETED)

        result = queue_service.cancel("M-1", "R")
        assert isinstance(result.error, InvalidTransitionError)

    def test_handed_off_cancel_awaits_gateway(self, queue_service, make_submit, clock):
        """Only missions already sent to the gateway wait for an upstream stop."""
        queue_service.submit(make_submit("QUEUED"))
        queue_service.submit(make_submit("SENT"))
        queue_service.advance("SENT", MissionStatus.ASSIGNED, assigned_robot_id="1001")
        queue_service.advance("SENT", MissionStatus.SUBMITTED_TO_AMR)
        queue_service.cancel("QUEUED", "REQ-C1")
        record = queue_service.cancel("SENT", "REQ-C2", "FORCE").unwrap()

        assert record.cancel_request_id == "REQ-C2"
        assert record.awaits_upstream_cancel
        assert [r.mission_code for r in queue_service.list_awaiting_upstream_cancel()] == ["SENT"]

        queue_service.update("SENT", cancel_forwarded_utc=clock(), cancel_settled_utc=clock())
        assert queue_service.list_awaiting_upstream_cancel() == []


class TestQuery:
    """Filtered queries."""

    def _seed(self, queue_service, make_submit, clock, count=12, **overrides):
        for i in range(count):
            queue_service.submit(make_submit(f"M-{i:02d}", **overrides))
            clock.advance(1)

    def test_newest_first_and_default_limit(self, queue_service, make_submit, clock):
        """Results are newest first and capped at 10 by default."""
        self._seed(queue_service, make_submit, clock)

        records = queue_service.query()
        assert len(records) == 10
        assert records[0].mission_code == "M-11"
        assert records[-1].mission_code == "M-02"

    def test_non_positive_limit_means_default(self, queue_service, make_submit, clock):
        """A limit of zero or less behaves as unspecified."""
        self._seed(queue_service, make_submit, clock)
        assert len(queue_service.query(MissionQuery(limit=0))) == 10
        assert len(queue_service.query(MissionQuery(limit=3))) == 3

    def test_case_insensitive_filters(self, queue_service, make_submit):
        """String filters ignore case."""
        queue_service.submit(make_submit("M-1", container_code="BOX-7", map_code="M001"))
        queue_service.submit(make_submit("M-2", container_code="BOX-8", map_code="M002"))

        assert [r.mission_code for r in queue_service.query(MissionQuery(container_code="box-7"))] == ["M-1"]
        assert [r.mission_code for r in queue_service.query(MissionQuery(map_codes=["m002"]))] == ["M-2"]

    def test_source_code_mapping(self, queue_service, make_submit):
        """Numeric source codes map to names; unknown codes mean INTERFACE."""
        queue_service.submit(make_submit("M-1", source="PDA"))
        queue_service.submit(make_submit("M-2"))

        assert [r.mission_code for r in queue_service.query(MissionQuery(source=3))] == ["M-1"]
        assert [r.mission_code for r in queue_service.query(MissionQuery(source=99))] == ["M-2"]
        assert [r.mission_code for r in queue_service.query(MissionQuery(source=2))] == ["M-2"]

    def test_status_and_robot_filters(self, queue_service, make_submit):
        """Status and assigned robot are filterable."""
        queue_service.submit(make_submit("M-1"))
        queue_service.submit(make_submit("M-2"))
        queue_service.advance("M-2", MissionStatus.ASSIGNED, assigned_robot_id="1003")

        assert [r.mission_code for r in queue_service.query(MissionQuery(status="assigned"))] == ["M-2"]
        assert [r.mission_code for r in queue_service.query(MissionQuery(robot_id="1003"))] == ["M-2"]


class TestDrawOrder:
    """Dispatch draw order and template counts."""

    def test_priority_then_creation(self, queue_service, make_submit, clock):
        """Higher priority first, then oldest first."""
        queue_service.submit(make_submit("LOW", priority=1))
        clock.advance(1)
        queue_service.submit(make_submit("HIGH-OLD", priority=9))
        clock.advance(1)
        queue_service.submit(make_submit("HIGH-NEW", priority=9))

        codes = [r.mission_code for r in queue_service.list_dispatchable()]
        assert codes == ["HIGH-OLD", "HIGH-NEW", "LOW"]

    def test_count_active_for_template(self, queue_service, make_submit):
        """Only non-terminal records count."""
        queue_service.submit(make_submit("M-1", template_code="T1", trigger_source=TriggerSource.SCHEDULED))
        queue_service.submit(make_submit("M-2", template_code="T1"))
        queue_service.cancel("M-2", "R")

        assert queue_service.count_active_for_template("T1") == 1
        assert queue_service.count_active_for_template("T2") == 0
