"""Tests for the Dispatcher, mostly end to end against the simulated gateway."""

import pytest

from fleetspine.chaining import (
    MapQueueConfigRepository,
    NodeCoordinateRepository,
    OpportunisticJobEvaluator,
    OpportunityRepository,
)
from fleetspine.core.enums import CancelMode, MissionStatus, OpportunityDecision
from fleetspine.core.errors import UpstreamUnavailableError
from fleetspine.dispatch import Dispatcher, GatewayResponse, RobotSnapshot, build_request
from fleetspine.queue import MissionStep


class ScriptedGateway:
    """Gateway double: idle robots, scripted submit outcome."""

    def __init__(self, outcome, cancel_outcome=None):
        self.outcome = outcome
        self.cancel_outcome = cancel_outcome or GatewayResponse.ok()
        self.submitted = []
        self.cancelled = []

    async def submit_mission(self, request):
        self.submitted.append(request)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    async def cancel_mission(self, request_id, mission_code, cancel_mode=None, reason=None):
        self.cancelled.append((request_id, mission_code))
        if isinstance(self.cancel_outcome, Exception):
            raise self.cancel_outcome
        return self.cancel_outcome

    async def operation_feedback(self, request_id, mission_code, position):
        return GatewayResponse.ok()

    async def query_robot(self, robot_id, robot_type=None, map_code=None, floor_number=None):
        return RobotSnapshot(robot_id=robot_id, node_code="Sim1-1-2", status=0)

    async def query_jobs(self, query):
        return []


class TestBuildRequest:
    def test_copies_mission_fields(self, queue_service, make_submit):
        queue_service.submit(make_submit("M-1", template_code="T1", map_code="Sim1", priority=7))
        record = queue_service.get("M-1").unwrap()

        request = build_request(record, "1001", "UNIVERSAL")

        assert request.mission_code == "M-1"
        assert request.request_id == "REQ-M-1"
        assert request.robot_ids == ["1001"]
        assert request.priority == 7
        assert [s.position for s in request.mission_data] == ["A1", "B1"]
        assert request.to_wire()["missionCode"] == "M-1"

    def test_no_robot_means_empty_list(self, queue_service, make_submit):
        queue_service.submit(make_submit("M-1"))
        record = queue_service.get("M-1").unwrap()

        assert build_request(record, None, "UNIVERSAL").robot_ids == []


class TestDispatchPending:
    @pytest.mark.asyncio
    async def test_submits_mission_without_preference(self, dispatcher, queue_service, gateway, make_submit):
        """Missions with no preferred robot go out without one."""
        queue_service.submit(make_submit("M-1"))

        accepted = await dispatcher.dispatch_pending()

        assert accepted == 1
        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.SUBMITTED_TO_AMR
        assert record.submitted_to_amr_utc is not None
        assert gateway.jobs.get("M-1").assigned_robot_id == "1003"

    @pytest.mark.asyncio
    async def test_idle_preferred_robot_is_used(self, dispatcher, queue_service, gateway, make_submit):
        queue_service.submit(make_submit("M-1", robot_ids=["1005"]))

        await dispatcher.dispatch_pending()

        assert queue_service.get("M-1").unwrap().assigned_robot_id == "1005"
        assert gateway.jobs.get("M-1").assigned_robot_id == "1005"

    @pytest.mark.asyncio
    async def test_busy_preferred_robot_keeps_mission_queued(
        self, dispatcher, queue_service, make_submit, clock
    ):
        """A second mission for the same robot waits until the robot is free."""
        queue_service.submit(make_submit("M-1", robot_ids=["1001"]))
        clock.advance(1)
        queue_service.submit(make_submit("M-2", robot_ids=["1001"]))

        assert await dispatcher.dispatch_pending() == 1
        assert queue_service.get("M-2").unwrap().status == MissionStatus.PENDING

        assert await dispatcher.dispatch_pending() == 0
        assert queue_service.get("M-2").unwrap().status == MissionStatus.PENDING

    @pytest.mark.asyncio
    async def test_falls_through_to_next_idle_preference(
        self, dispatcher, queue_service, make_submit, clock
    ):
        queue_service.submit(make_submit("M-1", robot_ids=["1001"]))
        clock.advance(1)
        queue_service.submit(make_submit("M-2", robot_ids=["1001", "1005"]))

        await dispatcher.dispatch_pending()

        assert queue_service.get("M-2").unwrap().assigned_robot_id == "1005"

    @pytest.mark.asyncio
    async def test_priority_order(self, queue_service, make_submit, settings, clock):
        """Higher priority is submitted first."""
        gateway = ScriptedGateway(GatewayResponse.ok())
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("LOW", priority=1))
        clock.advance(1)
        queue_service.submit(make_submit("HIGH", priority=9))

        await dispatcher.dispatch_pending()

        assert [r.mission_code for r in gateway.submitted] == ["HIGH", "LOW"]

    @pytest.mark.asyncio
    async def test_rejection_fails_mission(self, queue_service, mission_repo, make_submit, settings, clock):
        gateway = ScriptedGateway(GatewayResponse.fail("100408", "RequestId:[REQ-M-1] is already used"))
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))

        assert await dispatcher.dispatch_pending() == 0

        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.FAILED
        assert record.error_message == "RequestId:[REQ-M-1] is already used"
        assert mission_repo.get_history("M-1") is not None
        assert dispatcher.get_stats().missions_failed == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_is_retried(self, queue_service, make_submit, settings, clock):
        """Transport failures leave the mission queued with a retry count."""
        gateway = ScriptedGateway(UpstreamUnavailableError("gateway down"))
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))

        await dispatcher.dispatch_pending()
        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.ASSIGNED
        assert record.retry_count == 1
        assert record.error_message == "gateway down"

        await dispatcher.dispatch_pending()
        record = queue_service.get("M-1").unwrap()
        assert record.retry_count == 2
        assert len(gateway.submitted) == 2
        assert dispatcher.get_stats().upstream_errors == 2

    @pytest.mark.asyncio
    async def test_retry_succeeds_once_gateway_returns(self, queue_service, make_submit, settings, clock):
        gateway = ScriptedGateway(UpstreamUnavailableError("gateway down"))
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()

        gateway.outcome = GatewayResponse.ok()
        await dispatcher.dispatch_pending()

        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.SUBMITTED_TO_AMR
        assert record.error_message is None

    @pytest.mark.asyncio
    async def test_duplicate_on_retry_counts_as_accepted(self, queue_service, make_submit, settings, clock):
        """A resubmit rejected as a duplicate request id was taken by the lost attempt."""
        gateway = ScriptedGateway(UpstreamUnavailableError("read timed out"))
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()

        gateway.outcome = GatewayResponse.fail("100408", "RequestId:[REQ-M-1] is already used")
        assert await dispatcher.dispatch_pending() == 1

        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.SUBMITTED_TO_AMR
        assert record.error_message is None
        assert dispatcher.get_stats().missions_failed == 0


class TestPollStatuses:
    @pytest.mark.asyncio
    async def test_lifecycle_follows_gateway(self, dispatcher, queue_service, make_submit, clock):
        """Submitted, then Executing, then Completed with the robot recorded."""
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()

        assert await dispatcher.poll_statuses() == 0
        assert queue_service.get("M-1").unwrap().status == MissionStatus.SUBMITTED_TO_AMR

        clock.advance(4)
        assert await dispatcher.poll_statuses() == 1
        assert queue_service.get("M-1").unwrap().status == MissionStatus.EXECUTING

        clock.advance(20)
        assert await dispatcher.poll_statuses() == 1
        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.COMPLETED
        assert record.assigned_robot_id == "1003"
        assert record.completed_utc == clock.now
        assert dispatcher.get_stats().missions_completed == 1

    @pytest.mark.asyncio
    async def test_upstream_cancel_is_mirrored(self, dispatcher, queue_service, gateway, make_submit, clock):
        """Cancelling (28) keeps the mission executing; Cancelled (31) ends it."""
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()
        await gateway.cancel_mission("REQ-C", "M-1", "FORCE")

        await dispatcher.poll_statuses()
        assert queue_service.get("M-1").unwrap().status == MissionStatus.EXECUTING

        clock.advance(3)
        await dispatcher.poll_statuses()
        assert queue_service.get("M-1").unwrap().status == MissionStatus.CANCELLED
        assert dispatcher.get_stats().missions_cancelled == 1

    @pytest.mark.asyncio
    async def test_run_cycle_counts_ticks(self, dispatcher, queue_service, make_submit, clock):
        queue_service.submit(make_submit("M-1"))

        await dispatcher.run_cycle()
        await dispatcher.run_cycle()

        stats = dispatcher.get_stats()
        assert stats.tick_count == 2
        assert stats.last_tick == clock.now
        assert stats.missions_submitted == 1


class TestCancelForwarding:
    """Queue cancellations stop the job at the gateway."""

    @pytest.mark.asyncio
    async def test_cancel_reaches_gateway(self, dispatcher, queue_service, gateway, make_submit, clock):
        """The gateway job is stopped and watched until it reports Cancelled (31)."""
        queue_service.submit(make_submit("M-1"))
        await dispatcher.run_cycle()
        clock.advance(4)
        await dispatcher.run_cycle()
        assert queue_service.get("M-1").unwrap().status == MissionStatus.EXECUTING

        queue_service.cancel("M-1", "REQ-C", "FORCE", "operator stop")
        await dispatcher.run_cycle()

        job = gateway.jobs.get("M-1")
        assert job.status == MissionStatus.CANCELLED
        assert job.cancel_mode == CancelMode.FORCE
        record = queue_service.get("M-1").unwrap()
        assert record.cancel_forwarded_utc == clock.now
        assert record.cancel_settled_utc is None
        assert (await gateway.query_robot("1003")).is_idle

        clock.advance(3)
        await dispatcher.run_cycle()

        record = queue_service.get("M-1").unwrap()
        assert record.cancel_settled_utc == clock.now
        assert queue_service.list_awaiting_upstream_cancel() == []
        assert dispatcher.get_stats().cancels_forwarded == 1

    @pytest.mark.asyncio
    async def test_cancel_sent_once(self, queue_service, make_submit, settings, clock):
        gateway = ScriptedGateway(GatewayResponse.ok())
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()
        queue_service.cancel("M-1", "REQ-C", "NORMAL")

        assert await dispatcher.forward_cancellations() == 1
        assert await dispatcher.forward_cancellations() == 0
        assert gateway.cancelled == [("REQ-C", "M-1")]

    @pytest.mark.asyncio
    async def test_never_submitted_is_not_forwarded(self, queue_service, make_submit, settings, clock):
        """A mission cancelled while still queued has no gateway job to stop."""
        gateway = ScriptedGateway(GatewayResponse.ok())
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))
        queue_service.cancel("M-1", "REQ-C")

        await dispatcher.run_cycle()

        assert gateway.cancelled == []
        assert gateway.submitted == []

    @pytest.mark.asyncio
    async def test_unreachable_gateway_retries_next_cycle(self, queue_service, make_submit, settings, clock):
        gateway = ScriptedGateway(GatewayResponse.ok(), cancel_outcome=UpstreamUnavailableError("gateway down"))
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()
        queue_service.cancel("M-1", "REQ-C", "FORCE")

        assert await dispatcher.forward_cancellations() == 0
        assert queue_service.get("M-1").unwrap().cancel_forwarded_utc is None
        assert dispatcher.get_stats().upstream_errors == 1

        gateway.cancel_outcome = GatewayResponse.ok()
        assert await dispatcher.forward_cancellations() == 1
        assert len(gateway.cancelled) == 2
        assert queue_service.get("M-1").unwrap().cancel_settled_utc is not None

    @pytest.mark.asyncio
    async def test_rejected_cancel_is_recorded(self, queue_service, make_submit, settings, clock):
        """A gateway refusal closes the hand-off and keeps the gateway's message."""
        gateway = ScriptedGateway(
            GatewayResponse.ok(), cancel_outcome=GatewayResponse.fail("100404", "Job M-1 not found")
        )
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))
        await dispatcher.dispatch_pending()
        queue_service.cancel("M-1", "REQ-C")

        await dispatcher.forward_cancellations()

        record = queue_service.get("M-1").unwrap()
        assert record.error_message == "Job M-1 not found"
        assert record.cancel_settled_utc is not None
        assert dispatcher.get_stats().cancels_forwarded == 0

    @pytest.mark.asyncio
    async def test_cancelled_while_submitting(self, queue_service, make_submit, settings, clock):
        """A cancel landing during the submit call is still forwarded."""

        class CancellingGateway(ScriptedGateway):
            async def submit_mission(self, request):
                queue_service.cancel(request.mission_code, "REQ-C", "FORCE")
                return await super().submit_mission(request)

        gateway = CancellingGateway(GatewayResponse.ok())
        dispatcher = Dispatcher(queue_service, gateway, settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))

        assert await dispatcher.dispatch_pending() == 0
        record = queue_service.get("M-1").unwrap()
        assert record.status == MissionStatus.CANCELLED
        assert record.submitted_to_amr_utc is not None

        await dispatcher.forward_cancellations()
        assert gateway.cancelled == [("REQ-C", "M-1")]


class TestChaining:
    @pytest.fixture
    def evaluator(self, db_conn, mission_repo, settings, clock):
        coords = NodeCoordinateRepository(db_conn)
        coords.upsert("A-END", "MAP-A", 0.0, 0.0)
        coords.upsert("A-NEAR", "MAP-A", 3.0, 4.0)
        return OpportunisticJobEvaluator(
            mission_repo,
            OpportunityRepository(db_conn),
            MapQueueConfigRepository(db_conn, settings=settings),
            coords,
            settings=settings,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_completed_robot_takes_nearby_job(
        self, queue_service, gateway, evaluator, make_submit, settings, clock
    ):
        """The waiting job is chained to the robot that just finished and then dispatched."""
        dispatcher = Dispatcher(queue_service, gateway, evaluator=evaluator, settings=settings, clock=clock)
        queue_service.submit(
            make_submit("M-1", steps=[MissionStep(1, "A-END")], map_code="MAP-A", robot_ids=["1001"])
        )
        clock.advance(1)
        queue_service.submit(
            make_submit("M-2", steps=[MissionStep(1, "A-NEAR")], map_code="MAP-A", robot_ids=["1001"])
        )

        await dispatcher.run_cycle()
        assert queue_service.get("M-2").unwrap().status == MissionStatus.PENDING

        clock.advance(25)
        await dispatcher.run_cycle()
        chained = queue_service.get("M-2").unwrap()
        assert chained.status == MissionStatus.ASSIGNED
        assert chained.assigned_robot_id == "1001"
        assert chained.is_opportunistic
        opportunity = evaluator.opportunities.get("1001", "M-1")
        assert opportunity.decision == OpportunityDecision.JOB_CHAINED
        assert dispatcher.get_stats().jobs_chained == 1

        await dispatcher.run_cycle()
        assert queue_service.get("M-2").unwrap().status == MissionStatus.SUBMITTED_TO_AMR
        assert gateway.jobs.get("M-2").assigned_robot_id == "1001"


class TestPositions:
    @pytest.mark.asyncio
    async def test_only_changes_are_reported(self, queue_service, gateway, make_submit, settings, clock):
        events = []
        dispatcher = Dispatcher(
            queue_service,
            gateway,
            position_listener=lambda robot, node: events.append((robot, node)),
            settings=settings,
            clock=clock,
        )

        first = await dispatcher.poll_positions()
        assert first == {"1001": "Sim1-1-2", "1003": "Sim1-1-2", "1005": "Sim1-1-2"}

        assert await dispatcher.poll_positions() == {}
        assert len(events) == 3

        queue_service.submit(make_submit("M-1", robot_ids=["1001"]))
        await dispatcher.dispatch_pending()
        assert await dispatcher.poll_positions() == {"1001": "A1"}
        assert events[-1] == ("1001", "A1")

    @pytest.mark.asyncio
    async def test_tick_skips_positions_without_listener(self, dispatcher):
        await dispatcher.tick()

        assert dispatcher.positions.get("1001") is None
        assert dispatcher.get_stats().tick_count == 1


class TestLifecycle:
    def test_start_and_stop(self, dispatcher):
        dispatcher.start()
        try:
            assert dispatcher.is_running
            assert dispatcher.health().healthy
        finally:
            dispatcher.stop()

        assert not dispatcher.is_running
        assert dispatcher.health().to_dict()["healthy"] is False

    @pytest.mark.asyncio
    async def test_tick_records_failures(self, queue_service, make_submit, settings, clock):
        class Broken(ScriptedGateway):
            async def query_jobs(self, query):
                raise RuntimeError("boom")

        dispatcher = Dispatcher(queue_service, Broken(GatewayResponse.ok()), settings=settings, clock=clock)
        queue_service.submit(make_submit("M-1"))

        await dispatcher.tick()

        assert dispatcher.get_stats().last_error == "boom"
