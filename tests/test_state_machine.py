"""
Tests for the job lifecycle state machine
"""

import threading
from datetime import timedelta

import pytest

from jobtracker.errors import InvalidRequest, InvalidState, InvalidTransition, StaleJobState
from jobtracker.services.lifecycle import (
    JobLifecycle, TRANSITIONS, TERMINAL_STATES, minutes_between,
)

from conftest import START


def state_changes(services, job_id):
    return [e for e in services.lifecycle.timeline(job_id) if e.event_type == "state_change"]


class TestGraph:

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert TRANSITIONS[state] == ()

    def test_every_active_state_can_cancel(self):
        for state, targets in TRANSITIONS.items():
            if state not in TERMINAL_STATES:
                assert "cancelled" in targets

    def test_state_machine_info(self):
        info = JobLifecycle.state_machine_info()
        assert info["initial_states"] == {"queued_for_pickup": "pickup_dispatch", "at_shop": "shop_checkin"}
        assert info["transitions"]["service_complete"] == [
            "ready_for_pickup", "queued_for_delivery", "delivered", "cancelled"]

    def test_minutes_between(self):
        assert minutes_between(START, START + timedelta(minutes=95, seconds=59)) == 95
        assert minutes_between(START, None) is None
        assert minutes_between(START + timedelta(minutes=5), START) == 0


class TestCreation:

    def test_direct_job_starts_queued_for_pickup(self, make_job):
        job = make_job(path="direct")
        assert job.state == "queued_for_pickup"
        assert job.start_mode == "pickup_dispatch"
        assert job.initiated_at == START
        assert job.job_id == "ECS-20250101140000-01"

    def test_shop_job_starts_at_shop(self, services, make_job):
        job = make_job(path="shop", shop_name="ECS Dallas")
        assert job.state == "at_shop"
        assert job.start_mode == "shop_checkin"
        assert job.at_shop_at == START
        assert job.initiated_at == START
        assert job.job_id.endswith("-03")
        events = services.lifecycle.timeline(job.job_id)
        assert [e.event_type for e in events] == ["job_created"]
        assert events[0].meta["arrival_path"] == "shop"

    def test_job_id_collision_bumps_seconds(self, make_job):
        first = make_job()
        second = make_job()
        assert first.job_id == "ECS-20250101140000-01"
        assert second.job_id == "ECS-20250101140001-01"


class TestTransitions:

    def test_legal_transition_stamps_and_records_one_event(self, services, make_job, clock):
        job = make_job()
        clock.advance(minutes=45)
        job = services.lifecycle.mark_picked_up(job.job_id, item_count=3)

        assert job.state == "picked_up"
        assert job.item_count == 3
        assert job.picked_up_at == START + timedelta(minutes=45)
        assert job.time_to_pickup == 45

        changes = state_changes(services, job.job_id)
        assert len(changes) == 1
        assert changes[0].meta["previous_state"] == "queued_for_pickup"
        assert changes[0].meta["new_state"] == "picked_up"
        assert changes[0].timestamp == job.picked_up_at

    def test_illegal_transition_leaves_job_untouched(self, services, make_job):
        job = make_job()
        with pytest.raises(InvalidTransition) as exc:
            services.lifecycle.transition(job.job_id, "in_service")
        assert exc.value.details["allowed"] == ["cancelled", "picked_up"]

        job = services.lifecycle.get_job(job.job_id)
        assert job.state == "queued_for_pickup"
        assert job.in_service_at is None
        assert state_changes(services, job.job_id) == []

    def test_terminal_state_refuses_everything(self, services, make_job):
        job = make_job()
        services.lifecycle.cancel_job(job.job_id, reason="Customer called off")
        job = services.lifecycle.get_job(job.job_id)
        assert job.state == "cancelled"
        assert job.cancellation_reason == "Customer called off"
        assert job.cancelled_at == START
        with pytest.raises(InvalidTransition):
            services.lifecycle.transition(job.job_id, "picked_up")
        with pytest.raises(InvalidTransition):
            services.lifecycle.cancel_job(job.job_id)

    def test_full_shop_pickup_path_durations(self, services, make_job, clock):
        job = make_job(path="shop")
        clock.advance(minutes=30)
        services.lifecycle.start_service(job.job_id, technician="Tech One")
        clock.advance(minutes=90)
        services.lifecycle.complete_service(job.job_id)
        clock.advance(minutes=60)
        job = services.lifecycle.mark_ready(job.job_id)

        assert job.time_at_shop == 30
        assert job.time_with_tech == 90
        assert job.total_turnaround == 180
        assert job.completion_mode == "ready_for_pickup"
        assert job.completed_at == START + timedelta(minutes=180)
        assert job.delivery_method == "pickup"
        assert job.handoff_at == START + timedelta(minutes=30)
        assert job.assigned_technician == "Tech One"

        clock.advance(minutes=30)
        services.lifecycle.mark_picked_up_from_shop(job.job_id)
        clock.advance(minutes=5)
        job = services.lifecycle.mark_delivered(job.job_id, actor="csr")
        # completion is the first completion state reached
        assert job.state == "delivered"
        assert job.completion_mode == "ready_for_pickup"
        assert job.completed_at == START + timedelta(minutes=180)
        assert job.total_turnaround == 180
        assert job.delivered_at == START + timedelta(minutes=215)

    def test_backdated_timestamp_is_honoured(self, services, make_job, clock):
        job = make_job()
        clock.advance(hours=2)
        job = services.lifecycle.mark_picked_up(job.job_id, at=START + timedelta(minutes=10))
        assert job.picked_up_at == START + timedelta(minutes=10)
        assert job.time_to_pickup == 10

    def test_backdated_timestamp_before_previous_state_is_clamped(self, services, make_job, clock):
        job = make_job()
        clock.advance(hours=1)
        job = services.lifecycle.mark_picked_up(job.job_id, at=START - timedelta(hours=3))
        assert job.picked_up_at == START
        assert job.time_to_pickup == 0
        event = state_changes(services, job.job_id)[0]
        assert event.meta["timestamp_clamped"] is True
        assert event.meta["requested_timestamp"].startswith("2025-01-01T11:00:00")

    def test_timeline_is_ordered(self, services, make_job, clock):
        job = make_job()
        for step in ("mark_picked_up", "check_in_at_shop", "start_service", "complete_service"):
            clock.advance(minutes=10)
            getattr(services.lifecycle, step)(job.job_id)
        services.lifecycle.add_note(job.job_id, "Customer asked for a call")
        events = services.lifecycle.timeline(job.job_id)
        stamps = [e.timestamp for e in events]
        assert stamps == sorted(stamps)
        assert [e.meta.get("new_state") for e in events if e.event_type == "state_change"] == [
            "picked_up", "at_shop", "in_service", "service_complete"]
        assert events[-1].event_type == "note"

    def test_concurrent_transitions_apply_once(self, services, make_job):
        job = make_job()
        outcomes = []
        barrier = threading.Barrier(2)

        def worker():
            barrier.wait()
            try:
                services.lifecycle.mark_picked_up(job.job_id)
                outcomes.append("ok")
            except InvalidTransition:
                outcomes.append("rejected")

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "rejected"]
        assert len(state_changes(services, job.job_id)) == 1
        assert services.lifecycle._locks == {}

    def test_job_locks_are_released_after_use(self, services, make_job):
        job = make_job()
        services.lifecycle.mark_picked_up(job.job_id)
        services.lifecycle.cancel_job(job.job_id, reason="customer called")
        with pytest.raises(InvalidTransition):
            services.lifecycle.mark_picked_up(job.job_id)
        assert services.lifecycle._locks == {}

    def test_job_lock_is_reentrant_and_shared(self, services):
        lifecycle = services.lifecycle
        with lifecycle.job_lock("ECS-20250101140000-01"):
            with lifecycle.job_lock("ECS-20250101140000-01"):
                assert lifecycle._locks["ECS-20250101140000-01"][1] == 2
            assert lifecycle._locks["ECS-20250101140000-01"][1] == 1
        assert lifecycle._locks == {}

    def test_stale_expected_state_is_refused(self, services, make_job):
        job = make_job()
        with pytest.raises(StaleJobState):
            services.store.apply_changes(job.job_id, {"state": "at_shop"}, expected_state="picked_up")
        assert services.lifecycle.get_job(job.job_id).state == "queued_for_pickup"


class TestCheckIn:

    def test_direct_check_in_passes_through_picked_up(self, services, make_job, clock):
        job = make_job()
        clock.advance(minutes=20)
        job = services.lifecycle.check_in_at_shop(job.job_id, technician="Tech One")
        assert job.state == "at_shop"
        assert job.picked_up_at == job.at_shop_at == START + timedelta(minutes=20)
        assert job.assigned_technician == "Tech One"

        changes = state_changes(services, job.job_id)
        assert [c.meta["new_state"] for c in changes] == ["picked_up", "at_shop"]
        assert changes[0].meta["direct_check_in"] is True

    def test_double_check_in_is_a_no_op(self, services, make_job, clock):
        job = make_job()
        services.lifecycle.check_in_at_shop(job.job_id)
        count = len(services.lifecycle.timeline(job.job_id))
        clock.advance(minutes=5)
        again = services.lifecycle.check_in_at_shop(job.job_id)
        assert again.state == "at_shop"
        assert again.at_shop_at == START
        assert len(services.lifecycle.timeline(job.job_id)) == count

    def test_check_in_after_service_started_is_rejected(self, services, make_job):
        job = make_job(path="shop")
        services.lifecycle.start_service(job.job_id)
        with pytest.raises(InvalidTransition):
            services.lifecycle.check_in_at_shop(job.job_id)


class TestDetails:

    def test_update_details(self, services, make_job):
        job = make_job()
        job = services.lifecycle.update_details(job.job_id, {"contact_name": "Pat", "po_number": "PO-9"})
        assert job.contact_name == "Pat"
        assert job.po_number == "PO-9"

    def test_state_is_not_editable(self, services, make_job):
        job = make_job()
        with pytest.raises(InvalidRequest):
            services.lifecycle.update_details(job.job_id, {"state": "delivered"})

    def test_terminal_job_is_frozen(self, services, make_job):
        job = make_job()
        services.lifecycle.cancel_job(job.job_id)
        with pytest.raises(InvalidState):
            services.lifecycle.update_details(job.job_id, {"contact_name": "Pat"})
