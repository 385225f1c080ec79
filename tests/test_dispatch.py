"""
Tests for outbound dispatches: vendor first, local writes only on success
"""

import pytest
from prometheus_client import REGISTRY

from jobtracker.errors import DispatchFailed, FieldMapError, InvalidState


def event_types(services, job_id):
    return [e.event_type for e in services.lifecycle.timeline(job_id)]


def to_service_complete(services, job_id):
    services.lifecycle.check_in_at_shop(job_id)
    services.lifecycle.start_service(job_id)
    services.lifecycle.complete_service(job_id)


class TestPickupDispatch:

    def test_pickup_dispatch_then_pickup(self, services, vendor, notifier, make_job):
        job = make_job(path="direct", pickup_address="12 Dock Rd")
        job = services.lifecycle.dispatch_pickup(job.job_id, "D-1@example.com", notes="Gate code 4411")

        assert job.state == "queued_for_pickup"
        assert job.pickup_dispatch_id == vendor.dispatches[0]["id"]
        assert job.pickup_driver_email == "D-1@example.com"
        sent = vendor.dispatches[0]
        assert sent["form_type"] == "pickup"
        assert sent["assignee"] == "D-1@example.com"
        assert sent["fields"]["job_id"] == job.job_id
        assert sent["fields"]["pickup_address"] == "12 Dock Rd"
        assert sent["fields"]["driver_instructions"] == "Gate code 4411"
        assert notifier.sent == [("D-1@example.com", job.job_id, "pickup")]

        job = services.lifecycle.mark_picked_up(job.job_id, item_count=3)
        assert job.state == "picked_up"
        assert job.item_count == 3
        assert event_types(services, job.job_id).count("state_change") == 1
        assert event_types(services, job.job_id) == ["job_created", "pickup_dispatched", "state_change"]

    def test_pickup_path_dispatches_on_create(self, services, vendor, make_job):
        job = make_job(path="pickup")
        assert len(vendor.dispatches) == 1
        assert job.pickup_dispatch_id == vendor.dispatches[0]["id"]
        assert job.pickup_driver_email == "driver@example.com"

    def test_failed_dispatch_on_create_removes_job(self, services, vendor, make_job):
        vendor.fail = True
        with pytest.raises(DispatchFailed) as exc:
            make_job(path="pickup", parts=[{"part": "DPF"}])
        assert exc.value.vendor_status == 500
        assert "Vendor rejected pickup dispatch" in exc.value.message
        assert services.store.list_jobs() == []
        assert services.store.list_parts("ECS-20250101140000-01") == []
        assert services.store.list_events("ECS-20250101140000-01") == []

    @pytest.mark.parametrize("error", [
        FieldMapError("field_map_5657148.json is not valid JSON"),
        ValueError("Expecting value: line 1 column 1 (char 0)"),
    ])
    def test_any_dispatch_error_on_create_removes_job(self, services, vendor, make_job, monkeypatch, error):
        def explode(*args, **kwargs):
            raise error

        monkeypatch.setattr(vendor, "create_dispatch", explode)
        failed = REGISTRY.get_sample_value(
            "jobtracker_dispatches_total", {"leg": "pickup", "outcome": "failed"}) or 0.0

        with pytest.raises(type(error)):
            make_job(path="pickup", parts=[{"part": "DPF"}])

        assert services.store.list_jobs() == []
        assert services.store.list_parts("ECS-20250101140000-01") == []
        assert services.store.list_events("ECS-20250101140000-01") == []
        assert REGISTRY.get_sample_value(
            "jobtracker_dispatches_total", {"leg": "pickup", "outcome": "failed"}) == failed + 1

    def test_failed_dispatch_leaves_job_unchanged(self, services, vendor, notifier, make_job):
        job = make_job(path="direct")
        before = job.to_dict()
        vendor.fail = True
        with pytest.raises(DispatchFailed):
            services.lifecycle.dispatch_pickup(job.job_id, "D-1@example.com")

        after = services.lifecycle.get_job(job.job_id).to_dict()
        assert after == before
        assert event_types(services, job.job_id) == ["job_created"]
        assert notifier.sent == []

    def test_missing_dispatch_id_is_a_failure(self, services, vendor, make_job, monkeypatch):
        job = make_job(path="direct")
        monkeypatch.setattr(vendor, "create_dispatch", lambda *a, **kw: None)
        with pytest.raises(DispatchFailed):
            services.lifecycle.dispatch_pickup(job.job_id, "D-1@example.com")
        assert services.lifecycle.get_job(job.job_id).pickup_dispatch_id is None

    def test_pickup_dispatch_requires_queued_job(self, services, vendor, make_job):
        job = make_job(path="shop")
        with pytest.raises(InvalidState):
            services.lifecycle.dispatch_pickup(job.job_id, "D-1@example.com")
        assert vendor.dispatches == []


class TestDeliveryDispatch:

    def test_delivery_dispatch_queues_job(self, services, vendor, notifier, make_job):
        job = make_job(path="direct", customer_ship_to="99 Yard Ln")
        to_service_complete(services, job.job_id)

        job = services.lifecycle.dispatch_delivery(job.job_id, "D-2@example.com",
                                                   order_numbers=["SO-1", "", "SO-2"])
        assert job.state == "queued_for_delivery"
        assert job.delivery_dispatch_id == vendor.dispatches[-1]["id"]
        assert job.delivery_address == "99 Yard Ln"
        assert job.delivery_method == "delivery"
        assert job.order_number == "SO-1"
        assert job.order_number_2 == "SO-2"
        assert vendor.dispatches[-1]["fields"]["order_number_2"] == "SO-2"
        assert ("D-2@example.com", job.job_id, "delivery") in notifier.sent

        types = event_types(services, job.job_id)
        assert types[-2:] == ["state_change", "delivery_dispatched"]

    def test_failed_delivery_dispatch_keeps_state(self, services, vendor, make_job):
        job = make_job(path="direct")
        to_service_complete(services, job.job_id)
        vendor.fail = True
        with pytest.raises(DispatchFailed):
            services.lifecycle.dispatch_delivery(job.job_id, "D-2@example.com", address="1 Main St")
        job = services.lifecycle.get_job(job.job_id)
        assert job.state == "service_complete"
        assert job.delivery_dispatch_id is None
        assert job.queued_for_delivery_at is None


class TestServiceDispatch:

    def test_check_in_sends_parts_to_technician(self, services, vendor, notifier, make_job):
        job = make_job(path="direct", parts=[{"part": "DPF"}, {"part": "DOC"}])
        job = services.jobs.check_in(job.job_id, shop_handoff="tech@example.com", dispatch_service=True)

        assert job.state == "at_shop"
        assert job.service_dispatch_id == vendor.dispatches[-1]["id"]
        sent = vendor.dispatches[-1]
        assert sent["form_type"] == "service"
        assert sent["assignee"] == "tech@example.com"
        assert [r["ecs_serial"] for r in sent["loop_rows"]] == ["01.01012025.01", "01.01012025.02"]
        assert ("tech@example.com", job.job_id, "service") in notifier.sent

    def test_failed_service_dispatch_does_not_undo_check_in(self, services, vendor, make_job):
        job = make_job(path="direct")
        vendor.fail = True
        job = services.jobs.check_in(job.job_id, shop_handoff="tech@example.com", dispatch_service=True)
        assert job.state == "at_shop"
        assert job.service_dispatch_id is None


def test_broken_notifier_does_not_fail_dispatch(services, notifier, make_job):
    def broken(message):
        raise RuntimeError("socket gone")

    notifier.register("d-1@example.com", broken)
    job = make_job(path="direct")
    job = services.lifecycle.dispatch_pickup(job.job_id, "D-1@example.com")
    assert job.pickup_dispatch_id is not None
