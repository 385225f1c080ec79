"""
Job lifecycle state machine.

Every state change goes through ``JobLifecycle.transition``: it checks the
edge, stamps the per-state timestamp (first write wins), recomputes the
turnaround metrics and appends exactly one ``state_change`` event in the same
transaction. Changes to one job are serialized with a per-job lock.

Dispatch operations call the forms vendor first and write nothing locally
unless the vendor returned a dispatch id.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import DispatchFailed, InvalidRequest, InvalidState, InvalidTransition, JobNotFound
from ..models import Job
from ..models.types import utcnow
from .form_versions import PICKUP, SERVICE, DELIVERY
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.lifecycle")

QUEUED_FOR_PICKUP = "queued_for_pickup"
PICKED_UP = "picked_up"
AT_SHOP = "at_shop"
IN_SERVICE = "in_service"
SERVICE_COMPLETE = "service_complete"
READY_FOR_PICKUP = "ready_for_pickup"
PICKED_UP_FROM_SHOP = "picked_up_from_shop"
QUEUED_FOR_DELIVERY = "queued_for_delivery"
DELIVERED = "delivered"
CANCELLED = "cancelled"

TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    QUEUED_FOR_PICKUP: (PICKED_UP, CANCELLED),
    PICKED_UP: (AT_SHOP, CANCELLED),
    AT_SHOP: (IN_SERVICE, CANCELLED),
    IN_SERVICE: (SERVICE_COMPLETE, CANCELLED),
    SERVICE_COMPLETE: (READY_FOR_PICKUP, QUEUED_FOR_DELIVERY, DELIVERED, CANCELLED),
    READY_FOR_PICKUP: (PICKED_UP_FROM_SHOP, CANCELLED),
    PICKED_UP_FROM_SHOP: (DELIVERED, CANCELLED),
    QUEUED_FOR_DELIVERY: (DELIVERED, CANCELLED),
    DELIVERED: (),
    CANCELLED: (),
}

STATES = tuple(TRANSITIONS)
TERMINAL_STATES = (DELIVERED, CANCELLED)
ACTIVE_STATES = tuple(s for s in STATES if s not in TERMINAL_STATES)

# initial state -> start mode
INITIAL_STATES = {
    QUEUED_FOR_PICKUP: "pickup_dispatch",
    AT_SHOP: "shop_checkin",
}

COMPLETION_STATES = (DELIVERED, READY_FOR_PICKUP)

STATE_TIMESTAMP = {
    QUEUED_FOR_PICKUP: "initiated_at",
    PICKED_UP: "picked_up_at",
    AT_SHOP: "at_shop_at",
    IN_SERVICE: "in_service_at",
    SERVICE_COMPLETE: "service_complete_at",
    READY_FOR_PICKUP: "ready_at",
    PICKED_UP_FROM_SHOP: "picked_up_from_shop_at",
    QUEUED_FOR_DELIVERY: "queued_for_delivery_at",
    DELIVERED: "delivered_at",
    CANCELLED: "cancelled_at",
}

# metric -> (from, to)
DURATIONS = {
    "time_to_pickup": ("initiated_at", "picked_up_at"),
    "time_at_shop": ("at_shop_at", "in_service_at"),
    "time_with_tech": ("in_service_at", "service_complete_at"),
    "total_turnaround": ("initiated_at", "completed_at"),
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    return max(int((end - start).total_seconds() // 60), 0)


def allowed_targets(state: str) -> Tuple[str, ...]:
    return TRANSITIONS.get(state, ())


class JobLifecycle:

    def __init__(self, store, vendor=None, notifier=None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.vendor = vendor
        self.notifier = notifier
        self.clock = clock
        # job id -> [lock, holders]; entries go away when the last holder leaves
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def job_lock(self, job_id: str):
        with self._locks_guard:
            entry = self._locks.setdefault(job_id, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(job_id, None)

    def _load(self, job_id: str) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def get_job(self, job_id: str) -> Job:
        return self._load(job_id)

    # Creation

    def initial_fields(self, initial_state: str, at: Optional[datetime] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Column values and creation event for a job entering ``initial_state``."""
        if initial_state not in INITIAL_STATES:
            raise InvalidTransition("(new)", "(none)", initial_state, INITIAL_STATES)
        ts = as_utc(at) or self.clock()
        fields = {
            "state": initial_state,
            "start_mode": INITIAL_STATES[initial_state],
            "initiated_at": ts,
            STATE_TIMESTAMP[initial_state]: ts,
        }
        event = {
            "event_type": "job_created",
            "description": f"Job created in {initial_state}",
            "actor": "csr",
            "meta": {"previous_state": None, "new_state": initial_state, "start_mode": fields["start_mode"]},
            "timestamp": ts,
        }
        return fields, event

    # Transitions

    def _plan_transition(self, job: Job, target: str, at: Optional[datetime], actor: str,
                         actor_email: Optional[str], updates: Optional[Dict[str, Any]],
                         meta: Optional[Dict[str, Any]], description: Optional[str]):
        current = job.state
        allowed = allowed_targets(current)
        if target not in allowed:
            raise InvalidTransition(job.job_id, current, target, allowed)

        ts = as_utc(at) or self.clock()
        event_meta = {"previous_state": current, "new_state": target}
        event_meta.update(meta or {})

        floor = getattr(job, STATE_TIMESTAMP[current])
        if floor is not None and ts < floor:
            logger.warning("Backdated timestamp precedes previous state, clamping", extra={
                "component": "lifecycle", "job_id": job.job_id, "target": target,
                "requested": ts.isoformat(), "clamped_to": floor.isoformat()})
            event_meta["timestamp_clamped"] = True
            event_meta["requested_timestamp"] = ts.isoformat()
            ts = floor
            prometheus_metrics.increment_timestamp_clamped()

        changes: Dict[str, Any] = dict(updates or {})
        changes["state"] = target

        field = STATE_TIMESTAMP[target]
        if getattr(job, field) is None:
            changes[field] = ts
        if target == IN_SERVICE and job.handoff_at is None:
            changes["handoff_at"] = ts
        if target in INITIAL_STATES and job.start_mode is None:
            changes["start_mode"] = INITIAL_STATES[target]
            if job.initiated_at is None:
                changes["initiated_at"] = ts
        if target in COMPLETION_STATES and job.completion_mode is None:
            changes["completion_mode"] = target
            changes["completed_at"] = ts

        def current_value(name):
            return changes[name] if name in changes else getattr(job, name)

        for metric, (start, end) in DURATIONS.items():
            value = minutes_between(current_value(start), current_value(end))
            if value is not None:
                changes[metric] = value

        event = {
            "event_type": "state_change",
            "description": description or f"State changed from {current} to {target}",
            "actor": actor,
            "actor_email": actor_email,
            "meta": event_meta,
            "timestamp": ts,
        }
        return changes, event

    def transition(self, job_id: str, target: str, at: Optional[datetime] = None, actor: str = "system",
                   actor_email: Optional[str] = None, updates: Optional[Dict[str, Any]] = None,
                   meta: Optional[Dict[str, Any]] = None, description: Optional[str] = None) -> Job:
        """Move a job to ``target``. ``at`` backdates the state timestamp."""
        with self.job_lock(job_id):
            job = self._load(job_id)
            changes, event = self._plan_transition(job, target, at, actor, actor_email, updates, meta, description)
            job = self.store.apply_changes(job_id, changes, [event], expected_state=event["meta"]["previous_state"])
            prometheus_metrics.increment_transition(event["meta"]["previous_state"], target)
            logger.info("Job state changed", extra={
                "component": "lifecycle", "job_id": job_id,
                "from_state": event["meta"]["previous_state"], "to_state": target})
            return job

    # Dispatches

    def _require_state(self, job: Job, expected: Iterable[str], action: str):
        expected = tuple(expected)
        if job.state not in expected:
            raise InvalidState(job.job_id, job.state, expected, action)

    def _dispatch(self, leg: str, job: Job, fields: Dict[str, Any], assignee: Optional[str],
                  loop_rows: Iterable[Dict[str, Any]] = ()) -> str:
        if self.vendor is None:
            raise DispatchFailed(f"Vendor call failed for {leg} dispatch: no vendor client configured", leg=leg)
        try:
            dispatch_id = self.vendor.create_dispatch(leg, fields, assignee, loop_rows=loop_rows,
                                                      name=f"{leg.title()} {job.job_id}")
        except Exception:
            prometheus_metrics.increment_dispatch(leg, "failed")
            raise
        if not dispatch_id:
            prometheus_metrics.increment_dispatch(leg, "failed")
            raise DispatchFailed(f"Vendor rejected {leg} dispatch: no dispatch id returned", leg=leg)
        prometheus_metrics.increment_dispatch(leg, "succeeded")
        return str(dispatch_id)

    def _notify(self, recipient: Optional[str], job_id: str, form_type: str):
        if self.notifier is None or not recipient:
            return
        try:
            self.notifier.notify_form_assigned(recipient, job_id, form_type)
        except Exception as e:
            logger.warning(f"Assignment notification failed: {e}", extra={
                "component": "lifecycle", "job_id": job_id, "recipient": recipient})

    def dispatch_pickup(self, job_id: str, driver_email: str, notes: Optional[str] = None,
                        actor_email: Optional[str] = None) -> Job:
        """Send the pickup form to a driver. Does not change state."""
        with self.job_lock(job_id):
            job = self._load(job_id)
            self._require_state(job, [QUEUED_FOR_PICKUP], "dispatch_pickup")
            notes = notes if notes is not None else job.pickup_notes
            fields = {
                "job_id": job.job_id,
                "customer_name": job.customer_name,
                "shop_name": job.shop_name,
                "contact_name": job.contact_name,
                "contact_number": job.contact_number,
                "po_number": job.po_number,
                "pickup_address": job.pickup_address,
                "driver_instructions": notes,
            }
            dispatch_id = self._dispatch(PICKUP, job, fields, driver_email)
            event = {
                "event_type": "pickup_dispatched",
                "description": f"Pickup dispatched to {driver_email}",
                "actor": "csr",
                "actor_email": actor_email,
                "meta": {"dispatch_id": dispatch_id, "driver_email": driver_email},
                "timestamp": self.clock(),
            }
            job = self.store.apply_changes(job_id, {
                "pickup_dispatch_id": dispatch_id,
                "pickup_driver_email": driver_email,
                "pickup_notes": notes,
            }, [event], expected_state=QUEUED_FOR_PICKUP)
        self._notify(driver_email, job_id, PICKUP)
        return job

    def dispatch_delivery(self, job_id: str, driver_email: str, address: Optional[str] = None,
                          notes: Optional[str] = None, order_numbers: Iterable[str] = (),
                          actor_email: Optional[str] = None) -> Job:
        """Send the delivery form to a driver and queue the job for delivery."""
        order_numbers = [o for o in order_numbers if o][:5]
        with self.job_lock(job_id):
            job = self._load(job_id)
            self._require_state(job, [SERVICE_COMPLETE], "dispatch_delivery")
            address = address or job.delivery_address or job.customer_ship_to
            notes = notes if notes is not None else job.delivery_notes
            order_cols = ["order_number", "order_number_2", "order_number_3", "order_number_4", "order_number_5"]
            orders = dict(zip(order_cols, order_numbers))
            fields = {
                "job_id": job.job_id,
                "customer_name": job.customer_name,
                "delivery_address": address,
                "driver_instructions": notes,
            }
            fields.update(orders)
            dispatch_id = self._dispatch(DELIVERY, job, fields, driver_email)

            updates = {
                "delivery_dispatch_id": dispatch_id,
                "delivery_driver_email": driver_email,
                "delivery_address": address,
                "delivery_notes": notes,
                "delivery_method": "delivery",
            }
            updates.update(orders)
            changes, state_event = self._plan_transition(
                job, QUEUED_FOR_DELIVERY, None, "csr", actor_email, updates, {"dispatch_id": dispatch_id}, None)
            dispatch_event = {
                "event_type": "delivery_dispatched",
                "description": f"Delivery dispatched to {driver_email}",
                "actor": "csr",
                "actor_email": actor_email,
                "meta": {"dispatch_id": dispatch_id, "driver_email": driver_email, "order_numbers": order_numbers},
                "timestamp": state_event["timestamp"],
            }
            job = self.store.apply_changes(job_id, changes, [state_event, dispatch_event],
                                           expected_state=SERVICE_COMPLETE)
            prometheus_metrics.increment_transition(SERVICE_COMPLETE, QUEUED_FOR_DELIVERY)
        self._notify(driver_email, job_id, DELIVERY)
        return job

    def dispatch_service(self, job_id: str, technician_email: Optional[str] = None,
                         actor_email: Optional[str] = None) -> Job:
        """Send the service form, prefilled with the job's parts, to the shop technician."""
        with self.job_lock(job_id):
            job = self._load(job_id)
            self._require_state(job, [AT_SHOP, IN_SERVICE], "dispatch_service")
            technician_email = technician_email or job.shop_handoff
            fields = {
                "job_id": job.job_id,
                "customer_name": job.customer_name,
                "shop_name": job.shop_name,
                "contact_name": job.contact_name,
                "contact_number": job.contact_number,
                "customer_ship_to": job.customer_ship_to,
                "customer_instructions": job.customer_instructions,
                "shop_handoff": technician_email,
            }
            rows = [p.to_dict() for p in self.store.list_parts(job_id)]
            dispatch_id = self._dispatch(SERVICE, job, fields, technician_email, loop_rows=rows)
            event = {
                "event_type": "service_dispatched",
                "description": f"Service form dispatched to {technician_email or 'unassigned'}",
                "actor": "csr",
                "actor_email": actor_email,
                "meta": {"dispatch_id": dispatch_id, "technician_email": technician_email, "parts": len(rows)},
                "timestamp": self.clock(),
            }
            job = self.store.apply_changes(job_id, {"service_dispatch_id": dispatch_id}, [event],
                                           expected_state=job.state)
        self._notify(technician_email, job_id, SERVICE)
        return job

    # Actions

    def mark_picked_up(self, job_id: str, item_count: Optional[int] = None, at: Optional[datetime] = None,
                       actor: str = "driver", actor_email: Optional[str] = None) -> Job:
        updates = {"item_count": item_count} if item_count is not None else None
        return self.transition(job_id, PICKED_UP, at=at, actor=actor, actor_email=actor_email, updates=updates)

    def check_in_at_shop(self, job_id: str, technician: Optional[str] = None, shop_handoff: Optional[str] = None,
                         dispatch_service: bool = False, at: Optional[datetime] = None,
                         actor_email: Optional[str] = None) -> Job:
        """Record arrival at the shop.

        A job that was never picked up by a driver passes through
        ``picked_up`` first. Checking in a job already at the shop is a no-op.
        """
        with self.job_lock(job_id):
            job = self._load(job_id)
            if job.state == AT_SHOP:
                return job
            if job.state == QUEUED_FOR_PICKUP:
                job = self.transition(job_id, PICKED_UP, at=at, actor="csr", actor_email=actor_email,
                                      meta={"direct_check_in": True},
                                      description="Direct check-in: job arrived at shop without a driver pickup")
            updates = {}
            if technician:
                updates["assigned_technician"] = technician
            if shop_handoff:
                updates["shop_handoff"] = shop_handoff
            job = self.transition(job_id, AT_SHOP, at=at, actor="csr", actor_email=actor_email, updates=updates)

            if dispatch_service and job.shop_handoff:
                try:
                    job = self.dispatch_service(job_id, job.shop_handoff, actor_email=actor_email)
                except DispatchFailed as e:
                    # check-in stands; the service form can be re-sent
                    logger.warning(f"Service dispatch after check-in failed: {e.message}", extra={
                        "component": "lifecycle", "job_id": job_id})
            return job

    def start_service(self, job_id: str, technician: Optional[str] = None, at: Optional[datetime] = None,
                      actor_email: Optional[str] = None) -> Job:
        updates = {"assigned_technician": technician} if technician else None
        return self.transition(job_id, IN_SERVICE, at=at, actor="technician", actor_email=actor_email,
                               updates=updates)

    def complete_service(self, job_id: str, at: Optional[datetime] = None, meta: Optional[Dict[str, Any]] = None) -> Job:
        return self.transition(job_id, SERVICE_COMPLETE, at=at, actor="technician", meta=meta)

    def mark_ready(self, job_id: str, at: Optional[datetime] = None, actor_email: Optional[str] = None) -> Job:
        return self.transition(job_id, READY_FOR_PICKUP, at=at, actor="csr", actor_email=actor_email,
                               updates={"delivery_method": "pickup"})

    def mark_picked_up_from_shop(self, job_id: str, at: Optional[datetime] = None,
                                 actor_email: Optional[str] = None) -> Job:
        return self.transition(job_id, PICKED_UP_FROM_SHOP, at=at, actor="csr", actor_email=actor_email)

    def mark_delivered(self, job_id: str, at: Optional[datetime] = None, actor: str = "driver",
                       actor_email: Optional[str] = None, delivery_method: Optional[str] = None,
                       order_numbers: Iterable[str] = ()) -> Job:
        updates: Dict[str, Any] = {}
        if delivery_method:
            updates["delivery_method"] = delivery_method
        cols = ["order_number", "order_number_2", "order_number_3", "order_number_4", "order_number_5"]
        updates.update(dict(zip(cols, [o for o in order_numbers if o])))
        return self.transition(job_id, DELIVERED, at=at, actor=actor, actor_email=actor_email, updates=updates)

    def cancel_job(self, job_id: str, reason: Optional[str] = None, actor_email: Optional[str] = None) -> Job:
        return self.transition(job_id, CANCELLED, actor="csr", actor_email=actor_email,
                               updates={"cancellation_reason": reason}, meta={"reason": reason})

    def update_details(self, job_id: str, updates: Dict[str, Any]) -> Job:
        """Edit workflow fields; refused once the job is terminal."""
        from ..models.job import DESCRIPTIVE_FIELDS

        unknown = set(updates) - set(DESCRIPTIVE_FIELDS)
        if unknown:
            raise InvalidRequest(f"Not editable: {', '.join(sorted(unknown))}")
        with self.job_lock(job_id):
            job = self._load(job_id)
            if job.state in TERMINAL_STATES:
                raise InvalidState(job_id, job.state, ACTIVE_STATES, "update_details")
            return self.store.apply_changes(job_id, updates, expected_state=job.state)

    # Annotations

    def add_note(self, job_id: str, text: str, actor: str = "csr", actor_email: Optional[str] = None):
        self._load(job_id)
        return self.store.create_event(job_id, "note", description=text, actor=actor, actor_email=actor_email,
                                       timestamp=self.clock())

    def timeline(self, job_id: str) -> List:
        self._load(job_id)
        return self.store.list_events(job_id)

    @staticmethod
    def state_machine_info() -> Dict[str, Any]:
        return {
            "states": list(STATES),
            "initial_states": dict(INITIAL_STATES),
            "terminal_states": list(TERMINAL_STATES),
            "transitions": {k: list(v) for k, v in TRANSITIONS.items()},
        }
