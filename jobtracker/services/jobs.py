"""
Job creation, CSR part entry, comments and dashboard metrics.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..config import OVERDUE_HOURS
from ..errors import InvalidRequest, InvalidState, JobNotFound
from ..models.job import DESCRIPTIVE_FIELDS
from ..models.job_part import CSR_PART_FIELDS
from .lifecycle import (
    JobLifecycle, ACTIVE_STATES, AT_SHOP, QUEUED_FOR_PICKUP, PICKED_UP, SERVICE_COMPLETE, STATES, as_utc,
)
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.jobs")

SHOP_CODES = {
    "ECS Memphis": "00",
    "ECS Nashville": "01",
    "ECS Atlanta": "02",
    "ECS Dallas": "03",
    "ECS Chicago": "04",
    "ECS Corporate": "99",
}
DEFAULT_SHOP_CODE = "01"

ARRIVAL_PATHS = ("pickup", "direct", "shop")

# CSR part edits are only accepted before the job is checked in at the shop
PART_EDIT_STATES = (QUEUED_FOR_PICKUP, PICKED_UP)


def shop_code(shop_name: Optional[str]) -> str:
    return SHOP_CODES.get((shop_name or "").strip(), DEFAULT_SHOP_CODE)


def format_job_id(shop_name: str, at: datetime) -> str:
    return f"ECS-{at.strftime('%Y%m%d%H%M%S')}-{shop_code(shop_name)}"


class SerialAllocator:
    """Issues ECS serials ``XX.MMDDYYYY.ZZ``, sequenced per shop and day."""

    def __init__(self, store):
        self.store = store
        self._lock = threading.Lock()

    def next_serial(self, shop_name: str, on_date: date) -> str:
        code = shop_code(shop_name)
        date_code = on_date.strftime("%m%d%Y")
        with self._lock:
            seq = self.store.next_serial_sequence(code, date_code)
        return f"{code}.{date_code}.{seq:02d}"


class JobService:

    def __init__(self, store, lifecycle: JobLifecycle, serials: Optional[SerialAllocator] = None):
        self.store = store
        self.lifecycle = lifecycle
        self.serials = serials or SerialAllocator(store)

    def _load(self, job_id: str):
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def generate_job_id(self, shop_name: str, at: Optional[datetime] = None) -> str:
        at = as_utc(at) or self.lifecycle.clock()
        for _ in range(60):
            job_id = format_job_id(shop_name, at)
            if not self.store.job_exists(job_id):
                return job_id
            at = at + timedelta(seconds=1)
        raise InvalidRequest("Could not allocate a free job id", {"shop_name": shop_name})

    def create_job(self, data: Dict[str, Any], arrival_path: str = "pickup",
                   pickup_driver_email: Optional[str] = None, pickup_notes: Optional[str] = None,
                   parts: Iterable[Dict[str, Any]] = (), actor_email: Optional[str] = None):
        """Create a job.

        ``pickup`` creates it queued for pickup and dispatches the driver right
        away; if that dispatch fails the job is deleted and the error raised.
        ``direct`` queues it without a dispatch. ``shop`` creates it already
        checked in at the shop.
        """
        if arrival_path not in ARRIVAL_PATHS:
            raise InvalidRequest(f"Unknown arrival path {arrival_path}", {"allowed": list(ARRIVAL_PATHS)})
        if arrival_path == "pickup" and not pickup_driver_email:
            raise InvalidRequest("A pickup driver is required for the pickup arrival path")
        for required in ("customer_name", "shop_name"):
            if not data.get(required):
                raise InvalidRequest(f"{required} is required")

        fields = {k: v for k, v in data.items() if k in DESCRIPTIVE_FIELDS and v is not None}
        if pickup_notes is not None:
            fields["pickup_notes"] = pickup_notes
        initial = AT_SHOP if arrival_path == "shop" else QUEUED_FOR_PICKUP
        now = self.lifecycle.clock()
        state_fields, event = self.lifecycle.initial_fields(initial, now)
        event["actor_email"] = actor_email
        event["meta"]["arrival_path"] = arrival_path
        fields.update(state_fields)
        fields["job_id"] = self.generate_job_id(fields["shop_name"], now)

        job = self.store.create_job(fields, [event])
        for part in parts:
            self._create_part(job, part)
        logger.info("Job created", extra={
            "component": "jobs", "job_id": job.job_id, "state": job.state, "arrival_path": arrival_path})

        if arrival_path == "pickup":
            try:
                job = self.lifecycle.dispatch_pickup(job.job_id, pickup_driver_email, pickup_notes,
                                                     actor_email=actor_email)
            except Exception as e:
                logger.error(f"Pickup dispatch failed, removing new job: {e}", extra={
                    "component": "jobs", "job_id": job.job_id})
                self.store.delete_job(job.job_id)
                raise
        return job

    # Parts

    def _create_part(self, job, fields: Dict[str, Any]):
        fields = {k: v for k, v in fields.items() if k in CSR_PART_FIELDS or k == "ecs_serial"}
        if not fields.get("ecs_serial"):
            on = (job.initiated_at or self.lifecycle.clock()).date()
            fields["ecs_serial"] = self.serials.next_serial(job.shop_name, on)
        return self.store.create_part(job.job_id, fields)

    def list_parts(self, job_id: str):
        self._load(job_id)
        return self.store.list_parts(job_id)

    def add_part(self, job_id: str, fields: Dict[str, Any]):
        job = self._load(job_id)
        if job.state not in PART_EDIT_STATES:
            raise InvalidState(job_id, job.state, PART_EDIT_STATES, "add_part")
        return self._create_part(job, fields)

    def update_part(self, job_id: str, part_id: str, fields: Dict[str, Any]):
        job = self._load(job_id)
        if job.state not in PART_EDIT_STATES:
            raise InvalidState(job_id, job.state, PART_EDIT_STATES, "update_part")
        part = self.store.get_part(part_id)
        if part is None or part.job_id != job_id:
            raise InvalidRequest(f"Part {part_id} does not belong to job {job_id}")
        return self.store.update_part(part_id, {k: v for k, v in fields.items() if k in CSR_PART_FIELDS})

    def check_in(self, job_id: str, parts: Iterable[Dict[str, Any]] = (), **kwargs):
        """Register any parts the CSR enters at the counter, then check in."""
        job = self._load(job_id)
        parts = list(parts)
        if parts and job.state not in PART_EDIT_STATES + (AT_SHOP,):
            raise InvalidState(job_id, job.state, PART_EDIT_STATES + (AT_SHOP,), "check_in")
        for part in parts:
            self._create_part(job, part)
        return self.lifecycle.check_in_at_shop(job_id, **kwargs)

    # Comments

    def add_comment(self, job_id: str, author: str, text: str):
        self._load(job_id)
        if not text or not text.strip():
            raise InvalidRequest("Comment text is empty")
        return self.store.create_comment(job_id, author, text.strip())

    def list_comments(self, job_id: str):
        self._load(job_id)
        return self.store.list_comments(job_id)

    # Dashboard

    def dashboard_metrics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = as_utc(now) or self.lifecycle.clock()
        jobs = self.store.list_jobs()
        by_state = {s: 0 for s in STATES}
        active = completed_today = overdue = 0
        turnaround: List[int] = []
        with_tech: List[int] = []
        overdue_before = now - timedelta(hours=OVERDUE_HOURS)
        service_reached = {SERVICE_COMPLETE} | {s for s in STATES if s not in ACTIVE_STATES}

        for job in jobs:
            by_state[job.state] = by_state.get(job.state, 0) + 1
            if job.state in ACTIVE_STATES:
                active += 1
                if (job.initiated_at and job.initiated_at < overdue_before
                        and job.service_complete_at is None and job.state not in service_reached):
                    overdue += 1
            if job.completed_at and job.completed_at.date() == now.date():
                completed_today += 1
            if job.total_turnaround is not None:
                turnaround.append(job.total_turnaround)
            if job.time_with_tech is not None:
                with_tech.append(job.time_with_tech)

        prometheus_metrics.set_active_jobs(active)
        return {
            "active_jobs": active,
            "completed_today": completed_today,
            "average_turnaround_minutes": round(sum(turnaround) / len(turnaround), 1) if turnaround else None,
            "average_time_with_tech_minutes": round(sum(with_tech) / len(with_tech), 1) if with_tech else None,
            "overdue_jobs": overdue,
            "by_state": by_state,
        }
