"""
Submission ingestion.

A completed form can reach us three ways: the vendor's push notification, a
user pressing "check for updates", or the background poller. Whatever the
source, ``SubmissionPipeline.ingest`` makes sure each vendor submission is
processed once:

1. find the job id in the responses (discard if there is none),
2. map the form id to pickup / service / delivery (discard if unknown),
3. claim the submission id in the ledger (skip if already claimed),
4. run the handler for the form type and mark the claim done or failed.

Handlers only move a job forward when the edge is legal from its current
state, so replays of an already-applied submission are harmless.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from ..errors import JobIdNotFound, JobNotFound, UnknownFormType
from ..metrics import WebhookStats, webhook_stats
from ..schemas.submission import Submission
from .field_dictionary import FieldDictionary, field_dictionary
from .form_versions import FormRegistry, form_registry, PICKUP, SERVICE, DELIVERY
from .gps import extract_gps_timestamp, resolve_handoff_time
from .idempotency import SubmissionLedger
from .lifecycle import (
    JobLifecycle, as_utc, allowed_targets,
    QUEUED_FOR_PICKUP, PICKED_UP, AT_SHOP, IN_SERVICE, QUEUED_FOR_DELIVERY, DELIVERED,
)
from .parts import reconcile_parts

logger = logging.getLogger("jobtracker.ingest")

SOURCES = ("push_notification", "manual_check", "polling")

# state a job sits in while waiting for each form
AWAITING_FORM = {
    QUEUED_FOR_PICKUP: PICKUP,
    AT_SHOP: SERVICE,
    IN_SERVICE: SERVICE,
    QUEUED_FOR_DELIVERY: DELIVERY,
}


class IngestResult(NamedTuple):
    outcome: str  # processed | duplicate | discarded
    submission_id: Optional[str] = None
    job_id: Optional[str] = None
    form_type: Optional[str] = None
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self._asdict()


class SubmissionPipeline:

    def __init__(self, store, lifecycle: JobLifecycle, ledger: SubmissionLedger, vendor=None,
                 dictionary: FieldDictionary = field_dictionary, registry: FormRegistry = form_registry,
                 stats: WebhookStats = webhook_stats):
        self.store = store
        self.lifecycle = lifecycle
        self.ledger = ledger
        self.vendor = vendor
        self.dictionary = dictionary
        self.registry = registry
        self.stats = stats
        self.handlers = {
            PICKUP: self._handle_pickup,
            SERVICE: self._handle_service,
            DELIVERY: self._handle_delivery,
        }

    def _discard(self, submission: Submission, source: str, error, reason: str, **fields) -> IngestResult:
        self.stats.record_discarded(source, reason)
        logger.warning(f"Submission discarded: {error.message}", extra={
            "component": "ingest", "submission_id": submission.submission_id, "source": source,
            "reason": reason, **fields})
        return IngestResult("discarded", submission.submission_id, fields.get("job_id"),
                            fields.get("form_type"), reason)

    def ingest(self, form_id, submission: Submission, source: str) -> IngestResult:
        if source not in SOURCES:
            raise ValueError(f"unknown submission source {source}")
        self.stats.record_received(source)
        form_id = str(form_id or submission.form_id)

        job_id = submission.find_job_id()
        if job_id is None:
            return self._discard(submission, source, JobIdNotFound(submission.submission_id), "job_id_not_found")

        form_type = self.registry.form_type_for(form_id)
        if form_type is None:
            return self._discard(submission, source, UnknownFormType(form_id), "unknown_form_type",
                                 job_id=job_id, form_id=form_id)

        if not self.store.job_exists(job_id):
            return self._discard(submission, source, JobNotFound(job_id), "job_not_found",
                                 job_id=job_id, form_type=form_type)

        if not self.ledger.claim(submission.submission_id, source):
            self.stats.record_duplicate(source)
            logger.info("Duplicate submission skipped", extra={
                "component": "ingest", "submission_id": submission.submission_id, "source": source,
                "job_id": job_id})
            return IngestResult("duplicate", submission.submission_id, job_id, form_type)

        started = time.perf_counter()
        try:
            details = self.handlers[form_type](job_id, submission)
        except Exception:
            self.ledger.mark_failed(submission.submission_id)
            self.stats.record_failed(source, form_type)
            logger.exception("Submission processing failed", extra={
                "component": "ingest", "submission_id": submission.submission_id, "source": source,
                "job_id": job_id, "form_type": form_type})
            raise

        self.ledger.mark_done(submission.submission_id)
        self.stats.record_processed(source, form_type, time.perf_counter() - started)
        logger.info("Submission processed", extra={
            "component": "ingest", "submission_id": submission.submission_id, "source": source,
            "job_id": job_id, "form_type": form_type})
        return IngestResult("processed", submission.submission_id, job_id, form_type, details=details)

    # Helpers

    def _event_time(self, submission: Submission) -> datetime:
        """GPS fix time if the device recorded one, else submission time, else now."""
        gps = extract_gps_timestamp(submission.value_of("gps", self.dictionary))
        return gps or as_utc(submission.submitted_at) or self.lifecycle.clock()

    def _user_name(self, user_id: Optional[str]) -> Optional[str]:
        if self.vendor is None or not user_id:
            return None
        return self.vendor.display_name(user_id)

    def _driver_author(self, submission: Submission) -> str:
        name = self._user_name(submission.user_id)
        if name:
            return f"{name} (Driver)"
        return f"Driver (ID: {submission.user_id})" if submission.user_id else "Driver"

    def _technician_author(self, submission: Submission) -> str:
        name = self._user_name(submission.user_id)
        if name:
            return name
        return f"Technician (ID: {submission.user_id})" if submission.user_id else "Technician"

    def _driver_notes(self, job_id: str, submission: Submission) -> bool:
        notes = submission.value_of("driver_notes", self.dictionary)
        if not notes:
            return False
        self.store.create_comment(job_id, self._driver_author(submission), f"[Driver Notes] {notes}")
        return True

    def _skip(self, job_id: str, state: str, target: str, submission: Submission):
        logger.info("Job not in a state this form advances, skipping transition", extra={
            "component": "ingest", "job_id": job_id, "state": state, "target": target,
            "submission_id": submission.submission_id})

    # Handlers

    def _handle_pickup(self, job_id: str, submission: Submission) -> Dict[str, Any]:
        job = self.lifecycle.get_job(job_id)
        details: Dict[str, Any] = {"transitions": []}
        if PICKED_UP in allowed_targets(job.state):
            item_count = None
            raw = submission.value_of("item_count", self.dictionary)
            if raw:
                try:
                    item_count = int(float(raw))
                except ValueError:
                    logger.warning("Unparseable item count", extra={"component": "ingest", "value": raw})
            self.lifecycle.mark_picked_up(job_id, item_count=item_count, at=self._event_time(submission),
                                          actor_email=None)
            details["transitions"].append(PICKED_UP)
        else:
            self._skip(job_id, job.state, PICKED_UP, submission)
        details["driver_notes"] = self._driver_notes(job_id, submission)
        return details

    def _handle_service(self, job_id: str, submission: Submission) -> Dict[str, Any]:
        job = self.lifecycle.get_job(job_id)
        details: Dict[str, Any] = {"transitions": []}
        completed_at = as_utc(submission.submitted_at) or self.lifecycle.clock()
        technician = self._technician_author(submission)

        if job.state in (AT_SHOP, IN_SERVICE):
            if job.state == AT_SHOP:
                handoff = resolve_handoff_time(
                    submission.value_of("gps", self.dictionary),
                    submission.value_of("handoff_date", self.dictionary),
                    submission.value_of("handoff_time", self.dictionary),
                    completed_at,
                )
                meta = {"handoff_source": "observed", "handoff_confidence": "low"}
                at = completed_at
                if handoff is not None:
                    at = handoff.timestamp
                    meta = {"handoff_source": handoff.source, "handoff_confidence": handoff.confidence}
                self.lifecycle.transition(job_id, IN_SERVICE, at=at, actor="technician",
                                          updates={"assigned_technician": job.assigned_technician or technician},
                                          meta=meta)
                details["transitions"].append(IN_SERVICE)
                details["handoff"] = meta
            self.lifecycle.complete_service(job_id, at=completed_at,
                                            meta={"submission_id": submission.submission_id})
            details["transitions"].append("service_complete")
        else:
            self._skip(job_id, job.state, "service_complete", submission)

        parts = reconcile_parts(self.store, job_id, submission.responses, submission.form_id,
                                self.dictionary, self.registry)
        details["parts"] = parts._asdict()
        details["comments"] = self._additional_comments(job_id, submission, technician)
        return details

    def _additional_comments(self, job_id: str, submission: Submission, author: str) -> int:
        seen = set()
        written = 0
        for r in submission.responses_for("additional_comments", self.dictionary):
            if not r.text:
                continue
            key = (r.group_key or "").strip()
            if key in seen:
                continue
            seen.add(key)
            label = f"[Additional Comments - {key}]" if key else "[Additional Comments]"
            self.store.create_comment(job_id, author, f"{label} {r.text}")
            written += 1
        return written

    def _handle_delivery(self, job_id: str, submission: Submission) -> Dict[str, Any]:
        job = self.lifecycle.get_job(job_id)
        details: Dict[str, Any] = {"transitions": []}
        if DELIVERED in allowed_targets(job.state):
            delivered_to = submission.value_of("delivered_to", self.dictionary)
            self.lifecycle.transition(job_id, DELIVERED, at=self._event_time(submission), actor="driver",
                                      meta={"delivered_to": delivered_to} if delivered_to else None)
            details["transitions"].append(DELIVERED)
        else:
            self._skip(job_id, job.state, DELIVERED, submission)
        details["driver_notes"] = self._driver_notes(job_id, submission)
        return details

    # Pull

    def check_for_updates(self, job_id: str, source: str = "manual_check") -> Dict[str, Any]:
        """Look the job's pending form up at the vendor and ingest it if completed."""
        job = self.lifecycle.get_job(job_id)
        form_type = AWAITING_FORM.get(job.state)
        if form_type is None:
            return {"job_id": job_id, "status": "nothing_pending", "state": job.state}
        if self.vendor is None:
            return {"job_id": job_id, "status": "vendor_unavailable", "state": job.state}
        submission = self.vendor.find_submission_for_job(form_type, job_id)
        if submission is None:
            return {"job_id": job_id, "status": "no_submission", "form_type": form_type, "state": job.state}
        result = self.ingest(submission.form_id, submission, source)
        job = self.lifecycle.get_job(job_id)
        return {"job_id": job_id, "status": result.outcome, "form_type": form_type,
                "state": job.state, "result": result.to_dict()}
