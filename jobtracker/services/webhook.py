"""
Vendor push notifications.

The vendor posts a small XML document when a form is submitted::

    <submission-notification>
      <form><id>5716092</id><name>Emissions Service Log</name></form>
      <submission><id>123456789</id></submission>
      <dispatch-item><id>987</id></dispatch-item>
    </submission-notification>

Only the ids are in there, so the full submission is fetched before it is
handed to the ingestion pipeline. Delivery is at-least-once.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, NamedTuple, Optional, Union

from ..errors import InvalidRequest
from ..metrics import WebhookStats, webhook_stats
from .form_versions import FormRegistry, form_registry
from .idempotency import SubmissionLedger

logger = logging.getLogger("jobtracker.webhook")

SOURCE = "push_notification"


class Notification(NamedTuple):
    form_id: str
    form_name: Optional[str]
    submission_id: str
    dispatch_item_id: Optional[str]


def _child_value(node: Optional[ET.Element], name: str) -> Optional[str]:
    if node is None:
        return None
    child = node.find(name)
    if child is not None and child.text and child.text.strip():
        return child.text.strip()
    value = node.get(name)
    return value.strip() if value else None


def parse_notification_xml(body: Union[str, bytes]) -> Notification:
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise InvalidRequest(f"Failed to parse webhook XML: {e}") from e
    if root.tag != "submission-notification":
        raise InvalidRequest(f"Unexpected webhook root element {root.tag}")
    form = root.find("form")
    submission = root.find("submission")
    form_id = _child_value(form, "id")
    submission_id = _child_value(submission, "id") or _child_value(submission, "guid")
    if not form_id or not submission_id:
        raise InvalidRequest("Webhook notification is missing form or submission id")
    return Notification(
        form_id=form_id,
        form_name=_child_value(form, "name"),
        submission_id=submission_id,
        dispatch_item_id=_child_value(root.find("dispatch-item"), "id"),
    )


class WebhookService:

    def __init__(self, pipeline, vendor, ledger: SubmissionLedger, registry: FormRegistry = form_registry,
                 stats: WebhookStats = webhook_stats):
        self.pipeline = pipeline
        self.vendor = vendor
        self.ledger = ledger
        self.registry = registry
        self.stats = stats

    def handle(self, body: Union[str, bytes]) -> Dict[str, Any]:
        note = parse_notification_xml(body)
        log_extra = {"component": "webhook", "form_id": note.form_id, "submission_id": note.submission_id}

        if note.form_id not in self.registry.all_known_form_ids():
            self.stats.record_received(SOURCE)
            self.stats.record_discarded(SOURCE, "untracked_form")
            logger.info("Notification for untracked form ignored", extra=log_extra)
            return {"status": "ignored", "reason": "untracked_form", "form_id": note.form_id}

        # cheap check before the vendor round trip; the pipeline claim is authoritative
        if self.ledger.seen(note.submission_id):
            self.stats.record_received(SOURCE)
            self.stats.record_duplicate(SOURCE)
            logger.info("Duplicate notification ignored", extra=log_extra)
            return {"status": "duplicate", "submission_id": note.submission_id}

        submission = self.vendor.get_submission(note.submission_id)
        if not submission.form_id:
            submission = submission.model_copy(update={"form_id": note.form_id})
        result = self.pipeline.ingest(note.form_id, submission, SOURCE)
        logger.info("Notification handled", extra=dict(log_extra, outcome=result.outcome))
        return {"status": result.outcome, "submission_id": note.submission_id,
                "job_id": result.job_id, "form_type": result.form_type, "reason": result.reason}
