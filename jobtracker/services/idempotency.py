"""
Submission dedup ledger.

A submission id is claimed before any processing happens, so two deliveries of
the same submission racing each other (webhook plus manual refresh) only ever
produce one processing pass. Claims move ``processing`` -> ``done`` or
``failed``. A failed claim stays in place for push and manual deliveries; only
the poller may take it over again, since the poller is the retry path.
"""

import logging
from typing import Any, Dict

from .cache import Cache
from ..config import SUBMISSION_DEDUP_TTL_SECONDS

logger = logging.getLogger("jobtracker.idempotency")

PROCESSING = "processing"
DONE = "done"
FAILED = "failed"

RETRY_SOURCES = {"polling"}


class SubmissionLedger:

    def __init__(self, cache: Cache, ttl: int = SUBMISSION_DEDUP_TTL_SECONDS):
        self.cache = cache
        self.ttl = ttl

    @staticmethod
    def _key(submission_id: str) -> str:
        return "submission:" + str(submission_id)

    def claim(self, submission_id: str, source: str) -> bool:
        """True if the caller now owns processing of this submission."""
        key = self._key(submission_id)
        if self.cache.set_if_absent(key, PROCESSING, self.ttl):
            return True
        if source in RETRY_SOURCES and self.cache.compare_and_set(key, FAILED, PROCESSING, self.ttl):
            logger.info("Reclaimed failed submission for retry", extra={
                "component": "ingest", "submission_id": submission_id, "source": source})
            return True
        return False

    def seen(self, submission_id: str) -> bool:
        return self.cache.get(self._key(submission_id)) is not None

    def status(self, submission_id: str):
        return self.cache.get(self._key(submission_id))

    def mark_done(self, submission_id: str) -> None:
        self.cache.set(self._key(submission_id), DONE, self.ttl)

    def mark_failed(self, submission_id: str) -> None:
        self.cache.set(self._key(submission_id), FAILED, self.ttl)

    def stats(self) -> Dict[str, Any]:
        return {"entries": self.cache.size(), "ttl_seconds": self.ttl}
