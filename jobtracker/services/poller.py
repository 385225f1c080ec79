import logging
import threading
import time
from typing import Any, Dict, Optional

from ..config import POLL_INTERVAL_SECONDS
from .ingestion import AWAITING_FORM
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.poller")


class JobPoller:
    """Background loop that pulls completed forms for jobs waiting on one.

    A cycle that starts while the previous one is still running is skipped.
    Per-job failures are logged and the job is simply retried next cycle.
    """

    def __init__(self, pipeline, store, interval: float = POLL_INTERVAL_SECONDS):
        self.pipeline = pipeline
        self.store = store
        self.interval = interval
        self._cycle_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_cycle: Dict[str, Any] = {}

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="job-poller", daemon=True)
        self._thread.start()
        logger.info("Poller started", extra={"component": "poller", "interval_s": self.interval})

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Poller stopped", extra={"component": "poller"})

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Poll cycle crashed", extra={"component": "poller"})

    def run_cycle(self) -> Dict[str, Any]:
        if not self._cycle_lock.acquire(blocking=False):
            prometheus_metrics.increment_poll_cycle("skipped")
            logger.info("Previous poll cycle still running, skipping", extra={"component": "poller"})
            return {"skipped": True}
        started = time.time()
        checked = processed = errors = 0
        try:
            for job in self.store.list_jobs(AWAITING_FORM.keys()):
                checked += 1
                try:
                    outcome = self.pipeline.check_for_updates(job.job_id, source="polling")
                    if outcome.get("status") == "processed":
                        processed += 1
                except Exception as e:
                    errors += 1
                    logger.warning(f"Poll failed for job: {e}", extra={
                        "component": "poller", "job_id": job.job_id})
        finally:
            self._cycle_lock.release()
        self.last_cycle = {
            "skipped": False,
            "checked": checked,
            "processed": processed,
            "errors": errors,
            "duration_s": round(time.time() - started, 3),
            "finished_at": time.time(),
        }
        prometheus_metrics.increment_poll_cycle("errors" if errors else "completed")
        return self.last_cycle
