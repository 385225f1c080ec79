import time
import threading
from collections import deque
from typing import Dict, Any, Optional

from .services.prometheus_metrics import prometheus_metrics


class WebhookStats:
    """In-process submission counters behind the JSON metrics endpoint.

    Mirrors the Prometheus counters so the dashboard can show them without a
    scraper. All mutation happens under one lock.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.reset()

    def reset(self):
        self.totals = {
            "received": 0,
            "processed": 0,
            "duplicates": 0,
            "discarded": 0,
            "failed": 0,
        }
        self.by_source: Dict[str, int] = {}
        self.by_form: Dict[str, int] = {}
        self.last_received: Dict[str, float] = {}
        self.processing_ms = deque(maxlen=100)
        self.started_at = time.time()

    def record_received(self, source: str):
        with self.lock:
            self.totals["received"] += 1
            self.by_source[source] = self.by_source.get(source, 0) + 1
        prometheus_metrics.increment_submission_received(source)

    def record_processed(self, source: str, form_type: str, elapsed_s: float):
        with self.lock:
            self.totals["processed"] += 1
            self.by_form[form_type] = self.by_form.get(form_type, 0) + 1
            self.last_received[form_type] = time.time()
            self.processing_ms.append(elapsed_s * 1000.0)
        prometheus_metrics.increment_submission_processed(source, form_type)
        prometheus_metrics.observe_processing_time(form_type, elapsed_s)

    def record_duplicate(self, source: str):
        with self.lock:
            self.totals["duplicates"] += 1
        prometheus_metrics.increment_submission_duplicate(source)

    def record_discarded(self, source: str, reason: str):
        with self.lock:
            self.totals["discarded"] += 1
        prometheus_metrics.increment_submission_discarded(source, reason)

    def record_failed(self, source: str, form_type: str):
        with self.lock:
            self.totals["failed"] += 1
        prometheus_metrics.increment_submission_failed(source, form_type)

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            samples = list(self.processing_ms)
            avg: Optional[float] = round(sum(samples) / len(samples), 2) if samples else None
            return {
                "totals": dict(self.totals),
                "by_source": dict(self.by_source),
                "by_form": dict(self.by_form),
                "last_received": dict(self.last_received),
                "avg_processing_ms": avg,
                "uptime_s": round(time.time() - self.started_at, 1),
            }


webhook_stats = WebhookStats()
