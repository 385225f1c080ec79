"""
Prometheus metrics for the job tracker
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

from ..config import APP_VERSION

# Build info
BUILD_INFO = Gauge(
    'jobtracker_build_info',
    'Build information',
    ['version']
)

# HTTP requests
REQUESTS_TOTAL = Counter(
    'jobtracker_requests_total',
    'Total number of HTTP requests',
    ['status_class', 'path_group']
)

# Submission ingestion
SUBMISSIONS_RECEIVED_TOTAL = Counter(
    'jobtracker_submissions_received_total',
    'Completed-form submissions received',
    ['source']
)

SUBMISSIONS_PROCESSED_TOTAL = Counter(
    'jobtracker_submissions_processed_total',
    'Submissions processed to completion',
    ['source', 'form_type']
)

SUBMISSIONS_DUPLICATE_TOTAL = Counter(
    'jobtracker_submissions_duplicate_total',
    'Submissions skipped because they were already claimed',
    ['source']
)

SUBMISSIONS_DISCARDED_TOTAL = Counter(
    'jobtracker_submissions_discarded_total',
    'Submissions discarded without processing',
    ['source', 'reason']
)

SUBMISSIONS_FAILED_TOTAL = Counter(
    'jobtracker_submissions_failed_total',
    'Submissions whose handler raised',
    ['source', 'form_type']
)

SUBMISSION_PROCESSING_SECONDS = Histogram(
    'jobtracker_submission_processing_seconds',
    'Time spent processing one submission',
    ['form_type'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Lifecycle
STATE_TRANSITIONS_TOTAL = Counter(
    'jobtracker_state_transitions_total',
    'Job state transitions',
    ['from_state', 'to_state']
)

TIMESTAMPS_CLAMPED_TOTAL = Counter(
    'jobtracker_timestamps_clamped_total',
    'Backdated transition timestamps clamped to the previous state'
)

DISPATCHES_TOTAL = Counter(
    'jobtracker_dispatches_total',
    'Outbound dispatches by leg and outcome',
    ['leg', 'outcome']
)

# Vendor API
VENDOR_REQUESTS_TOTAL = Counter(
    'jobtracker_vendor_requests_total',
    'Requests made to the forms vendor API',
    ['endpoint', 'status']
)

VENDOR_RATE_LIMIT_REMAINING = Gauge(
    'jobtracker_vendor_rate_limit_remaining',
    'Last reported remaining vendor API quota'
)

# Parts
PARTS_RECONCILED_TOTAL = Counter(
    'jobtracker_parts_reconciled_total',
    'Part rows touched by reconciliation',
    ['action']
)

# Poller
POLL_CYCLES_TOTAL = Counter(
    'jobtracker_poll_cycles_total',
    'Background poll cycles',
    ['outcome']
)

NOTIFICATIONS_TOTAL = Counter(
    'jobtracker_notifications_total',
    'Assignment notifications by outcome',
    ['outcome']
)

ACTIVE_JOBS = Gauge(
    'jobtracker_active_jobs',
    'Jobs not yet in a terminal state'
)


class PrometheusMetrics:
    """Service for managing Prometheus metrics."""

    def __init__(self):
        BUILD_INFO.labels(version=APP_VERSION).set(1)

    def increment_requests(self, status_code: int, path: str = "/unknown"):
        """Increment request counter."""
        if 200 <= status_code < 300:
            status_class = "2xx"
        elif 400 <= status_code < 500:
            status_class = "4xx"
        elif 500 <= status_code < 600:
            status_class = "5xx"
        else:
            status_class = "other"

        if path.startswith("/api/webhooks"):
            path_group = "webhooks"
        elif path.startswith("/api/jobs"):
            path_group = "jobs"
        elif path.startswith("/api/metrics"):
            path_group = "metrics"
        else:
            path_group = "other"

        REQUESTS_TOTAL.labels(status_class=status_class, path_group=path_group).inc()

    def increment_submission_received(self, source: str):
        SUBMISSIONS_RECEIVED_TOTAL.labels(source=source).inc()

    def increment_submission_processed(self, source: str, form_type: str):
        SUBMISSIONS_PROCESSED_TOTAL.labels(source=source, form_type=form_type).inc()

    def increment_submission_duplicate(self, source: str):
        SUBMISSIONS_DUPLICATE_TOTAL.labels(source=source).inc()

    def increment_submission_discarded(self, source: str, reason: str):
        SUBMISSIONS_DISCARDED_TOTAL.labels(source=source, reason=reason).inc()

    def increment_submission_failed(self, source: str, form_type: str):
        SUBMISSIONS_FAILED_TOTAL.labels(source=source, form_type=form_type).inc()

    def observe_processing_time(self, form_type: str, seconds: float):
        SUBMISSION_PROCESSING_SECONDS.labels(form_type=form_type).observe(seconds)

    def increment_transition(self, from_state: str, to_state: str):
        STATE_TRANSITIONS_TOTAL.labels(from_state=from_state or "none", to_state=to_state).inc()

    def increment_timestamp_clamped(self):
        TIMESTAMPS_CLAMPED_TOTAL.inc()

    def increment_dispatch(self, leg: str, outcome: str):
        DISPATCHES_TOTAL.labels(leg=leg, outcome=outcome).inc()

    def increment_vendor_request(self, endpoint: str, status):
        VENDOR_REQUESTS_TOTAL.labels(endpoint=endpoint, status=str(status)).inc()

    def set_vendor_rate_limit_remaining(self, remaining: int):
        VENDOR_RATE_LIMIT_REMAINING.set(remaining)

    def increment_parts_reconciled(self, action: str, count: int = 1):
        if count:
            PARTS_RECONCILED_TOTAL.labels(action=action).inc(count)

    def increment_poll_cycle(self, outcome: str):
        POLL_CYCLES_TOTAL.labels(outcome=outcome).inc()

    def increment_notification(self, outcome: str):
        NOTIFICATIONS_TOTAL.labels(outcome=outcome).inc()

    def set_active_jobs(self, count: int):
        ACTIVE_JOBS.set(count)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest()

    def get_content_type(self) -> str:
        """Get the content type for Prometheus metrics."""
        return CONTENT_TYPE_LATEST


# Global metrics instance
prometheus_metrics = PrometheusMetrics()
