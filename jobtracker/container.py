"""
Wires the services together. The app builds one ``Services`` at import; tests
build their own against an in-memory database and a stub vendor.
"""

from dataclasses import dataclass
from typing import Optional

from .config import POLL_INTERVAL_SECONDS
from .db import SessionLocal
from .storage import JobStore
from .metrics import WebhookStats, webhook_stats
from .services.cache import Cache, build_cache
from .services.field_dictionary import FieldDictionary, field_dictionary
from .services.form_versions import FormRegistry, form_registry
from .services.idempotency import SubmissionLedger
from .services.ingestion import SubmissionPipeline
from .services.jobs import JobService
from .services.lifecycle import JobLifecycle
from .services.notifications import NotificationHub, notification_hub
from .services.poller import JobPoller
from .services.webhook import WebhookService


@dataclass
class Services:
    store: JobStore
    vendor: object
    notifier: NotificationHub
    ledger: SubmissionLedger
    lifecycle: JobLifecycle
    jobs: JobService
    pipeline: SubmissionPipeline
    webhook: WebhookService
    poller: JobPoller
    stats: WebhookStats


def build_services(session_factory=None, vendor=None, cache: Optional[Cache] = None,
                   notifier: Optional[NotificationHub] = None,
                   dictionary: FieldDictionary = field_dictionary, registry: FormRegistry = form_registry,
                   stats: WebhookStats = webhook_stats, clock=None,
                   poll_interval: float = POLL_INTERVAL_SECONDS) -> Services:
    store = JobStore(session_factory or SessionLocal)
    if vendor is None:
        from .services.vendor import FormsClient
        vendor = FormsClient(dictionary=dictionary, registry=registry)
    notifier = notifier or notification_hub
    ledger = SubmissionLedger(cache or build_cache())
    kwargs = {"clock": clock} if clock else {}
    lifecycle = JobLifecycle(store, vendor=vendor, notifier=notifier, **kwargs)
    pipeline = SubmissionPipeline(store, lifecycle, ledger, vendor=vendor, dictionary=dictionary,
                                  registry=registry, stats=stats)
    return Services(
        store=store,
        vendor=vendor,
        notifier=notifier,
        ledger=ledger,
        lifecycle=lifecycle,
        jobs=JobService(store, lifecycle),
        pipeline=pipeline,
        webhook=WebhookService(pipeline, vendor, ledger, registry=registry, stats=stats),
        poller=JobPoller(pipeline, store, interval=poll_interval),
        stats=stats,
    )
