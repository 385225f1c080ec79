# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobtracker.container import build_services
from jobtracker.db import init_db
from jobtracker.errors import DispatchFailed
from jobtracker.metrics import WebhookStats
from jobtracker.schemas.submission import Submission
from jobtracker.services.cache import InMemoryCache
from jobtracker.services.field_dictionary import FieldDictionary
from jobtracker.services.form_versions import FormRegistry
from jobtracker.services.notifications import NotificationHub

START = datetime(2025, 1, 1, 14, 0, tzinfo=timezone.utc)

# current form ids
SERVICE_FORM = "5716092"
LEGACY_SERVICE_FORM = "5695685"
PICKUP_FORM = "5657148"
DELIVERY_FORM = "5714828"


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubVendor:
    """Records dispatches instead of calling the forms vendor."""

    def __init__(self, registry: FormRegistry):
        self.registry = registry
        self.dispatches = []
        self.fail = False
        self.submissions = {}
        self.names = {}
        self._next_id = 1000

    def create_dispatch(self, form_type, fields, assignee_email, loop_rows=(), name=None, description=None):
        if self.fail:
            raise DispatchFailed(f"Vendor rejected {form_type} dispatch (HTTP 500)", leg=form_type,
                                 vendor_status=500, vendor_body="boom")
        self._next_id += 1
        self.dispatches.append({
            "form_type": form_type,
            "fields": dict(fields),
            "assignee": assignee_email,
            "loop_rows": list(loop_rows),
            "id": str(self._next_id),
        })
        return str(self._next_id)

    def display_name(self, user_id):
        return self.names.get(user_id)

    def get_submission(self, submission_id):
        return self.submissions[str(submission_id)]

    def find_submission_for_job(self, form_type, job_id):
        for sub in self.submissions.values():
            if self.registry.form_type_for(sub.form_id) == form_type and sub.find_job_id() == job_id:
                return sub
        return None

    def add(self, submission: Submission) -> Submission:
        self.submissions[submission.submission_id] = submission
        return submission


class RecordingNotifier(NotificationHub):

    def __init__(self):
        super().__init__()
        self.sent = []

    def notify_form_assigned(self, recipient, job_id, form_type):
        self.sent.append((recipient, job_id, form_type))
        return super().notify_form_assigned(recipient, job_id, form_type)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return FormRegistry()


@pytest.fixture
def dictionary(registry):
    return FieldDictionary(registry=registry)


@pytest.fixture
def vendor(registry):
    return StubVendor(registry)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(session_factory, vendor, notifier, dictionary, registry, clock):
    return build_services(
        session_factory=session_factory,
        vendor=vendor,
        cache=InMemoryCache(),
        notifier=notifier,
        dictionary=dictionary,
        registry=registry,
        stats=WebhookStats(),
        clock=clock,
        poll_interval=3600,
    )


@pytest.fixture
def client(services):
    from jobtracker.main import create_app

    app = create_app(services, create_tables=False, start_poller=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_job(services):
    """Create a job through the job service; ``path`` picks the arrival path."""

    def _make(path="direct", shop_name="ECS Nashville", parts=(), **fields):
        data = {"customer_name": "Acme Freight", "shop_name": shop_name}
        data.update(fields)
        driver = "driver@example.com" if path == "pickup" else None
        return services.jobs.create_job(data, arrival_path=path, pickup_driver_email=driver, parts=parts)

    return _make


@pytest.fixture
def make_submission(dictionary):
    """Build a vendor submission from (entry_id, value[, group_key]) tuples.

    Labels are filled in from the form's field map, as the vendor does.
    """

    def _make(form_id, submission_id, rows, submitted_at=None, user_id=None):
        fmap = dictionary.load(form_id) or {"_by_id": {}}
        responses = []
        for row in rows:
            entry = {"entry_id": row[0], "value": row[1], "label": fmap["_by_id"].get(row[0])}
            if len(row) > 2 and row[2] is not None:
                entry["multi_key"] = row[2]
            responses.append(entry)
        return Submission.model_validate({
            "form_id": form_id,
            "id": submission_id,
            "submitted_at": submitted_at.isoformat() if submitted_at else None,
            "user_id": user_id,
            "responses": responses,
        })

    return _make
