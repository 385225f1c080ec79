"""
Relational accessors for jobs, events, parts and comments.

Every public method opens its own short session through ``session_scope`` and
returns detached ORM objects (the session factory does not expire on commit),
so callers can read attributes freely after the call returns.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, delete

from .db import SessionLocal, session_scope
from .errors import JobNotFound, StaleJobState
from .models import Job, JobEvent, JobPart, JobComment, SerialSequence
from .models.job_part import PART_FIELDS

logger = logging.getLogger("jobtracker.storage")


class JobStore:

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def _scope(self):
        return session_scope(self.session_factory)

    # Jobs

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._scope() as s:
            return s.execute(select(Job).where(Job.job_id == job_id)).scalar_one_or_none()

    def job_exists(self, job_id: str) -> bool:
        with self._scope() as s:
            return s.execute(select(Job.id).where(Job.job_id == job_id)).first() is not None

    def list_jobs(self, states: Optional[Iterable[str]] = None) -> List[Job]:
        with self._scope() as s:
            q = select(Job).order_by(Job.created_at.desc())
            if states:
                q = q.where(Job.state.in_(list(states)))
            return list(s.execute(q).scalars())

    def create_job(self, fields: Dict[str, Any], events: Iterable[Dict[str, Any]] = ()) -> Job:
        with self._scope() as s:
            job = Job(**fields)
            s.add(job)
            for ev in events:
                s.add(JobEvent(job_id=job.job_id, **ev))
            s.flush()
            return job

    def update_job(self, job_id: str, updates: Dict[str, Any]) -> Job:
        return self.apply_changes(job_id, updates)

    def delete_job(self, job_id: str) -> None:
        """Remove a job and anything hanging off it. Only used to undo a failed creation."""
        with self._scope() as s:
            for model in (JobEvent, JobPart, JobComment):
                s.execute(delete(model).where(model.job_id == job_id))
            s.execute(delete(Job).where(Job.job_id == job_id))
        logger.info("Job deleted", extra={"component": "storage", "job_id": job_id})

    def apply_changes(self, job_id: str, updates: Dict[str, Any],
                      events: Iterable[Dict[str, Any]] = (),
                      expected_state: Optional[str] = None) -> Job:
        """Update a job and append events in one transaction.

        When ``expected_state`` is given the write is refused with
        ``StaleJobState`` if the stored state moved underneath the caller.
        """
        with self._scope() as s:
            job = s.execute(
                select(Job).where(Job.job_id == job_id).with_for_update()
            ).scalar_one_or_none()
            if job is None:
                raise JobNotFound(job_id)
            if expected_state is not None and job.state != expected_state:
                raise StaleJobState(job_id, expected_state, job.state)
            for key, value in updates.items():
                setattr(job, key, value)
            for ev in events:
                s.add(JobEvent(job_id=job_id, **ev))
            s.flush()
            return job

    # Events

    def create_event(self, job_id: str, event_type: str, description: str = "",
                     actor: str = "system", actor_email: Optional[str] = None,
                     meta: Optional[Dict[str, Any]] = None, timestamp=None) -> JobEvent:
        with self._scope() as s:
            ev = JobEvent(job_id=job_id, event_type=event_type, description=description,
                          actor=actor, actor_email=actor_email, meta=meta or {})
            if timestamp is not None:
                ev.timestamp = timestamp
            s.add(ev)
            s.flush()
            return ev

    def list_events(self, job_id: str) -> List[JobEvent]:
        with self._scope() as s:
            q = (select(JobEvent)
                 .where(JobEvent.job_id == job_id)
                 .order_by(JobEvent.timestamp.asc(), JobEvent.seq.asc()))
            return list(s.execute(q).scalars())

    # Parts

    def list_parts(self, job_id: str) -> List[JobPart]:
        with self._scope() as s:
            q = select(JobPart).where(JobPart.job_id == job_id).order_by(JobPart.created_at, JobPart.ecs_serial)
            return list(s.execute(q).scalars())

    def get_part(self, part_id: str) -> Optional[JobPart]:
        with self._scope() as s:
            return s.get(JobPart, part_id)

    def get_part_by_serial(self, job_id: str, serial: str) -> Optional[JobPart]:
        with self._scope() as s:
            q = select(JobPart).where(JobPart.job_id == job_id, JobPart.ecs_serial == serial)
            return s.execute(q).scalar_one_or_none()

    def create_part(self, job_id: str, fields: Dict[str, Any]) -> JobPart:
        with self._scope() as s:
            part = JobPart(job_id=job_id, **_part_columns(fields))
            s.add(part)
            s.flush()
            return part

    def update_part(self, part_id: str, fields: Dict[str, Any]) -> JobPart:
        with self._scope() as s:
            part = s.get(JobPart, part_id)
            if part is None:
                raise KeyError(part_id)
            for key, value in _part_columns(fields).items():
                setattr(part, key, value)
            s.flush()
            return part

    # Comments

    def create_comment(self, job_id: str, author: str, text: str) -> JobComment:
        with self._scope() as s:
            comment = JobComment(job_id=job_id, author=author, text=text)
            s.add(comment)
            s.flush()
            return comment

    def list_comments(self, job_id: str) -> List[JobComment]:
        with self._scope() as s:
            q = select(JobComment).where(JobComment.job_id == job_id).order_by(JobComment.created_at)
            return list(s.execute(q).scalars())

    # Serial numbers

    def next_serial_sequence(self, shop_code: str, date_code: str) -> int:
        with self._scope() as s:
            row = s.execute(
                select(SerialSequence)
                .where(SerialSequence.shop_code == shop_code, SerialSequence.date_code == date_code)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                row = SerialSequence(shop_code=shop_code, date_code=date_code, last_sequence=0)
                s.add(row)
            row.last_sequence += 1
            return row.last_sequence


def _part_columns(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if k in PART_FIELDS}
