from sqlalchemy import Column, String, Integer, Text, JSON, Index

from jobtracker.db import Base
from .types import UTCDateTime, utcnow, iso


class JobEvent(Base):
    """Append-only lifecycle log. Rows are never updated or deleted."""

    __tablename__ = "job_events"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(32), nullable=False)
    event_type = Column(String(48), nullable=False)  # state_change | pickup_dispatched | note | ...
    description = Column(Text, nullable=False, default="")
    actor = Column(String(32), nullable=False, default="system")  # csr | driver | technician | system
    actor_email = Column(String)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    timestamp = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_job_events_job_ts", "job_id", "timestamp"),
    )

    def to_dict(self):
        return {
            "seq": self.seq,
            "job_id": self.job_id,
            "event_type": self.event_type,
            "description": self.description,
            "actor": self.actor,
            "actor_email": self.actor_email,
            "metadata": self.meta or {},
            "timestamp": iso(self.timestamp),
        }
