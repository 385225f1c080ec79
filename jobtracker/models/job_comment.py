import uuid

from sqlalchemy import Column, String, Text, Index

from jobtracker.db import Base
from .types import UTCDateTime, utcnow, iso


class JobComment(Base):
    __tablename__ = "job_comments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(String(32), nullable=False)
    author = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_job_comments_job", "job_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "author": self.author,
            "text": self.text,
            "created_at": iso(self.created_at),
        }
