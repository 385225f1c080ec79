import uuid

from sqlalchemy import Column, String, Text, Index, UniqueConstraint

from jobtracker.db import Base
from .types import UTCDateTime, utcnow, iso

CSR_PART_FIELDS = (
    "part", "process", "filter_pn", "po_number", "mileage", "unit_vin",
    "gasket_clamps", "ec", "eg", "ek",
)

TECH_PART_FIELDS = (
    "ecs_part_number", "pass_or_fail", "require_repairs", "failed_reason", "repairs_performed",
)

PART_FIELDS = ("ecs_serial",) + CSR_PART_FIELDS + TECH_PART_FIELDS


class JobPart(Base):
    __tablename__ = "job_parts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(String(32), nullable=False)
    ecs_serial = Column(String(32))  # XX.MMDDYYYY.ZZ, unique within a job

    part = Column(String)
    process = Column(String)
    filter_pn = Column(String)
    po_number = Column(String)
    mileage = Column(String)
    unit_vin = Column(String)
    gasket_clamps = Column(String)
    ec = Column(String)
    eg = Column(String)
    ek = Column(String)

    ecs_part_number = Column(String)
    pass_or_fail = Column(String)
    require_repairs = Column(String)
    failed_reason = Column(Text)
    repairs_performed = Column(Text)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("job_id", "ecs_serial", name="uq_job_parts_job_serial"),
        Index("idx_job_parts_job", "job_id"),
    )

    def to_dict(self):
        data = {"id": self.id, "job_id": self.job_id}
        for name in PART_FIELDS:
            data[name] = getattr(self, name)
        data["created_at"] = iso(self.created_at)
        data["updated_at"] = iso(self.updated_at)
        return data
