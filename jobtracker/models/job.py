import uuid

from sqlalchemy import Column, String, Integer, Text, Index

from jobtracker.db import Base
from .types import UTCDateTime, utcnow, iso

# Columns that hold a state-entry or derived timestamp
TIMESTAMP_FIELDS = (
    "initiated_at", "picked_up_at", "at_shop_at", "in_service_at", "handoff_at",
    "service_complete_at", "ready_at", "picked_up_from_shop_at",
    "queued_for_delivery_at", "delivered_at", "cancelled_at", "completed_at",
)

# Workflow fields settable at creation and editable until a terminal state
DESCRIPTIVE_FIELDS = (
    "customer_name", "shop_name", "contact_name", "contact_number", "po_number",
    "customer_ship_to", "shop_handoff", "customer_instructions",
    "pickup_address", "pickup_notes", "delivery_address", "delivery_notes",
    "item_count", "assigned_technician", "delivery_method",
    "order_number", "order_number_2", "order_number_3", "order_number_4", "order_number_5",
    "cancellation_reason",
)

DISPATCH_FIELDS = (
    "pickup_dispatch_id", "pickup_driver_email", "service_dispatch_id",
    "delivery_dispatch_id", "delivery_driver_email",
)

METRIC_FIELDS = ("time_to_pickup", "time_at_shop", "time_with_tech", "total_turnaround")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(String(32), unique=True, nullable=False)  # ECS-YYYYMMDDHHMMSS-XX
    state = Column(String(32), nullable=False)

    customer_name = Column(String, nullable=False)
    shop_name = Column(String, nullable=False)
    contact_name = Column(String)
    contact_number = Column(String)
    po_number = Column(String)
    customer_ship_to = Column(String)
    shop_handoff = Column(String)  # technician address for the service leg
    customer_instructions = Column(Text)
    pickup_address = Column(Text)
    pickup_notes = Column(Text)
    delivery_address = Column(Text)
    delivery_notes = Column(Text)
    item_count = Column(Integer)
    assigned_technician = Column(String)
    delivery_method = Column(String)  # pickup | delivery
    order_number = Column(String)
    order_number_2 = Column(String)
    order_number_3 = Column(String)
    order_number_4 = Column(String)
    order_number_5 = Column(String)
    cancellation_reason = Column(Text)

    initiated_at = Column(UTCDateTime)
    picked_up_at = Column(UTCDateTime)
    at_shop_at = Column(UTCDateTime)
    in_service_at = Column(UTCDateTime)
    handoff_at = Column(UTCDateTime)
    service_complete_at = Column(UTCDateTime)
    ready_at = Column(UTCDateTime)
    picked_up_from_shop_at = Column(UTCDateTime)
    queued_for_delivery_at = Column(UTCDateTime)
    delivered_at = Column(UTCDateTime)
    cancelled_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)

    start_mode = Column(String(32))  # pickup_dispatch | shop_checkin
    completion_mode = Column(String(32))  # delivered | ready_for_pickup

    pickup_dispatch_id = Column(String)
    pickup_driver_email = Column(String)
    service_dispatch_id = Column(String)
    delivery_dispatch_id = Column(String)
    delivery_driver_email = Column(String)

    # minutes
    time_to_pickup = Column(Integer)
    time_at_shop = Column(Integer)
    time_with_tech = Column(Integer)
    total_turnaround = Column(Integer)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_jobs_state", "state"),
    )

    def to_dict(self):
        """Convert to dictionary for API responses"""
        data = {
            "id": self.id,
            "job_id": self.job_id,
            "state": self.state,
            "start_mode": self.start_mode,
            "completion_mode": self.completion_mode,
        }
        for name in DESCRIPTIVE_FIELDS + DISPATCH_FIELDS + METRIC_FIELDS:
            data[name] = getattr(self, name)
        for name in TIMESTAMP_FIELDS + ("created_at", "updated_at"):
            data[name] = iso(getattr(self, name))
        return data
