from sqlalchemy import Column, String, Integer

from jobtracker.db import Base


class SerialSequence(Base):
    """Last ECS serial sequence issued per shop code and calendar day."""

    __tablename__ = "serial_sequences"

    shop_code = Column(String(2), primary_key=True)
    date_code = Column(String(8), primary_key=True)  # MMDDYYYY
    last_sequence = Column(Integer, nullable=False, default=0)
