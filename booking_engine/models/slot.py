import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func

from booking_engine.core.database import Base


class Slot(Base):
    """A concrete, dated, bookable interval for one provider.

    ``is_available`` is written only by the booking state machine and
    ``emergency_only`` only by the emergency quota enforcer.
    """

    __tablename__ = "slots"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    # Business-local wall clock
    slot_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    is_available = Column(Boolean, default=True, nullable=False)
    emergency_only = Column(Boolean, default=False, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "provider_id", "slot_date", "start_time", name="uq_slot_provider_date_start"
        ),
        Index("ix_slots_provider_date", "provider_id", "slot_date"),
        CheckConstraint("duration_minutes > 0", name="check_slot_positive_duration"),
    )

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)

    @property
    def end_datetime(self) -> datetime:
        return self.start_datetime + timedelta(minutes=self.duration_minutes)

    def __repr__(self):
        flags = []
        if not self.is_available:
            flags.append("booked")
        if self.emergency_only:
            flags.append("emergency")
        return (
            f"<Slot(id={self.id}, provider_id={self.provider_id}, "
            f"{self.slot_date} {self.start_time} +{self.duration_minutes}m"
            f"{' ' + ','.join(flags) if flags else ''})>"
        )
