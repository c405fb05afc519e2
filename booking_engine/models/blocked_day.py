import enum
import uuid

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.sql import func

from booking_engine.core.database import Base


class BlockType(enum.Enum):
    VACATION = "VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    PERSONAL = "PERSONAL"
    HOLIDAY = "HOLIDAY"
    OTHER = "OTHER"


class BlockedDay(Base):
    """Single-date override that removes or shrinks a provider's availability.

    Without ``start_time``/``end_time`` the whole date is blocked; with them only
    that window is removed. Lifting a block deletes the row.
    """

    __tablename__ = "blocked_days"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    blocked_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    block_type = Column(String(20), nullable=False, default=BlockType.VACATION.value)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_blocked_days_provider_date", "provider_id", "blocked_date"),
    )

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None or self.end_time is None

    def __repr__(self):
        window = "all day" if self.is_full_day else f"{self.start_time}-{self.end_time}"
        return (
            f"<BlockedDay(id={self.id}, provider_id={self.provider_id}, "
            f"{self.blocked_date} {window}, type={self.block_type})>"
        )
