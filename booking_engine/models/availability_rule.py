import enum
import uuid
from datetime import date

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
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from booking_engine.core.database import Base


class WeekDay(enum.Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class AvailabilityRule(Base):
    """Recurring weekly availability for a provider, with break windows.

    Rules are never deleted: they are superseded or deactivated so that the
    history of past schedules is preserved.
    """

    __tablename__ = "availability_rules"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    # Schedule details
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Effective date range, both ends inclusive; None means open-ended
    effective_from = Column(Date, nullable=True)
    effective_until = Column(Date, nullable=True)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    superseded_by_id = Column(
        Integer, ForeignKey("availability_rules.id"), nullable=True
    )

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    breaks = relationship(
        "AvailabilityBreak",
        back_populates="rule",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AvailabilityBreak.start_time",
    )

    __table_args__ = (
        Index("ix_availability_rules_provider_weekday", "provider_id", "weekday"),
        CheckConstraint("end_time > start_time", name="check_rule_end_after_start"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="check_rule_weekday"),
    )

    def applies_on(self, day: date) -> bool:
        """Check if the rule is in force on a given date."""
        if not self.is_active or self.weekday != day.weekday():
            return False
        if self.effective_from and day < self.effective_from:
            return False
        if self.effective_until and day > self.effective_until:
            return False
        return True

    def __repr__(self):
        break_info = ""
        if self.breaks:
            break_info = ", breaks=" + ",".join(
                f"{b.start_time}-{b.end_time}" for b in self.breaks
            )
        return (
            f"<AvailabilityRule(id={self.id}, provider_id={self.provider_id}, "
            f"{WeekDay(self.weekday).name}: {self.start_time}-{self.end_time}"
            f"{break_info})>"
        )


class AvailabilityBreak(Base):
    """Break window inside an availability rule."""

    __tablename__ = "availability_breaks"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(Integer, ForeignKey("availability_rules.id"), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    rule = relationship("AvailabilityRule", back_populates="breaks")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_break_end_after_start"),
    )

    def __repr__(self):
        return f"<AvailabilityBreak(rule_id={self.rule_id}, {self.start_time}-{self.end_time})>"
