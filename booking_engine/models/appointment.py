import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from booking_engine.core.database import Base
from booking_engine.core.exceptions import InvalidTransition


class AppointmentStatus(enum.Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class UrgencyLevel(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"

    @classmethod
    def from_triage_score(cls, score: int) -> "UrgencyLevel":
        """Map a 1-5 triage score onto an urgency level."""
        if score < 1 or score > 5:
            raise ValueError(f"Triage score must be between 1 and 5, got {score}")
        if score == 5:
            return cls.EMERGENCY
        if score == 4:
            return cls.HIGH
        if score == 3:
            return cls.MEDIUM
        return cls.LOW

    @property
    def can_use_emergency_slots(self) -> bool:
        return self in (UrgencyLevel.HIGH, UrgencyLevel.EMERGENCY)


class Appointment(Base):
    """A booking bound to one slot, or to a free-form time in unslotted mode.

    Cancellation is a status, not a deletion. A rescheduled appointment is
    cancelled and linked from its replacement through ``previous_appointment_id``.
    """

    __tablename__ = "appointments"

    ALLOWED_TRANSITIONS = {
        AppointmentStatus.REQUESTED: [
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
        ],
        AppointmentStatus.CONFIRMED: [
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        ],
        AppointmentStatus.IN_PROGRESS: [AppointmentStatus.COMPLETED],
        AppointmentStatus.COMPLETED: [],  # Final state
        AppointmentStatus.CANCELLED: [],  # Final state
        AppointmentStatus.NO_SHOW: [],  # Final state
    }

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=True)

    # Customer identity is owned by an external system
    customer_id = Column(String(64), nullable=False, index=True)

    # Scheduling details, business-local wall clock
    scheduled_start = Column(DateTime, nullable=False, index=True)
    scheduled_end = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Status management
    status = Column(
        String(20),
        nullable=False,
        default=AppointmentStatus.REQUESTED.value,
        index=True,
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime, nullable=True)

    urgency = Column(String(20), nullable=False, default=UrgencyLevel.LOW.value)
    reason = Column(Text, nullable=True)

    # Lifecycle stamps
    confirmed_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    no_show_at = Column(DateTime, nullable=True)

    # Cancellation management
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    late_cancellation = Column(Boolean, default=False, nullable=False)

    # Rescheduling lineage
    previous_appointment_id = Column(
        Integer, ForeignKey("appointments.id"), nullable=True
    )

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "scheduled_end > scheduled_start", name="check_end_after_start"
        ),
        CheckConstraint("duration_minutes > 0", name="check_positive_duration"),
        Index(
            "ix_appointments_provider_window",
            "provider_id",
            "scheduled_start",
            "scheduled_end",
        ),
    )

    # Relationships
    slot = relationship("Slot")
    provider = relationship("Provider")
    previous_appointment = relationship("Appointment", remote_side=[id])

    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        """Check if appointment can transition to the new status."""
        current = AppointmentStatus(self.status)
        return new_status in self.ALLOWED_TRANSITIONS.get(current, [])

    def transition_to(self, new_status: AppointmentStatus, at: datetime) -> None:
        """Move to ``new_status``, stamping the matching lifecycle timestamp.

        Raises InvalidTransition for any move not listed in ALLOWED_TRANSITIONS.
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransition(self.status, new_status.value)

        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = at

        if new_status == AppointmentStatus.CONFIRMED:
            self.confirmed_at = at
        elif new_status == AppointmentStatus.IN_PROGRESS:
            self.started_at = at
        elif new_status == AppointmentStatus.COMPLETED:
            self.completed_at = at
        elif new_status == AppointmentStatus.CANCELLED:
            self.cancelled_at = at
        elif new_status == AppointmentStatus.NO_SHOW:
            self.no_show_at = at

    @property
    def is_active(self) -> bool:
        """Anything but a cancellation keeps the time occupied."""
        return self.status != AppointmentStatus.CANCELLED.value

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.scheduled_start < end and start < self.scheduled_end

    @property
    def urgency_level(self) -> UrgencyLevel:
        return UrgencyLevel(self.urgency)

    def is_inside_cancellation_window(
        self, window_hours: float, current_time: Optional[datetime] = None
    ) -> bool:
        """True when ``current_time`` falls within ``window_hours`` of the start."""
        if current_time is None:
            current_time = datetime.now()
        remaining = self.scheduled_start - current_time
        return remaining.total_seconds() < window_hours * 3600

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, status='{self.status}', "
            f"start='{self.scheduled_start}', provider_id={self.provider_id}, "
            f"customer_id='{self.customer_id}')>"
        )
