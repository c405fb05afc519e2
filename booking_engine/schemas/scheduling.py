from datetime import date, datetime, time
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from booking_engine.core.config import settings
from booking_engine.models.appointment import UrgencyLevel


class TimeWindow(BaseModel):
    """Half-open wall-clock window [start, end) within a single day."""

    start: time
    end: time

    class Config:
        frozen = True

    @model_validator(mode="after")
    def validate_order(self):
        if self.end <= self.start:
            raise ValueError(f"Window end {self.end} must be after start {self.start}")
        return self

    @property
    def duration_minutes(self) -> int:
        start = self.start.hour * 60 + self.start.minute
        end = self.end.hour * 60 + self.end.minute
        return end - start

    def on(self, day: date) -> tuple[datetime, datetime]:
        return datetime.combine(day, self.start), datetime.combine(day, self.end)

    def __str__(self):
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


class BookingPolicy(BaseModel):
    """Per-business booking policy and capability set.

    Stored as JSON on ``Business.policy``; missing keys fall back to the
    engine-wide settings.
    """

    auto_confirm: bool = True
    cancellation_window_hours: float = Field(
        default_factory=lambda: settings.CANCELLATION_WINDOW_HOURS, ge=0
    )
    emergency_quota_fraction: float = Field(
        default_factory=lambda: settings.EMERGENCY_QUOTA_MIN_FRACTION, ge=0, le=1
    )
    enforce_emergency_quota: bool = True
    allow_unslotted_booking: bool = False
    holiday_country: Optional[str] = Field(None, min_length=2, max_length=3)
    holiday_eve_closing_time: Optional[time] = None
    capabilities: List[str] = Field(default_factory=list)

    @classmethod
    def from_business(cls, business: Any) -> "BookingPolicy":
        return cls.model_validate(getattr(business, "policy", None) or {})

    def has_capability(self, name: str) -> bool:
        return name in self.capabilities


class AvailableSlot(BaseModel):
    slot_uuid: UUID
    provider_uuid: UUID
    start_datetime: datetime
    end_datetime: datetime
    duration_minutes: int
    emergency_only: bool


class SlotGenerationResult(BaseModel):
    provider_uuid: UUID
    slot_date: date
    total_slots: int
    available_slots: int
    emergency_slots: int
    emergency_converted: int


class AvailableDaysResponse(BaseModel):
    provider_uuid: UUID
    urgency: UrgencyLevel
    start_date: date
    end_date: date
    days: List[date] = Field(default_factory=list)


class AvailableDaysQuery(BaseModel):
    start_date: date
    end_date: date
    urgency: UrgencyLevel = UrgencyLevel.LOW

    @model_validator(mode="after")
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (self.end_date - self.start_date).days > 62:
            raise ValueError("Date range cannot exceed 62 days")
        return self
