from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

# Import enums from the model to avoid duplication
from booking_engine.models.appointment import AppointmentStatus, UrgencyLevel


class AppointmentBook(BaseModel):
    provider_uuid: UUID
    start_datetime: datetime
    duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    customer_id: str = Field(..., min_length=1, max_length=64)
    urgency: UrgencyLevel = UrgencyLevel.LOW
    triage_score: Optional[int] = Field(None, ge=1, le=5)
    reason: Optional[str] = None

    @model_validator(mode="after")
    def apply_triage_score(self):
        # A triage score, when supplied, decides the urgency
        if self.triage_score is not None:
            self.urgency = UrgencyLevel.from_triage_score(self.triage_score)
        return self


class AppointmentCancel(BaseModel):
    actor: str = Field(..., min_length=1, max_length=64)
    reason: Optional[str] = None


class AppointmentReschedule(BaseModel):
    new_start_datetime: datetime
    new_duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    actor: Optional[str] = Field(None, max_length=64)


# Response schemas
class Appointment(BaseModel):
    id: int
    uuid: UUID
    business_id: int
    provider_id: int
    slot_id: Optional[int] = None
    customer_id: str
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    status: AppointmentStatus
    previous_status: Optional[AppointmentStatus] = None
    status_changed_at: Optional[datetime] = None
    urgency: UrgencyLevel
    reason: Optional[str] = None

    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    no_show_at: Optional[datetime] = None

    # Cancellation details
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    late_cancellation: bool = False

    previous_appointment_id: Optional[int] = None
    is_active: bool

    class Config:
        from_attributes = True


class AppointmentList(BaseModel):
    appointments: List[Appointment]
    total_count: int
