from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AppointmentEventType(str, Enum):
    CREATED = "created"
    CONFIRMED = "confirmed"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"
    DELETED = "deleted"


class AppointmentEvent(BaseModel):
    """Domain event published for notification and calendar-sync consumers."""

    event_type: AppointmentEventType
    appointment_uuid: UUID
    business_id: int
    provider_id: int
    customer_id: str
    status: str
    scheduled_start: datetime
    scheduled_end: datetime
    occurred_at: datetime
    previous_appointment_uuid: Optional[UUID] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
