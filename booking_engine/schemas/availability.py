from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from booking_engine.models.availability_rule import WeekDay
from booking_engine.models.blocked_day import BlockType
from booking_engine.models.provider import ProviderKind


class ProviderBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    kind: ProviderKind = ProviderKind.PRACTITIONER
    default_slot_duration_minutes: int = Field(30, gt=0, le=24 * 60)


class ProviderCreate(ProviderBase):
    pass


class Provider(ProviderBase):
    id: int
    uuid: UUID
    business_id: int
    is_active: bool
    deactivated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BreakWindow(BaseModel):
    start_time: time
    end_time: time

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def validate_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("Break end time must be after start time")
        return self


class AvailabilityRuleBase(BaseModel):
    weekday: WeekDay
    start_time: time
    end_time: time
    breaks: List[BreakWindow] = Field(default_factory=list)
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None

    @model_validator(mode="after")
    def validate_rule(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        for window in self.breaks:
            if window.start_time < self.start_time or window.end_time > self.end_time:
                raise ValueError("Break must be within working hours")
        if (
            self.effective_from
            and self.effective_until
            and self.effective_until < self.effective_from
        ):
            raise ValueError("effective_until must not be before effective_from")
        return self


class AvailabilityRuleCreate(AvailabilityRuleBase):
    pass


class AvailabilityRuleSupersede(AvailabilityRuleBase):
    # The replacement must say when it takes over
    effective_from: date


class AvailabilityRule(AvailabilityRuleBase):
    id: int
    uuid: UUID
    provider_id: int
    is_active: bool
    superseded_by_id: Optional[int] = None

    class Config:
        from_attributes = True


class BlockedDayCreate(BaseModel):
    blocked_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    block_type: BlockType = BlockType.VACATION
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_window(self):
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("Partial blocks need both start_time and end_time")
        if self.start_time and self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class BlockedRangeCreate(BaseModel):
    start_date: date
    end_date: date
    block_type: BlockType = BlockType.VACATION
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        if (self.end_date - self.start_date).days > 365:
            raise ValueError("A block cannot span more than a year")
        return self


class BlockedDay(BaseModel):
    id: int
    uuid: UUID
    provider_id: int
    blocked_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    block_type: BlockType
    reason: Optional[str] = None
    is_full_day: bool

    class Config:
        from_attributes = True
