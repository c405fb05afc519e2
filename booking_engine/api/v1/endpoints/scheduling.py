from datetime import date
from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from booking_engine.api.deps.scheduling import get_scheduling_service
from booking_engine.api.errors import http_error
from booking_engine.core.exceptions import SchedulingError
from booking_engine.models.appointment import UrgencyLevel
from booking_engine.models.provider import Provider
from booking_engine.schemas.scheduling import (
    AvailableDaysQuery,
    AvailableDaysResponse,
    AvailableSlot,
    SlotGenerationResult,
)
from booking_engine.services.provider import ProviderService
from booking_engine.services.scheduling import SchedulingService

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _get_provider(service: SchedulingService, provider_uuid: UUID) -> Provider:
    return await ProviderService(service.db, service.business_id).get_provider(
        provider_uuid
    )


def _resolve_urgency(
    urgency: UrgencyLevel, triage_score: Optional[int]
) -> UrgencyLevel:
    if triage_score is not None:
        return UrgencyLevel.from_triage_score(triage_score)
    return urgency


@router.post(
    "/providers/{provider_uuid}/slots/generate", response_model=SlotGenerationResult
)
async def generate_slots(
    provider_uuid: UUID,
    day: date = Query(..., alias="date", description="Date to generate slots for"),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """
    Generate the slots of a provider's day and enforce the emergency quota.

    Safe to call repeatedly: existing and booked slots are kept, newly opened
    capacity gets new slots.
    """
    try:
        provider = await _get_provider(service, provider_uuid)
        return await service.ensure_slots_generated(provider.id, day)
    except SchedulingError as e:
        raise http_error(e)


@router.get("/providers/{provider_uuid}/slots", response_model=List[AvailableSlot])
async def get_available_slots(
    provider_uuid: UUID,
    day: date = Query(..., alias="date", description="Date to list slots for"),
    urgency: UrgencyLevel = Query(UrgencyLevel.LOW),
    triage_score: Optional[int] = Query(None, ge=1, le=5),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """
    Free slots of a day that a booking of the given urgency may take.

    Emergency-only slots are listed for high and emergency urgency only.
    """
    try:
        provider = await _get_provider(service, provider_uuid)
        slots = await service.get_available_slots(
            provider.id, day, _resolve_urgency(urgency, triage_score)
        )
    except SchedulingError as e:
        raise http_error(e)

    return [
        AvailableSlot(
            slot_uuid=slot.uuid,
            provider_uuid=provider.uuid,
            start_datetime=slot.start_datetime,
            end_datetime=slot.end_datetime,
            duration_minutes=slot.duration_minutes,
            emergency_only=slot.emergency_only,
        )
        for slot in slots
    ]


@router.get(
    "/providers/{provider_uuid}/available-days", response_model=AvailableDaysResponse
)
async def get_available_days(
    provider_uuid: UUID,
    start_date: date = Query(..., description="Start date (inclusive)"),
    end_date: date = Query(..., description="End date (inclusive)"),
    urgency: UrgencyLevel = Query(UrgencyLevel.LOW),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Days in a range that still have at least one bookable slot."""
    try:
        query = AvailableDaysQuery(
            start_date=start_date, end_date=end_date, urgency=urgency
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        provider = await _get_provider(service, provider_uuid)
        days = await service.get_available_days(
            provider.id, query.start_date, query.end_date, query.urgency
        )
    except SchedulingError as e:
        raise http_error(e)

    return AvailableDaysResponse(
        provider_uuid=provider.uuid,
        urgency=query.urgency,
        start_date=query.start_date,
        end_date=query.end_date,
        days=days,
    )


@router.get(
    "/providers/{provider_uuid}/suggested-days", response_model=AvailableDaysResponse
)
async def get_suggested_days(
    provider_uuid: UUID,
    urgency: UrgencyLevel = Query(UrgencyLevel.LOW),
    triage_score: Optional[int] = Query(None, ge=1, le=5),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """
    Bookable days inside the window suited to the urgency.

    High and emergency: today to two days out. Medium: one to five days out.
    Low: one to two weeks out.
    """
    level = _resolve_urgency(urgency, triage_score)
    try:
        provider = await _get_provider(service, provider_uuid)
        window_start, window_end, days = await service.suggest_days(provider.id, level)
    except SchedulingError as e:
        raise http_error(e)

    return AvailableDaysResponse(
        provider_uuid=provider.uuid,
        urgency=level,
        start_date=window_start,
        end_date=window_end,
        days=days,
    )
