from datetime import date
from typing import List
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps.business import BusinessContext, get_business_from_header
from booking_engine.api.deps.database import get_db
from booking_engine.api.errors import http_error
from booking_engine.core.exceptions import SchedulingError
from booking_engine.schemas.availability import (
    AvailabilityRule,
    AvailabilityRuleCreate,
    AvailabilityRuleSupersede,
    BlockedDay,
    BlockedDayCreate,
    BlockedRangeCreate,
)
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.provider import ProviderService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _availability_service(
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
) -> AvailabilityService:
    return AvailabilityService(db, context.business_id, context.policy)


async def _provider_id(
    provider_uuid: UUID,
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
) -> int:
    try:
        provider = await ProviderService(db, context.business_id).get_provider(
            provider_uuid
        )
    except SchedulingError as e:
        raise http_error(e)
    return provider.id


# Recurring rules


@router.get("/providers/{provider_uuid}/rules", response_model=List[AvailabilityRule])
async def list_rules(
    include_inactive: bool = Query(False),
    provider_id: int = Depends(_provider_id),
    service: AvailabilityService = Depends(_availability_service),
):
    return await service.list_rules(provider_id, include_inactive=include_inactive)


@router.post(
    "/providers/{provider_uuid}/rules",
    response_model=AvailabilityRule,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule(
    rule_data: AvailabilityRuleCreate,
    provider_id: int = Depends(_provider_id),
    service: AvailabilityService = Depends(_availability_service),
):
    """Add a recurring weekly availability rule."""
    try:
        return await service.create_rule(provider_id, rule_data)
    except SchedulingError as e:
        raise http_error(e)


@router.post("/rules/{rule_uuid}/supersede", response_model=AvailabilityRule)
async def supersede_rule(
    rule_uuid: UUID,
    rule_data: AvailabilityRuleSupersede,
    service: AvailabilityService = Depends(_availability_service),
):
    """Replace a rule from a given date on, keeping the old one as history."""
    try:
        return await service.supersede_rule(rule_uuid, rule_data)
    except SchedulingError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/rules/{rule_uuid}/deactivate", response_model=AvailabilityRule)
async def deactivate_rule(
    rule_uuid: UUID,
    service: AvailabilityService = Depends(_availability_service),
):
    try:
        return await service.deactivate_rule(rule_uuid)
    except SchedulingError as e:
        raise http_error(e)


# Blocked days


@router.get("/providers/{provider_uuid}/blocked-days", response_model=List[BlockedDay])
async def list_blocked_days(
    start_date: date = Query(...),
    end_date: date = Query(...),
    provider_id: int = Depends(_provider_id),
    service: AvailabilityService = Depends(_availability_service),
):
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date",
        )
    return await service.list_blocked_days(provider_id, start_date, end_date)


@router.post(
    "/providers/{provider_uuid}/blocked-days",
    response_model=BlockedDay,
    status_code=status.HTTP_201_CREATED,
)
async def block_date(
    block_data: BlockedDayCreate,
    provider_id: int = Depends(_provider_id),
    service: AvailabilityService = Depends(_availability_service),
):
    """Block a whole date, or part of it when start and end times are given."""
    try:
        return await service.block_date(provider_id, block_data)
    except SchedulingError as e:
        raise http_error(e)


@router.post(
    "/providers/{provider_uuid}/blocked-days/range",
    response_model=List[BlockedDay],
    status_code=status.HTTP_201_CREATED,
)
async def block_date_range(
    range_data: BlockedRangeCreate,
    provider_id: int = Depends(_provider_id),
    service: AvailabilityService = Depends(_availability_service),
):
    """Block every date of a vacation or leave period."""
    try:
        return await service.block_dates(provider_id, range_data)
    except SchedulingError as e:
        raise http_error(e)


@router.delete("/blocked-days/{blocked_uuid}", status_code=status.HTTP_204_NO_CONTENT)
async def lift_block(
    blocked_uuid: UUID,
    service: AvailabilityService = Depends(_availability_service),
):
    try:
        await service.lift_block(blocked_uuid)
    except SchedulingError as e:
        raise http_error(e)
