from typing import List
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps.business import BusinessContext, get_business_from_header
from booking_engine.api.deps.database import get_db
from booking_engine.api.errors import http_error
from booking_engine.core.exceptions import SchedulingError
from booking_engine.schemas.availability import Provider, ProviderCreate
from booking_engine.services.provider import ProviderService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/", response_model=Provider, status_code=status.HTTP_201_CREATED)
async def create_provider(
    provider_data: ProviderCreate,
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
):
    """Onboard a new bookable provider."""
    service = ProviderService(db, context.business_id)
    try:
        return await service.create_provider(provider_data)
    except Exception as e:
        await db.rollback()
        logger.error(
            "Failed to create provider", business_id=context.business_id, exc_info=e
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create provider",
        )


@router.get("/", response_model=List[Provider])
async def list_providers(
    include_inactive: bool = Query(False),
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
):
    service = ProviderService(db, context.business_id)
    return await service.list_providers(include_inactive=include_inactive)


@router.get("/{provider_uuid}", response_model=Provider)
async def get_provider(
    provider_uuid: UUID,
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
):
    service = ProviderService(db, context.business_id)
    try:
        return await service.get_provider(provider_uuid)
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{provider_uuid}/deactivate", response_model=Provider)
async def deactivate_provider(
    provider_uuid: UUID,
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a provider. Its history stays; no new slots or bookings."""
    service = ProviderService(db, context.business_id)
    try:
        return await service.deactivate_provider(provider_uuid)
    except SchedulingError as e:
        raise http_error(e)
