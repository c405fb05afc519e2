from typing import Optional
from uuid import UUID

import structlog
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps.database import get_db
from booking_engine.models.business import Business
from booking_engine.schemas.scheduling import BookingPolicy

logger = structlog.get_logger(__name__)


class BusinessContext:
    """Business context for multi-tenant operations."""

    def __init__(self, business: Business):
        self.business = business
        self.business_id = business.id
        self.business_uuid = business.uuid
        self.timezone = business.timezone
        self.policy = BookingPolicy.from_business(business)
        self.is_active = business.is_active


async def get_business_context(
    business_uuid: UUID, db: AsyncSession = Depends(get_db)
) -> BusinessContext:
    """
    Get business context for multi-tenant operations.

    This dependency ensures that:
    1. The business exists
    2. The business is active
    3. All subsequent operations are scoped to this business
    """
    result = await db.execute(select(Business).where(Business.uuid == business_uuid))
    business = result.scalar_one_or_none()

    if not business:
        logger.warning("Business not found for context", business_uuid=str(business_uuid))
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Business not found"
        )

    if not business.is_active:
        logger.warning(
            "Inactive business access attempted", business_uuid=str(business_uuid)
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Business is inactive"
        )

    return BusinessContext(business)


async def get_business_from_header(
    x_business_id: Optional[str] = Header(
        None, description="Business UUID for multi-tenant operations"
    ),
    db: AsyncSession = Depends(get_db),
) -> BusinessContext:
    """Resolve the tenant from the ``X-Business-ID`` header.

    Authentication happens upstream; the caller is trusted to send the
    business it acts for.
    """
    if not x_business_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Business-ID header is required",
        )

    try:
        business_uuid = UUID(x_business_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Business-ID must be a valid UUID",
        )

    return await get_business_context(business_uuid, db)
