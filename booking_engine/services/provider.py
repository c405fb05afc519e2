from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import ProviderNotFound
from booking_engine.models.provider import Provider
from booking_engine.schemas.availability import ProviderCreate
from booking_engine.services.repository import SchedulingRepository

logger = structlog.get_logger(__name__)


class ProviderService:
    """Onboarding and removal of bookable providers."""

    def __init__(self, db: AsyncSession, business_id: int):
        self.db = db
        self.business_id = business_id
        self.repository = SchedulingRepository(db, business_id)

    async def create_provider(self, data: ProviderCreate) -> Provider:
        provider = Provider(
            business_id=self.business_id,
            name=data.name,
            kind=data.kind.value,
            default_slot_duration_minutes=data.default_slot_duration_minutes,
            is_active=True,
        )
        self.db.add(provider)
        await self.db.commit()
        await self.db.refresh(provider)
        logger.info(
            "Provider created",
            provider_id=provider.id,
            business_id=self.business_id,
            kind=provider.kind,
        )
        return provider

    async def get_provider(self, provider_uuid: UUID) -> Provider:
        provider = await self.repository.get_provider_by_uuid(provider_uuid)
        if not provider:
            raise ProviderNotFound()
        return provider

    async def list_providers(self, include_inactive: bool = False) -> list[Provider]:
        return await self.repository.list_providers(include_inactive=include_inactive)

    async def deactivate_provider(
        self, provider_uuid: UUID, at: Optional[datetime] = None
    ) -> Provider:
        """Deactivate a provider; it keeps its history but takes no new bookings."""
        provider = await self.get_provider(provider_uuid)
        if not provider.is_active:
            return provider

        provider.is_active = False
        provider.deactivated_at = at or datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(provider)
        logger.info("Provider deactivated", provider_id=provider.id)
        return provider
