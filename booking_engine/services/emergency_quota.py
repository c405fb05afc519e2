from datetime import date
from decimal import ROUND_CEILING, Decimal
from typing import Optional

import structlog

from booking_engine.core.config import settings
from booking_engine.models.slot import Slot
from booking_engine.services.repository import SchedulingRepository

logger = structlog.get_logger(__name__)


def required_emergency_slots(available_total: int, min_fraction: float) -> int:
    """Smallest emergency count that keeps ``count / total >= min_fraction``."""
    if available_total <= 0 or min_fraction <= 0:
        return 0
    needed = Decimal(str(min_fraction)) * available_total
    return int(needed.to_integral_value(rounding=ROUND_CEILING))


class EmergencyQuotaEnforcer:
    """Reserves a minimum fraction of a day's available slots for urgent bookings."""

    def __init__(self, repository: SchedulingRepository):
        self.repository = repository

    async def enforce_quota(
        self,
        provider_id: int,
        day: date,
        min_fraction: Optional[float] = None,
        slots: Optional[list[Slot]] = None,
    ) -> int:
        """Convert regular available slots to emergency-only, earliest first.

        Returns the number of slots converted. Slots bound to an active
        appointment are never converted.
        """
        if min_fraction is None:
            min_fraction = settings.EMERGENCY_QUOTA_MIN_FRACTION
        if slots is None:
            slots = await self.repository.load_slots(provider_id, day, for_update=True)

        available = [slot for slot in slots if slot.is_available]
        emergency_count = sum(1 for slot in available if slot.emergency_only)
        missing = required_emergency_slots(len(available), min_fraction) - emergency_count
        if missing <= 0:
            return 0

        candidates = sorted(
            (slot for slot in available if not slot.emergency_only),
            key=lambda s: s.start_time,
        )
        bound = await self.repository.referenced_slot_ids(
            [slot.id for slot in candidates if slot.id is not None], active_only=True
        )

        converted = 0
        for slot in candidates:
            if converted >= missing:
                break
            if slot.id in bound:
                continue
            slot.emergency_only = True
            converted += 1

        if converted:
            await self.repository.flush()
            logger.info(
                "Emergency quota enforced",
                provider_id=provider_id,
                day=day.isoformat(),
                available=len(available),
                emergency_before=emergency_count,
                converted=converted,
                min_fraction=min_fraction,
            )
        if converted < missing:
            logger.warning(
                "Emergency quota could not be fully met",
                provider_id=provider_id,
                day=day.isoformat(),
                missing=missing - converted,
            )
        return converted
