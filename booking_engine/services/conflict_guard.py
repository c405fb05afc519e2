from datetime import datetime, timedelta
from typing import Optional

import structlog

from booking_engine.core.exceptions import ConflictError
from booking_engine.services.repository import SchedulingRepository

logger = structlog.get_logger(__name__)


class ConflictGuard:
    """Guarantees that no two active appointments of a provider overlap.

    Must run inside the same locked transaction as the write it protects.
    """

    def __init__(self, repository: SchedulingRepository):
        self.repository = repository

    async def assert_no_overlap(
        self,
        provider_id: int,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: Optional[int] = None,
    ) -> None:
        end = start + timedelta(minutes=duration_minutes)
        conflicts = await self.repository.load_active_appointments(
            provider_id,
            start,
            end,
            exclude_appointment_id=exclude_appointment_id,
            for_update=True,
        )
        if conflicts:
            logger.info(
                "Booking conflict detected",
                provider_id=provider_id,
                start=start.isoformat(),
                end=end.isoformat(),
                conflicting_ids=[a.id for a in conflicts],
            )
            raise ConflictError(start, end, [a.id for a in conflicts])
