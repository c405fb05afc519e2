from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps.business import BusinessContext, get_business_from_header
from booking_engine.api.deps.database import get_db
from booking_engine.core.locks import ScheduleLockManager, schedule_locks
from booking_engine.services.events import EventPublisher, get_event_publisher
from booking_engine.services.scheduling import SchedulingService

_event_publisher = None


def get_schedule_locks() -> ScheduleLockManager:
    return schedule_locks


def get_events() -> EventPublisher:
    global _event_publisher
    if _event_publisher is None:
        _event_publisher = get_event_publisher()
    return _event_publisher


async def get_scheduling_service(
    context: BusinessContext = Depends(get_business_from_header),
    db: AsyncSession = Depends(get_db),
    locks: ScheduleLockManager = Depends(get_schedule_locks),
    events: EventPublisher = Depends(get_events),
) -> SchedulingService:
    return SchedulingService(
        db, context.business_id, policy=context.policy, locks=locks, events=events
    )
