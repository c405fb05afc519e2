from datetime import date, datetime, time, timedelta
from typing import Optional
import logging

from booking_engine.core.exceptions import InvalidDuration, NoRuleConfigured
from booking_engine.models.provider import Provider
from booking_engine.models.slot import Slot
from booking_engine.schemas.scheduling import TimeWindow
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.repository import SchedulingRepository


logger = logging.getLogger(__name__)


def step_windows(
    day: date, windows: list[TimeWindow], duration_minutes: int
) -> list[time]:
    """Start times of every full ``duration_minutes`` step inside ``windows``.

    Partial trailing steps are discarded.
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidDuration(duration_minutes)

    step = timedelta(minutes=duration_minutes)
    starts = []
    for window in windows:
        cursor, window_end = window.on(day)
        while cursor + step <= window_end:
            starts.append(cursor.time())
            cursor += step
    return starts


class SlotGenerator:
    """Expands resolved availability into persisted slots for one day."""

    def __init__(
        self,
        availability: AvailabilityService,
        repository: SchedulingRepository,
    ):
        self.availability = availability
        self.repository = repository

    async def generate_slots(
        self,
        provider: Provider,
        day: date,
        duration_minutes: Optional[int] = None,
    ) -> list[Slot]:
        """
        Idempotently bring the slots of a provider's day in line with its
        availability.

        Existing slots are matched by start time and kept. New capacity gets new
        slots. Slots that no longer fit the availability are removed only when
        they are free and no appointment has ever referenced them.

        Args:
            provider: Provider to generate for
            day: Date to generate
            duration_minutes: Overrides the provider's default slot duration

        Returns:
            All slots of the day ordered by start time

        Raises:
            InvalidDuration: the slot duration is not a positive number
        """
        duration = (
            duration_minutes
            if duration_minutes is not None
            else provider.default_slot_duration_minutes
        )
        if duration is None or duration <= 0:
            raise InvalidDuration(duration)

        if not provider.is_active:
            logger.info(f"Provider {provider.id} is inactive, no slots for {day}")
            windows = []
        else:
            try:
                windows = await self.availability.resolve_availability(provider.id, day)
            except NoRuleConfigured:
                windows = []

        desired = step_windows(day, windows, duration)
        desired_set = set(desired)

        existing = await self.repository.load_slots(provider.id, day, for_update=True)
        by_start = {slot.start_time: slot for slot in existing}
        referenced = await self.repository.referenced_slot_ids(
            [slot.id for slot in existing]
        )

        stale = [slot for slot in existing if slot.start_time not in desired_set]
        removable = [
            slot for slot in stale if slot.is_available and slot.id not in referenced
        ]
        kept_stale = [slot for slot in stale if slot not in removable]
        for slot in kept_stale:
            logger.warning(
                f"Slot {slot.id} at {slot.start_datetime} no longer matches "
                f"availability but an appointment references it, keeping it"
            )

        step = timedelta(minutes=duration)
        resizable = {
            slot.id
            for slot in existing
            if slot.start_time in desired_set
            and slot.duration_minutes != duration
            and slot.is_available
            and slot.id not in referenced
        }
        # Slots that keep their current shape; nothing may be laid over them
        fixed = kept_stale + [
            slot
            for slot in existing
            if slot.start_time in desired_set and slot.id not in resizable
        ]

        def overlaps_fixed(start: time) -> bool:
            slot_start = datetime.combine(day, start)
            slot_end = slot_start + step
            return any(
                kept.start_datetime < slot_end and slot_start < kept.end_datetime
                for kept in fixed
            )

        # Free, never-booked slots follow a changed slot duration
        for start in desired:
            slot = by_start.get(start)
            if slot is None or slot.id not in resizable:
                continue
            if overlaps_fixed(start):
                logger.warning(
                    f"Slot {slot.id} at {slot.start_datetime} would overlap a booked "
                    f"slot at {duration} minutes, keeping {slot.duration_minutes}"
                )
                continue
            slot.duration_minutes = duration

        new_slots = []
        for start in desired:
            if start in by_start or overlaps_fixed(start):
                continue
            new_slots.append(
                Slot(
                    provider_id=provider.id,
                    business_id=provider.business_id,
                    slot_date=day,
                    start_time=start,
                    duration_minutes=duration,
                    is_available=True,
                    emergency_only=False,
                )
            )

        if removable:
            await self.repository.delete_slots(removable)
        if new_slots:
            await self.repository.save_slots(new_slots)

        if new_slots or removable:
            logger.info(
                f"Generated slots for provider {provider.id} on {day}: "
                f"{len(new_slots)} created, {len(removable)} removed"
            )

        removed_ids = {id(slot) for slot in removable}
        slots = [slot for slot in existing if id(slot) not in removed_ids] + new_slots
        return sorted(slots, key=lambda s: s.start_time)
