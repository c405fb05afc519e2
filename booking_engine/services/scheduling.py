import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.core.exceptions import (
    AppointmentNotFound,
    AtomicityFailure,
    InvalidDuration,
    InvalidTransition,
    NoRuleConfigured,
    NotFoundError,
    ProviderInactive,
    ProviderNotFound,
    SlotNotEmergencyEligible,
    SlotUnavailable,
)
from booking_engine.core.locks import ScheduleLockManager, schedule_lock_key, schedule_locks
from booking_engine.models.appointment import (
    Appointment,
    AppointmentStatus,
    UrgencyLevel,
)
from booking_engine.models.provider import Provider
from booking_engine.models.slot import Slot
from booking_engine.schemas.events import AppointmentEvent
from booking_engine.schemas.scheduling import BookingPolicy, SlotGenerationResult
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.booking_state_machine import BookingStateMachine
from booking_engine.services.conflict_guard import ConflictGuard
from booking_engine.services.emergency_quota import EmergencyQuotaEnforcer
from booking_engine.services.events import EventPublisher, get_event_publisher
from booking_engine.services.repository import SchedulingRepository
from booking_engine.services.slot_generator import SlotGenerator
from booking_engine.utils.intervals import contains

logger = structlog.get_logger(__name__)

# Postgres SQLSTATEs for serialization failure and deadlock
TRANSIENT_SQLSTATES = {"40001", "40P01"}
TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "serialization failure",
    "database is locked",
    "connection was closed",
    "connection is closed",
)

RESCHEDULE_REASON = "rescheduled"


def is_transient_db_error(error: DBAPIError) -> bool:
    """Deadlocks, serialization failures and dropped connections may be retried."""
    if error.connection_invalidated:
        return True
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def suggested_window(urgency: UrgencyLevel, today: date) -> tuple[date, date]:
    """Days a booking of this urgency should be offered, inclusive."""
    if urgency.can_use_emergency_slots:
        return today, today + timedelta(days=2)
    if urgency == UrgencyLevel.MEDIUM:
        return today + timedelta(days=1), today + timedelta(days=5)
    return today + timedelta(days=7), today + timedelta(days=14)


class SchedulingService:
    """Scheduling API for one business.

    Every mutating call runs as a single transaction holding the schedule
    lock of each (provider, date) it touches. Domain events are published only
    once that transaction has committed.
    """

    def __init__(
        self,
        db: AsyncSession,
        business_id: int,
        policy: Optional[BookingPolicy] = None,
        locks: Optional[ScheduleLockManager] = None,
        events: Optional[EventPublisher] = None,
    ):
        self.db = db
        self.business_id = business_id
        self.locks = locks or schedule_locks
        self.events = events or get_event_publisher()
        self.repository = SchedulingRepository(db, business_id)

        self._policy_override = policy
        self.policy: Optional[BookingPolicy] = policy
        self.timezone: Optional[ZoneInfo] = None

        self.availability: Optional[AvailabilityService] = None
        self.generator: Optional[SlotGenerator] = None
        self.quota: Optional[EmergencyQuotaEnforcer] = None
        self.guard = ConflictGuard(self.repository)
        self.state_machine: Optional[BookingStateMachine] = None

    async def _ensure_context(self) -> None:
        if self.timezone is not None:
            return

        business = await self.repository.get_business()
        if not business:
            raise NotFoundError("Business not found")

        self.timezone = ZoneInfo(business.timezone or "UTC")
        self.policy = self._policy_override or BookingPolicy.from_business(business)
        self.availability = AvailabilityService(
            self.db, self.business_id, self.policy, repository=self.repository
        )
        self.generator = SlotGenerator(self.availability, self.repository)
        self.quota = EmergencyQuotaEnforcer(self.repository)
        self.state_machine = BookingStateMachine(self.repository, self.policy)

    def _now(self, now: Optional[datetime] = None) -> datetime:
        """Current business-local wall clock time, naive."""
        if now is None:
            return datetime.now(self.timezone).replace(tzinfo=None)
        if now.tzinfo is not None:
            return now.astimezone(self.timezone).replace(tzinfo=None)
        return now

    def _local(self, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value.astimezone(self.timezone).replace(tzinfo=None)
        return value

    # Transactions

    async def _run(
        self,
        operation: str,
        provider_id: int,
        days: list[date],
        work: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run ``work`` atomically under the schedule locks of ``days``.

        Infrastructure failures are retried with exponential backoff; any other
        error rolls the transaction back and reaches the caller unchanged.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.locks.hold(self.business_id, provider_id, *days):
                    result, events = await asyncio.wait_for(
                        self._transaction(provider_id, days, work),
                        timeout=settings.BOOKING_TRANSACTION_TIMEOUT_SECONDS,
                    )
                break
            except asyncio.TimeoutError as e:
                logger.error(
                    "Scheduling transaction timed out",
                    operation=operation,
                    provider_id=provider_id,
                )
                raise AtomicityFailure() from e
            except DBAPIError as e:
                if attempt > settings.BOOKING_MAX_RETRIES or not is_transient_db_error(e):
                    logger.error(
                        "Scheduling transaction failed",
                        operation=operation,
                        provider_id=provider_id,
                        attempt=attempt,
                        exc_info=e,
                    )
                    raise AtomicityFailure() from e

                backoff = settings.BOOKING_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying scheduling transaction",
                    operation=operation,
                    provider_id=provider_id,
                    attempt=attempt,
                    backoff_seconds=backoff,
                    error=str(e.orig),
                )
                await asyncio.sleep(backoff)

        await self.events.publish_all(events)
        return result

    async def _transaction(
        self,
        provider_id: int,
        days: list[date],
        work: Callable[[], Awaitable[Any]],
    ) -> tuple[Any, list[AppointmentEvent]]:
        try:
            await self._ensure_context()
            for day in sorted(set(days)):
                await self.repository.advisory_lock(
                    schedule_lock_key(self.business_id, provider_id, day)
                )
            result = await work()
            await self.db.commit()
        except (Exception, asyncio.CancelledError):
            if self.state_machine is not None:
                self.state_machine.drain_events()
            await self.db.rollback()
            raise
        return result, self.state_machine.drain_events()

    # Lookups

    async def _get_provider(self, provider_id: int) -> Provider:
        provider = await self.repository.get_provider(provider_id)
        if not provider:
            raise ProviderNotFound()
        return provider

    async def _get_bookable_provider(self, provider_id: int) -> Provider:
        provider = await self._get_provider(provider_id)
        if not provider.is_active:
            raise ProviderInactive()
        return provider

    async def _get_appointment(
        self, appointment_uuid: UUID, for_update: bool = False
    ) -> Appointment:
        appointment = await self.repository.get_appointment_by_uuid(
            appointment_uuid, for_update=for_update
        )
        if not appointment:
            raise AppointmentNotFound()
        return appointment

    async def get_appointment(self, appointment_uuid: UUID) -> Appointment:
        return await self._get_appointment(appointment_uuid)

    async def list_appointments(
        self,
        provider_id: Optional[int] = None,
        day: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
        customer_id: Optional[str] = None,
    ) -> list[Appointment]:
        return await self.repository.list_appointments(
            provider_id=provider_id, day=day, status=status, customer_id=customer_id
        )

    async def list_slots(self, provider_id: int, day: date) -> list[Slot]:
        await self._get_provider(provider_id)
        return await self.repository.load_slots(provider_id, day)

    # Slot generation

    async def _generate(self, provider: Provider, day: date) -> tuple[list[Slot], int]:
        slots = await self.generator.generate_slots(provider, day)
        converted = 0
        if self.policy.enforce_emergency_quota and slots:
            converted = await self.quota.enforce_quota(
                provider.id,
                day,
                min_fraction=self.policy.emergency_quota_fraction,
                slots=slots,
            )
        return slots, converted

    async def ensure_slots_generated(
        self, provider_id: int, day: date
    ) -> SlotGenerationResult:
        """Idempotently generate a day's slots and enforce the emergency quota."""

        async def work():
            provider = await self._get_provider(provider_id)
            slots, converted = await self._generate(provider, day)
            available = [slot for slot in slots if slot.is_available]
            return SlotGenerationResult(
                provider_uuid=provider.uuid,
                slot_date=day,
                total_slots=len(slots),
                available_slots=len(available),
                emergency_slots=sum(1 for slot in available if slot.emergency_only),
                emergency_converted=converted,
            )

        return await self._run("ensure_slots_generated", provider_id, [day], work)

    # Booking

    async def _within_availability(
        self, provider: Provider, start: datetime, end: datetime
    ) -> bool:
        day = start.date()
        try:
            windows = await self.availability.resolve_availability(provider.id, day)
        except NoRuleConfigured:
            windows = []
        return end.date() == day and contains(windows, start.time(), end.time())

    async def _book(
        self,
        provider: Provider,
        start: datetime,
        duration_minutes: int,
        customer_id: str,
        urgency: UrgencyLevel,
        reason: Optional[str],
        now: datetime,
        previous: Optional[Appointment] = None,
    ) -> Appointment:
        if start < now:
            raise SlotUnavailable(start, "start time is in the past")

        day = start.date()
        end = start + timedelta(minutes=duration_minutes)
        slots, _ = await self._generate(provider, day)
        slot = next((s for s in slots if s.start_time == start.time()), None)

        if slot is not None:
            if slot.emergency_only and not urgency.can_use_emergency_slots:
                raise SlotNotEmergencyEligible(start, urgency.value)
            await self.guard.assert_no_overlap(
                provider.id,
                start,
                duration_minutes,
                exclude_appointment_id=previous.id if previous is not None else None,
            )
            if not slot.is_available:
                raise SlotUnavailable(start, "slot already occupied")
            # A slotted booking holds exactly one slot and may not spill into the next
            if end > slot.end_datetime:
                raise SlotUnavailable(start, "booking runs past the end of its slot")
            if not await self._within_availability(provider, start, end):
                raise SlotUnavailable(start, "outside provider availability")
        else:
            if not self.policy.allow_unslotted_booking:
                raise SlotUnavailable(start, "no slot starts at this time")
            if not await self._within_availability(provider, start, end):
                raise SlotUnavailable(start, "outside provider availability")
            reserved = [
                s
                for s in slots
                if s.emergency_only
                and s.is_available
                and s.start_datetime < end
                and start < s.end_datetime
            ]
            if reserved and not urgency.can_use_emergency_slots:
                raise SlotNotEmergencyEligible(start, urgency.value)
            await self.guard.assert_no_overlap(
                provider.id,
                start,
                duration_minutes,
                exclude_appointment_id=previous.id if previous is not None else None,
            )

        return await self.state_machine.create(
            provider,
            start,
            duration_minutes,
            customer_id,
            urgency,
            now,
            slot=slot,
            reason=reason,
            previous=previous,
        )

    async def book(
        self,
        provider_id: int,
        start: datetime,
        customer_id: str,
        urgency: UrgencyLevel = UrgencyLevel.LOW,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """
        Book an appointment for a provider.

        Args:
            provider_id: ID of the provider
            start: Requested start, business-local (aware datetimes are converted)
            customer_id: External customer identifier
            urgency: Urgency from the triage classifier
            duration_minutes: Defaults to the provider's slot duration
            reason: Free-text reason for the visit
            now: Overrides the current time

        Returns:
            The new appointment, confirmed or requested depending on policy

        Raises:
            SlotNotEmergencyEligible: the slot is reserved for urgent bookings
            ConflictError: another active appointment overlaps
            SlotUnavailable: the slot is taken, missing, too short or in the past
        """

        async def work():
            provider = await self._get_bookable_provider(provider_id)
            duration = duration_minutes or provider.default_slot_duration_minutes
            if not duration or duration <= 0:
                raise InvalidDuration(duration)
            return await self._book(
                provider,
                self._local(start),
                duration,
                customer_id,
                urgency,
                reason,
                self._now(now),
            )

        await self._ensure_context()
        return await self._run("book", provider_id, [self._local(start).date()], work)

    async def _locate(self, appointment_uuid: UUID) -> tuple[int, date]:
        await self._ensure_context()
        appointment = await self._get_appointment(appointment_uuid)
        return appointment.provider_id, appointment.scheduled_start.date()

    async def cancel(
        self,
        appointment_uuid: UUID,
        actor: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Cancel an appointment; cancelling twice is a no-op."""
        provider_id, day = await self._locate(appointment_uuid)

        async def work():
            appointment = await self._get_appointment(appointment_uuid, for_update=True)
            return await self.state_machine.cancel(
                appointment, actor, reason, self._now(now)
            )

        return await self._run("cancel", provider_id, [day], work)

    async def reschedule(
        self,
        appointment_uuid: UUID,
        new_start: datetime,
        new_duration_minutes: Optional[int] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Atomically cancel an appointment and book its replacement.

        If the new booking fails for any reason the cancellation is rolled
        back and the original appointment keeps its slot.
        """
        provider_id, old_day = await self._locate(appointment_uuid)
        new_start = self._local(new_start)

        async def work():
            current = self._now(now)
            old = await self._get_appointment(appointment_uuid, for_update=True)
            if old.status not in (
                AppointmentStatus.REQUESTED.value,
                AppointmentStatus.CONFIRMED.value,
            ):
                raise InvalidTransition(
                    old.status,
                    AppointmentStatus.CANCELLED.value,
                    "only requested or confirmed appointments can be rescheduled",
                )
            provider = await self._get_bookable_provider(old.provider_id)
            duration = new_duration_minutes or old.duration_minutes

            await self.state_machine.cancel(
                old, actor or "system", RESCHEDULE_REASON, current
            )
            return await self._book(
                provider,
                new_start,
                duration,
                old.customer_id,
                UrgencyLevel(old.urgency),
                old.reason,
                current,
                previous=old,
            )

        return await self._run(
            "reschedule", provider_id, [old_day, new_start.date()], work
        )

    async def _transition(
        self,
        operation: str,
        appointment_uuid: UUID,
        apply: Callable[[Appointment, datetime], Awaitable[Appointment]],
        now: Optional[datetime],
    ) -> Appointment:
        provider_id, day = await self._locate(appointment_uuid)

        async def work():
            appointment = await self._get_appointment(appointment_uuid, for_update=True)
            return await apply(appointment, self._now(now))

        return await self._run(operation, provider_id, [day], work)

    async def confirm(
        self, appointment_uuid: UUID, now: Optional[datetime] = None
    ) -> Appointment:
        await self._ensure_context()
        return await self._transition(
            "confirm", appointment_uuid, self.state_machine.confirm, now
        )

    async def start(
        self, appointment_uuid: UUID, now: Optional[datetime] = None
    ) -> Appointment:
        await self._ensure_context()
        return await self._transition(
            "start", appointment_uuid, self.state_machine.start, now
        )

    async def complete(
        self, appointment_uuid: UUID, now: Optional[datetime] = None
    ) -> Appointment:
        await self._ensure_context()
        return await self._transition(
            "complete", appointment_uuid, self.state_machine.complete, now
        )

    async def mark_no_show(
        self, appointment_uuid: UUID, now: Optional[datetime] = None
    ) -> Appointment:
        await self._ensure_context()
        return await self._transition(
            "mark_no_show", appointment_uuid, self.state_machine.mark_no_show, now
        )

    async def hard_delete(
        self, appointment_uuid: UUID, now: Optional[datetime] = None
    ) -> None:
        """Administrative escape hatch: physically remove an appointment."""
        provider_id, day = await self._locate(appointment_uuid)

        async def work():
            appointment = await self._get_appointment(appointment_uuid, for_update=True)
            await self.state_machine.hard_delete(appointment, self._now(now))

        await self._run("hard_delete", provider_id, [day], work)

    # Availability queries

    async def get_available_slots(
        self,
        provider_id: int,
        day: date,
        urgency: UrgencyLevel = UrgencyLevel.LOW,
        now: Optional[datetime] = None,
    ) -> list[Slot]:
        """Free slots of a day that a booking of ``urgency`` may take."""

        async def work():
            provider = await self._get_provider(provider_id)
            if not provider.is_active:
                return []
            slots, _ = await self._generate(provider, day)
            current = self._now(now)
            day_start = datetime.combine(day, datetime.min.time())
            taken = await self.repository.load_active_appointments(
                provider_id, day_start, day_start + timedelta(days=1)
            )
            return [
                slot
                for slot in slots
                if slot.is_available
                and (not slot.emergency_only or urgency.can_use_emergency_slots)
                and slot.start_datetime >= current
                and not any(
                    a.overlaps(slot.start_datetime, slot.end_datetime) for a in taken
                )
            ]

        return await self._run("get_available_slots", provider_id, [day], work)

    async def get_available_days(
        self,
        provider_id: int,
        start_date: date,
        end_date: date,
        urgency: UrgencyLevel = UrgencyLevel.LOW,
        now: Optional[datetime] = None,
    ) -> list[date]:
        """Days of an inclusive range with at least one slot ``urgency`` may book."""
        await self._ensure_context()
        today = self._now(now).date()
        days = []
        current = max(start_date, today)
        while current <= end_date:
            if await self.get_available_slots(provider_id, current, urgency, now=now):
                days.append(current)
            current += timedelta(days=1)

        logger.info(
            "Available days resolved",
            provider_id=provider_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            urgency=urgency.value,
            count=len(days),
        )
        return days

    async def suggest_days(
        self,
        provider_id: int,
        urgency: UrgencyLevel,
        now: Optional[datetime] = None,
    ) -> tuple[date, date, list[date]]:
        """Bookable days inside the window suggested for ``urgency``."""
        await self._ensure_context()
        window_start, window_end = suggested_window(urgency, self._now(now).date())
        days = await self.get_available_days(
            provider_id, window_start, window_end, urgency, now=now
        )
        return window_start, window_end, days
