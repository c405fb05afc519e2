from datetime import date, datetime, time
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.models.appointment import Appointment, AppointmentStatus
from booking_engine.models.availability_rule import AvailabilityRule
from booking_engine.models.blocked_day import BlockedDay
from booking_engine.models.business import Business
from booking_engine.models.provider import Provider
from booking_engine.models.slot import Slot


class SchedulingRepository:
    """Persistence access for the scheduling engine, scoped to one business.

    Every method runs inside the caller's transaction; nothing here commits.
    Row locks are only requested on dialects that support them.
    """

    def __init__(self, db: AsyncSession, business_id: int):
        self.db = db
        self.business_id = business_id

    @property
    def dialect_name(self) -> str:
        return self.db.get_bind().dialect.name

    @property
    def supports_row_locks(self) -> bool:
        return self.dialect_name == "postgresql"

    def _locked(self, query, for_update: bool):
        if not for_update:
            return query
        # Reload rows another session may have changed while we waited
        query = query.execution_options(populate_existing=True)
        if self.supports_row_locks:
            query = query.with_for_update()
        return query

    async def advisory_lock(self, key: str) -> None:
        """Take a transaction-scoped advisory lock (PostgreSQL only)."""
        if not self.supports_row_locks:
            return
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key}
        )

    # Business and providers

    async def get_business(self) -> Optional[Business]:
        result = await self.db.execute(
            select(Business).where(Business.id == self.business_id)
        )
        return result.scalar_one_or_none()

    async def get_provider(self, provider_id: int) -> Optional[Provider]:
        result = await self.db.execute(
            select(Provider).where(
                and_(
                    Provider.id == provider_id,
                    Provider.business_id == self.business_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_provider_by_uuid(self, provider_uuid: UUID) -> Optional[Provider]:
        result = await self.db.execute(
            select(Provider).where(
                and_(
                    Provider.uuid == provider_uuid,
                    Provider.business_id == self.business_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_providers(self, include_inactive: bool = False) -> list[Provider]:
        query = select(Provider).where(Provider.business_id == self.business_id)
        if not include_inactive:
            query = query.where(Provider.is_active.is_(True))
        result = await self.db.execute(query.order_by(Provider.name))
        return list(result.scalars().all())

    # Availability rules and blocked days

    async def load_rules(
        self,
        provider_id: int,
        weekday: Optional[int] = None,
        active_only: bool = True,
    ) -> list[AvailabilityRule]:
        query = select(AvailabilityRule).where(
            and_(
                AvailabilityRule.provider_id == provider_id,
                AvailabilityRule.business_id == self.business_id,
            )
        )
        if weekday is not None:
            query = query.where(AvailabilityRule.weekday == weekday)
        if active_only:
            query = query.where(AvailabilityRule.is_active.is_(True))
        result = await self.db.execute(
            query.order_by(AvailabilityRule.weekday, AvailabilityRule.start_time)
        )
        return list(result.scalars().all())

    async def get_rule_by_uuid(self, rule_uuid: UUID) -> Optional[AvailabilityRule]:
        result = await self.db.execute(
            select(AvailabilityRule).where(
                and_(
                    AvailabilityRule.uuid == rule_uuid,
                    AvailabilityRule.business_id == self.business_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def load_blocked_days(
        self, provider_id: int, start: date, end: Optional[date] = None
    ) -> list[BlockedDay]:
        """Blocked days for ``start``, or for the inclusive range ``start..end``."""
        end = end or start
        result = await self.db.execute(
            select(BlockedDay)
            .where(
                and_(
                    BlockedDay.provider_id == provider_id,
                    BlockedDay.business_id == self.business_id,
                    BlockedDay.blocked_date >= start,
                    BlockedDay.blocked_date <= end,
                )
            )
            .order_by(BlockedDay.blocked_date, BlockedDay.start_time)
        )
        return list(result.scalars().all())

    async def get_blocked_day_by_uuid(self, blocked_uuid: UUID) -> Optional[BlockedDay]:
        result = await self.db.execute(
            select(BlockedDay).where(
                and_(
                    BlockedDay.uuid == blocked_uuid,
                    BlockedDay.business_id == self.business_id,
                )
            )
        )
        return result.scalar_one_or_none()

    # Slots

    async def load_slots(
        self, provider_id: int, day: date, for_update: bool = False
    ) -> list[Slot]:
        query = select(Slot).where(
            and_(
                Slot.provider_id == provider_id,
                Slot.business_id == self.business_id,
                Slot.slot_date == day,
            )
        )
        result = await self.db.execute(
            self._locked(query.order_by(Slot.start_time), for_update)
        )
        return list(result.scalars().all())

    async def get_slot_at(
        self, provider_id: int, day: date, start_time: time, for_update: bool = False
    ) -> Optional[Slot]:
        query = select(Slot).where(
            and_(
                Slot.provider_id == provider_id,
                Slot.business_id == self.business_id,
                Slot.slot_date == day,
                Slot.start_time == start_time,
            )
        )
        result = await self.db.execute(self._locked(query, for_update))
        return result.scalar_one_or_none()

    async def get_slot(self, slot_id: int, for_update: bool = False) -> Optional[Slot]:
        query = select(Slot).where(
            and_(Slot.id == slot_id, Slot.business_id == self.business_id)
        )
        result = await self.db.execute(self._locked(query, for_update))
        return result.scalar_one_or_none()

    async def save_slots(self, slots: Iterable[Slot]) -> None:
        self.db.add_all(list(slots))
        await self.db.flush()

    async def delete_slots(self, slots: Iterable[Slot]) -> None:
        for slot in slots:
            await self.db.delete(slot)
        await self.db.flush()

    async def referenced_slot_ids(
        self, slot_ids: Iterable[int], active_only: bool = False
    ) -> set[int]:
        """Slot ids that any appointment (or any active one) points at."""
        slot_ids = list(slot_ids)
        if not slot_ids:
            return set()
        query = select(Appointment.slot_id).where(Appointment.slot_id.in_(slot_ids))
        if active_only:
            query = query.where(
                Appointment.status != AppointmentStatus.CANCELLED.value
            )
        result = await self.db.execute(query)
        return {slot_id for slot_id in result.scalars().all() if slot_id is not None}

    # Appointments

    async def load_active_appointments(
        self,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[int] = None,
        for_update: bool = False,
    ) -> list[Appointment]:
        """Active appointments of a provider intersecting ``[start, end)``."""
        query = select(Appointment).where(
            and_(
                Appointment.provider_id == provider_id,
                Appointment.business_id == self.business_id,
                Appointment.status != AppointmentStatus.CANCELLED.value,
                Appointment.scheduled_start < end,
                Appointment.scheduled_end > start,
            )
        )
        if exclude_appointment_id is not None:
            query = query.where(Appointment.id != exclude_appointment_id)
        result = await self.db.execute(
            self._locked(query.order_by(Appointment.scheduled_start), for_update)
        )
        return list(result.scalars().all())

    async def get_appointment_by_uuid(
        self, appointment_uuid: UUID, for_update: bool = False
    ) -> Optional[Appointment]:
        query = select(Appointment).where(
            and_(
                Appointment.uuid == appointment_uuid,
                Appointment.business_id == self.business_id,
            )
        )
        result = await self.db.execute(self._locked(query, for_update))
        return result.scalar_one_or_none()

    async def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        result = await self.db.execute(
            select(Appointment).where(
                and_(
                    Appointment.id == appointment_id,
                    Appointment.business_id == self.business_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_appointments(
        self,
        provider_id: Optional[int] = None,
        day: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
        customer_id: Optional[str] = None,
    ) -> list[Appointment]:
        query = select(Appointment).where(Appointment.business_id == self.business_id)
        if provider_id is not None:
            query = query.where(Appointment.provider_id == provider_id)
        if day is not None:
            day_start = datetime.combine(day, time.min)
            day_end = datetime.combine(day, time.max)
            query = query.where(
                or_(
                    and_(
                        Appointment.scheduled_start >= day_start,
                        Appointment.scheduled_start <= day_end,
                    ),
                    and_(
                        Appointment.scheduled_start < day_start,
                        Appointment.scheduled_end > day_start,
                    ),
                )
            )
        if status is not None:
            query = query.where(Appointment.status == status.value)
        if customer_id is not None:
            query = query.where(Appointment.customer_id == customer_id)
        result = await self.db.execute(query.order_by(Appointment.scheduled_start))
        return list(result.scalars().all())

    async def save_appointment(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        await self.db.flush()
        return appointment

    async def delete_appointment(self, appointment: Appointment) -> None:
        await self.db.delete(appointment)
        await self.db.flush()

    async def flush(self) -> None:
        await self.db.flush()

    async def detach_successors(self, appointment_id: int) -> None:
        """Drop lineage links pointing at an appointment about to be deleted."""
        await self.db.execute(
            update(Appointment)
            .where(Appointment.previous_appointment_id == appointment_id)
            .values(previous_appointment_id=None)
        )

    async def active_appointments_for_slot(self, slot_id: int) -> list[Appointment]:
        result = await self.db.execute(
            select(Appointment).where(
                and_(
                    Appointment.slot_id == slot_id,
                    Appointment.status != AppointmentStatus.CANCELLED.value,
                )
            )
        )
        return list(result.scalars().all())
