from datetime import datetime, timedelta
from typing import Optional

import structlog

from booking_engine.core.exceptions import InvalidTransition, SlotUnavailable
from booking_engine.models.appointment import (
    Appointment,
    AppointmentStatus,
    UrgencyLevel,
)
from booking_engine.models.provider import Provider
from booking_engine.models.slot import Slot
from booking_engine.schemas.events import AppointmentEvent, AppointmentEventType
from booking_engine.schemas.scheduling import BookingPolicy
from booking_engine.services.events import build_event
from booking_engine.services.repository import SchedulingRepository

logger = structlog.get_logger(__name__)


class BookingStateMachine:
    """Lifecycle of appointments and the only writer of ``Slot.is_available``.

    Events produced by transitions are collected in ``pending_events``; the
    caller publishes them after commit or discards them on rollback.
    """

    def __init__(self, repository: SchedulingRepository, policy: BookingPolicy):
        self.repository = repository
        self.policy = policy
        self.pending_events: list[AppointmentEvent] = []

    def _emit(
        self,
        event_type: AppointmentEventType,
        appointment: Appointment,
        at: datetime,
        previous: Optional[Appointment] = None,
        **payload,
    ) -> None:
        self.pending_events.append(
            build_event(event_type, appointment, at, previous=previous, **payload)
        )

    def drain_events(self) -> list[AppointmentEvent]:
        events, self.pending_events = self.pending_events, []
        return events

    async def _bound_slot(self, appointment: Appointment) -> Optional[Slot]:
        if appointment.slot_id is None:
            return None
        return await self.repository.get_slot(appointment.slot_id, for_update=True)

    async def _release_slot(self, appointment: Appointment) -> None:
        slot = await self._bound_slot(appointment)
        if slot is not None and not slot.is_available:
            slot.is_available = True
            logger.info(
                "Slot released",
                slot_id=slot.id,
                appointment_id=appointment.id,
            )

    async def create(
        self,
        provider: Provider,
        start: datetime,
        duration_minutes: int,
        customer_id: str,
        urgency: UrgencyLevel,
        now: datetime,
        slot: Optional[Slot] = None,
        reason: Optional[str] = None,
        previous: Optional[Appointment] = None,
    ) -> Appointment:
        """Create an appointment and occupy its slot.

        Bookings start ``confirmed`` when the policy auto-confirms, otherwise
        ``requested`` with the slot pre-reserved until a provider confirms.
        """
        if slot is not None and not slot.is_available:
            raise SlotUnavailable(start, "slot already occupied")

        status = (
            AppointmentStatus.CONFIRMED
            if self.policy.auto_confirm
            else AppointmentStatus.REQUESTED
        )
        appointment = Appointment(
            business_id=provider.business_id,
            provider_id=provider.id,
            slot_id=slot.id if slot is not None else None,
            customer_id=customer_id,
            scheduled_start=start,
            scheduled_end=start + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            status=status.value,
            status_changed_at=now,
            urgency=urgency.value,
            reason=reason,
            late_cancellation=False,
            confirmed_at=now if status == AppointmentStatus.CONFIRMED else None,
            previous_appointment_id=previous.id if previous is not None else None,
        )
        if slot is not None:
            slot.is_available = False

        await self.repository.save_appointment(appointment)
        logger.info(
            "Appointment created",
            appointment_id=appointment.id,
            provider_id=provider.id,
            slot_id=appointment.slot_id,
            start=start.isoformat(),
            status=appointment.status,
            urgency=appointment.urgency,
        )

        if previous is not None:
            self._emit(
                AppointmentEventType.RESCHEDULED, appointment, now, previous=previous
            )
        else:
            self._emit(AppointmentEventType.CREATED, appointment, now)
        return appointment

    async def confirm(self, appointment: Appointment, now: datetime) -> Appointment:
        """requested -> confirmed; the slot must be free or held by this booking."""
        if not appointment.can_transition_to(AppointmentStatus.CONFIRMED):
            raise InvalidTransition(appointment.status, AppointmentStatus.CONFIRMED.value)

        slot = await self._bound_slot(appointment)
        if slot is not None and not slot.is_available:
            holders = await self.repository.active_appointments_for_slot(slot.id)
            if any(holder.id != appointment.id for holder in holders):
                raise SlotUnavailable(
                    appointment.scheduled_start, "slot held by another booking"
                )

        appointment.transition_to(AppointmentStatus.CONFIRMED, now)
        if slot is not None:
            slot.is_available = False
        await self.repository.save_appointment(appointment)
        logger.info("Appointment confirmed", appointment_id=appointment.id)
        self._emit(AppointmentEventType.CONFIRMED, appointment, now)
        return appointment

    async def cancel(
        self,
        appointment: Appointment,
        actor: str,
        reason: Optional[str],
        now: datetime,
    ) -> Appointment:
        """Cancel and release the slot. Already-cancelled appointments are returned as-is.

        Cancelling inside the policy's no-cancel window still succeeds but is
        flagged as a late cancellation.
        """
        if appointment.status == AppointmentStatus.CANCELLED.value:
            logger.info(
                "Appointment already cancelled", appointment_id=appointment.id
            )
            return appointment

        appointment.transition_to(AppointmentStatus.CANCELLED, now)
        appointment.cancelled_by = actor
        appointment.cancellation_reason = reason
        appointment.late_cancellation = appointment.is_inside_cancellation_window(
            self.policy.cancellation_window_hours, now
        )

        await self._release_slot(appointment)
        await self.repository.save_appointment(appointment)
        logger.info(
            "Appointment cancelled",
            appointment_id=appointment.id,
            actor=actor,
            reason=reason,
            late_cancellation=appointment.late_cancellation,
        )
        self._emit(
            AppointmentEventType.CANCELLED,
            appointment,
            now,
            actor=actor,
            reason=reason,
            late_cancellation=appointment.late_cancellation,
        )
        return appointment

    async def start(self, appointment: Appointment, now: datetime) -> Appointment:
        appointment.transition_to(AppointmentStatus.IN_PROGRESS, now)
        await self.repository.save_appointment(appointment)
        logger.info("Appointment started", appointment_id=appointment.id)
        self._emit(AppointmentEventType.STARTED, appointment, now)
        return appointment

    async def complete(self, appointment: Appointment, now: datetime) -> Appointment:
        appointment.transition_to(AppointmentStatus.COMPLETED, now)
        await self.repository.save_appointment(appointment)
        logger.info("Appointment completed", appointment_id=appointment.id)
        self._emit(AppointmentEventType.COMPLETED, appointment, now)
        return appointment

    async def mark_no_show(self, appointment: Appointment, now: datetime) -> Appointment:
        """confirmed -> no_show, only once the scheduled time has fully elapsed."""
        if (
            appointment.can_transition_to(AppointmentStatus.NO_SHOW)
            and now < appointment.scheduled_end
        ):
            raise InvalidTransition(
                appointment.status,
                AppointmentStatus.NO_SHOW.value,
                "the scheduled time has not fully elapsed",
            )
        appointment.transition_to(AppointmentStatus.NO_SHOW, now)
        await self.repository.save_appointment(appointment)
        logger.info("Appointment marked as no-show", appointment_id=appointment.id)
        self._emit(AppointmentEventType.NO_SHOW, appointment, now)
        return appointment

    async def hard_delete(self, appointment: Appointment, now: datetime) -> None:
        """Administrative removal; frees the slot if the appointment still held it."""
        if appointment.is_active:
            await self._release_slot(appointment)
        self._emit(AppointmentEventType.DELETED, appointment, now)
        await self.repository.detach_successors(appointment.id)
        await self.repository.delete_appointment(appointment)
        logger.warning(
            "Appointment hard-deleted",
            appointment_id=appointment.id,
            status=appointment.status,
        )
