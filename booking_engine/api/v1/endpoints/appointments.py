from datetime import date
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status

from booking_engine.api.deps.scheduling import get_scheduling_service
from booking_engine.api.errors import http_error
from booking_engine.core.exceptions import SchedulingError
from booking_engine.models.appointment import AppointmentStatus
from booking_engine.schemas.appointment import (
    Appointment,
    AppointmentBook,
    AppointmentCancel,
    AppointmentList,
    AppointmentReschedule,
)
from booking_engine.services.provider import ProviderService
from booking_engine.services.scheduling import SchedulingService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    booking: AppointmentBook,
    service: SchedulingService = Depends(get_scheduling_service),
):
    """
    Book an appointment.

    Emergency-only slots accept high and emergency urgency only. A time that
    was taken in the meantime answers 409 with code ``conflict`` or
    ``slot_unavailable``.
    """
    try:
        provider = await ProviderService(service.db, service.business_id).get_provider(
            booking.provider_uuid
        )
        return await service.book(
            provider.id,
            booking.start_datetime,
            booking.customer_id,
            urgency=booking.urgency,
            duration_minutes=booking.duration_minutes,
            reason=booking.reason,
        )
    except SchedulingError as e:
        logger.info(
            "Booking rejected",
            provider_uuid=str(booking.provider_uuid),
            start=booking.start_datetime.isoformat(),
            code=e.code,
        )
        raise http_error(e)


@router.get("/", response_model=AppointmentList)
async def list_appointments(
    provider_uuid: Optional[UUID] = Query(None),
    day: Optional[date] = Query(None, alias="date"),
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    customer_id: Optional[str] = Query(None),
    service: SchedulingService = Depends(get_scheduling_service),
):
    provider_id = None
    try:
        if provider_uuid is not None:
            provider = await ProviderService(
                service.db, service.business_id
            ).get_provider(provider_uuid)
            provider_id = provider.id
    except SchedulingError as e:
        raise http_error(e)

    appointments = await service.list_appointments(
        provider_id=provider_id,
        day=day,
        status=appointment_status,
        customer_id=customer_id,
    )
    return AppointmentList(appointments=appointments, total_count=len(appointments))


@router.get("/{appointment_uuid}", response_model=Appointment)
async def get_appointment(
    appointment_uuid: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.get_appointment(appointment_uuid)
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{appointment_uuid}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_uuid: UUID,
    cancellation: AppointmentCancel,
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Cancel and free the slot. Cancelling an already-cancelled appointment is a no-op."""
    try:
        return await service.cancel(
            appointment_uuid, cancellation.actor, cancellation.reason
        )
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{appointment_uuid}/reschedule", response_model=Appointment)
async def reschedule_appointment(
    appointment_uuid: UUID,
    reschedule: AppointmentReschedule,
    service: SchedulingService = Depends(get_scheduling_service),
):
    """
    Move an appointment to a new time.

    The original is cancelled and a linked replacement booked in one
    transaction; when the new time is not available nothing changes.
    """
    try:
        return await service.reschedule(
            appointment_uuid,
            reschedule.new_start_datetime,
            new_duration_minutes=reschedule.new_duration_minutes,
            actor=reschedule.actor,
        )
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{appointment_uuid}/confirm", response_model=Appointment)
async def confirm_appointment(
    appointment_uuid: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.confirm(appointment_uuid)
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{appointment_uuid}/start", response_model=Appointment)
async def start_appointment(
    appointment_uuid: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.start(appointment_uuid)
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{appointment_uuid}/complete", response_model=Appointment)
async def complete_appointment(
    appointment_uuid: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.complete(appointment_uuid)
    except SchedulingError as e:
        raise http_error(e)


@router.post("/{appointment_uuid}/no-show", response_model=Appointment)
async def mark_no_show(
    appointment_uuid: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.mark_no_show(appointment_uuid)
    except SchedulingError as e:
        raise http_error(e)


@router.delete("/{appointment_uuid}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_uuid: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Administrative hard delete. Normal flows cancel instead."""
    try:
        await service.hard_delete(appointment_uuid)
    except SchedulingError as e:
        raise http_error(e)
