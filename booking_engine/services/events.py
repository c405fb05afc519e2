import asyncio
from datetime import datetime
from typing import Any, Iterable, Optional

import structlog
from celery import Celery

from booking_engine.core.celery import get_celery_app
from booking_engine.core.config import settings
from booking_engine.models.appointment import Appointment
from booking_engine.schemas.events import AppointmentEvent, AppointmentEventType

logger = structlog.get_logger(__name__)


def build_event(
    event_type: AppointmentEventType,
    appointment: Appointment,
    occurred_at: datetime,
    previous: Optional[Appointment] = None,
    **payload: Any,
) -> AppointmentEvent:
    return AppointmentEvent(
        event_type=event_type,
        appointment_uuid=appointment.uuid,
        business_id=appointment.business_id,
        provider_id=appointment.provider_id,
        customer_id=appointment.customer_id,
        status=appointment.status,
        scheduled_start=appointment.scheduled_start,
        scheduled_end=appointment.scheduled_end,
        occurred_at=occurred_at,
        previous_appointment_uuid=previous.uuid if previous is not None else None,
        payload=payload,
    )


class EventPublisher:
    """Delivers appointment events to external consumers."""

    async def publish(self, event: AppointmentEvent) -> None:
        raise NotImplementedError

    async def publish_all(self, events: Iterable[AppointmentEvent]) -> None:
        """Publish committed events; a failed delivery never undoes the booking."""
        for event in events:
            try:
                await self.publish(event)
            except Exception as e:
                logger.error(
                    "Failed to publish appointment event",
                    event_type=event.event_type.value,
                    appointment_uuid=str(event.appointment_uuid),
                    exc_info=e,
                )


class LoggingEventPublisher(EventPublisher):
    async def publish(self, event: AppointmentEvent) -> None:
        logger.info(
            "Appointment event",
            event_type=event.event_type.value,
            appointment_uuid=str(event.appointment_uuid),
            provider_id=event.provider_id,
            status=event.status,
            scheduled_start=event.scheduled_start.isoformat(),
        )


class InMemoryEventPublisher(EventPublisher):
    """Keeps published events in memory, for tests and local tooling."""

    def __init__(self):
        self.events: list[AppointmentEvent] = []

    async def publish(self, event: AppointmentEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AppointmentEventType) -> list[AppointmentEvent]:
        return [e for e in self.events if e.event_type == event_type]


class CeleryEventPublisher(EventPublisher):
    """Sends each event as a Celery task to the notification workers."""

    def __init__(
        self,
        celery_app: Celery,
        task_name: Optional[str] = None,
        queue: Optional[str] = None,
    ):
        self.celery_app = celery_app
        self.task_name = task_name or settings.APPOINTMENT_EVENT_TASK
        self.queue = queue or settings.APPOINTMENT_EVENT_QUEUE

    async def publish(self, event: AppointmentEvent) -> None:
        # send_task talks to the broker synchronously
        await asyncio.to_thread(
            self.celery_app.send_task,
            self.task_name,
            kwargs={"event": event.model_dump(mode="json")},
            queue=self.queue,
        )
        logger.debug(
            "Appointment event sent",
            event_type=event.event_type.value,
            appointment_uuid=str(event.appointment_uuid),
            task=self.task_name,
        )


def get_event_publisher() -> EventPublisher:
    celery_app = get_celery_app()
    if celery_app is not None:
        return CeleryEventPublisher(celery_app)
    return LoggingEventPublisher()
