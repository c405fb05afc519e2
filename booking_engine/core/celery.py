from typing import Optional

import structlog
from celery import Celery

from booking_engine.core.config import settings

logger = structlog.get_logger(__name__)

_celery_app: Optional[Celery] = None


def get_celery_app() -> Optional[Celery]:
    """Return the Celery producer app, or None when no broker is configured.

    The engine only publishes appointment events; the consuming tasks live in
    the notification and calendar-sync workers.
    """
    global _celery_app

    if not settings.CELERY_BROKER_URL:
        return None

    if _celery_app is None:
        _celery_app = Celery(
            "booking_engine",
            broker=settings.CELERY_BROKER_URL,
            backend=settings.CELERY_RESULT_BACKEND,
        )
        _celery_app.conf.update(
            task_serializer="json",
            accept_content=["json"],
            result_serializer="json",
            timezone="UTC",
            enable_utc=True,
            result_expires=3600,
            task_routes={
                settings.APPOINTMENT_EVENT_TASK: {
                    "queue": settings.APPOINTMENT_EVENT_QUEUE
                },
            },
        )
        logger.info(
            "Celery producer configured",
            queue=settings.APPOINTMENT_EVENT_QUEUE,
            task=settings.APPOINTMENT_EVENT_TASK,
        )

    return _celery_app
