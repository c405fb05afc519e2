"""Typed errors raised by the scheduling engine.

Every error carries a stable ``code`` for API clients and a ``message`` that is
safe to show to end users.
"""

from datetime import date, datetime
from typing import Optional


class SchedulingError(Exception):
    """Base class for all scheduling engine errors."""

    code = "scheduling_error"
    default_message = "The scheduling request could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NoRuleConfigured(SchedulingError):
    """No availability rule matches the requested weekday.

    Callers treat this as "provider unavailable", not as a failure.
    """

    code = "no_rule_configured"

    def __init__(self, provider_id: int, day: date):
        self.provider_id = provider_id
        self.day = day
        super().__init__(
            f"Provider {provider_id} has no availability rule for "
            f"{day.strftime('%A')} ({day.isoformat()})"
        )


class InvalidDuration(SchedulingError):
    code = "invalid_duration"

    def __init__(self, duration_minutes: Optional[int]):
        self.duration_minutes = duration_minutes
        super().__init__(
            f"Slot duration must be a positive number of minutes, got {duration_minutes}"
        )


class InvalidTransition(SchedulingError):
    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str, reason: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = f"Cannot transition appointment from {from_status} to {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TimeNoLongerAvailable(SchedulingError):
    """Expected outcome of concurrent booking: the caller should pick another time."""

    code = "time_no_longer_available"
    default_message = "This time is no longer available, please choose another."


class SlotUnavailable(TimeNoLongerAvailable):
    code = "slot_unavailable"

    def __init__(self, start: Optional[datetime] = None, detail: Optional[str] = None):
        self.start = start
        self.detail = detail
        super().__init__()


class ConflictError(TimeNoLongerAvailable):
    code = "conflict"

    def __init__(self, start: datetime, end: datetime, conflicting_ids: list[int]):
        self.start = start
        self.end = end
        self.conflicting_ids = conflicting_ids
        super().__init__()


class SlotNotEmergencyEligible(SchedulingError):
    code = "slot_not_emergency_eligible"
    default_message = (
        "This time is reserved for urgent care, please choose another time."
    )

    def __init__(self, start: datetime, urgency: str):
        self.start = start
        self.urgency = urgency
        super().__init__()


class AtomicityFailure(SchedulingError):
    """The transaction was aborted and rolled back; nothing was written."""

    code = "atomicity_failure"
    default_message = "The booking could not be completed, please try again."


class NotFoundError(SchedulingError):
    code = "not_found"
    default_message = "Resource not found"


class ProviderNotFound(NotFoundError):
    code = "provider_not_found"
    default_message = "Provider not found"


class ProviderInactive(SchedulingError):
    code = "provider_inactive"
    default_message = "Provider is not accepting bookings"


class AppointmentNotFound(NotFoundError):
    code = "appointment_not_found"
    default_message = "Appointment not found"


class RuleNotFound(NotFoundError):
    code = "rule_not_found"
    default_message = "Availability rule not found"


class BlockedDayNotFound(NotFoundError):
    code = "blocked_day_not_found"
    default_message = "Blocked day not found"
