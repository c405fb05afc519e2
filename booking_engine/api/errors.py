from fastapi import HTTPException, status

from booking_engine.core.exceptions import (
    AtomicityFailure,
    InvalidDuration,
    InvalidTransition,
    NoRuleConfigured,
    NotFoundError,
    ProviderInactive,
    SchedulingError,
    SlotNotEmergencyEligible,
    TimeNoLongerAvailable,
)

STATUS_BY_ERROR = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (TimeNoLongerAvailable, status.HTTP_409_CONFLICT),
    (SlotNotEmergencyEligible, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ProviderInactive, status.HTTP_409_CONFLICT),
    (InvalidDuration, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NoRuleConfigured, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AtomicityFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def http_error(error: SchedulingError) -> HTTPException:
    """Translate an engine error into the HTTP response the client sees."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            status_code = code
            break
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.message},
    )
