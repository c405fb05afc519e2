# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    availability_rule,
    blocked_day,
    business,
    provider,
    slot,
)

__all__ = [
    "appointment",
    "availability_rule",
    "blocked_day",
    "business",
    "provider",
    "slot",
]
