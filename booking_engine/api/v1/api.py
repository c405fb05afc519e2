from fastapi import APIRouter

from booking_engine.api.v1.endpoints import (
    appointments,
    availability,
    providers,
    scheduling,
)

api_router = APIRouter()

# Provider management endpoints
api_router.include_router(providers.router, prefix="/providers", tags=["providers"])

# Availability rules and blocked days
api_router.include_router(
    availability.router, prefix="/availability", tags=["availability"]
)

# Slot generation and availability queries
api_router.include_router(scheduling.router, prefix="/scheduling", tags=["scheduling"])

# Appointment lifecycle endpoints
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)
