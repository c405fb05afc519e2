import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from booking_engine.core.database import Base


class Business(Base):
    """Tenant that owns providers and their schedules.

    ``policy`` holds the booking policy / capability set consumed by the
    scheduling engine (see ``booking_engine.schemas.scheduling.BookingPolicy``).
    """

    __tablename__ = "businesses"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)

    # Wall-clock times of slots and appointments are expressed in this zone
    timezone = Column(String(50), nullable=False, default="UTC")

    # Booking policies
    policy = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    providers = relationship("Provider", back_populates="business")

    def __repr__(self):
        return f"<Business(id={self.id}, name='{self.name}', tz={self.timezone})>"
