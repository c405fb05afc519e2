import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from booking_engine.core.database import Base


class ProviderKind(enum.Enum):
    PRACTITIONER = "PRACTITIONER"
    STYLIST = "STYLIST"
    TABLE = "TABLE"
    ROOM = "ROOM"
    OTHER = "OTHER"


class Provider(Base):
    """A bookable resource (dentist, stylist, table) owned by a business."""

    __tablename__ = "providers"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    name = Column(String, nullable=False)
    kind = Column(String(20), nullable=False, default=ProviderKind.PRACTITIONER.value)

    # Slot configuration
    default_slot_duration_minutes = Column(Integer, nullable=False, default=30)

    # Providers are deactivated, never deleted
    is_active = Column(Boolean, default=True, nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "default_slot_duration_minutes >= 0",
            name="check_non_negative_slot_duration",
        ),
    )

    # Relationships
    business = relationship("Business", back_populates="providers")

    def __repr__(self):
        return (
            f"<Provider(id={self.id}, name='{self.name}', kind={self.kind}, "
            f"active={self.is_active})>"
        )
