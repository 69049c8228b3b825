"""PerkAllocation model"""
from sqlalchemy import Column, Integer, String, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow


class PerkStatus:
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    UNAVAILABLE = "UNAVAILABLE"


class PerkAllocation(Base):
    """Capacity-bounded bonus attached to an event booking"""
    __tablename__ = "perk_allocations"
    __table_args__ = (
        UniqueConstraint("booking_id", "perk_type", name="uq_perk_allocations_booking_perk"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    perk_type = Column(String(64), nullable=False)
    perk_title = Column(String(255), nullable=False)
    perk_index = Column(Integer, nullable=False)  # Position in the event's perk list
    status = Column(String(20), nullable=False)  # PerkStatus
    asset_url = Column(String(1024), nullable=True)
    delivered_at = Column(UTCDateTime, nullable=True)
    delivered_by = Column(Integer, nullable=True)  # Admin user id
    extra_data = Column("metadata", JSON, nullable=True)  # hasPriorityPlan, priorityPlanId, reason
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    booking = relationship("Booking", back_populates="perk_allocations")
    user = relationship("User")
