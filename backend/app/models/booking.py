"""Booking model"""
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, JSON
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow


class BookingType:
    SESSION = "SESSION_1_ON_1"
    EVENT = "EVENT"


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Booking(Base):
    """Session or event seat created from a completed order"""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_type = Column(String(32), nullable=False)  # BookingType
    resource_id = Column(String(255), nullable=False, index=True)  # Session product or event id
    resource_name = Column(String(255), nullable=True)
    status = Column(String(20), default=BookingStatus.CONFIRMED, nullable=False)
    payment_status = Column(String(20), nullable=False)
    payment_method = Column(String(32), nullable=True)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency = Column(String(3), nullable=False)
    sessions_total = Column(Integer, default=1, nullable=False)
    sessions_remaining = Column(Integer, default=1, nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), unique=True, nullable=True)
    pack_code = Column(String(16), unique=True, nullable=True, index=True)  # Only on session packs
    pack_booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True)  # Pack a session was redeemed from
    extra_data = Column("metadata", JSON, nullable=True)  # pack expiry, seats
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="bookings")
    perk_allocations = relationship("PerkAllocation", back_populates="booking")
