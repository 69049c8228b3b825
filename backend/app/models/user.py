"""User model"""
from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow


class User(Base):
    """User accounts (registered or created from a guest checkout)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)  # Always stored lower-cased
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)  # Null until a guest sets a password
    is_admin = Column(Boolean, default=False, nullable=False)
    created_from_guest = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    orders = relationship("Order", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
    entitlements = relationship("Entitlement", back_populates="user", cascade="all, delete-orphan")
    bookings = relationship("Booking", back_populates="user", cascade="all, delete-orphan")
