"""Entitlement model"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow


class EntitlementType:
    COURSE = "COURSE"
    MEMBERSHIP = "MEMBERSHIP"
    EVENT = "EVENT"
    PREMIUM_CONTENT = "PREMIUM_CONTENT"


class Entitlement(Base):
    """Durable access grant; revoked, never deleted"""
    __tablename__ = "entitlements"
    __table_args__ = (
        # One grant per purchased resource per order
        UniqueConstraint("order_id", "type", "resource_id", name="uq_entitlements_order_resource"),
        Index("ix_entitlements_owner_resource", "user_id", "type", "resource_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(32), nullable=False)  # EntitlementType
    resource_id = Column(String(255), nullable=False)
    resource_name = Column(String(255), nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)  # Null = indefinite while not revoked
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(UTCDateTime, nullable=True)
    revoked_reason = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="entitlements")
    subscription = relationship("Subscription", back_populates="entitlements")
