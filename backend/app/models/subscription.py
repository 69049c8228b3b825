"""Subscription model"""
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from app.models.base import Base, UTCDateTime, utcnow


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    TRIAL = "TRIAL"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"

    # Statuses that count as "holding" the tier
    LIVE = (ACTIVE, TRIAL, PAST_DUE)


class BillingInterval:
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Subscription(Base):
    """Recurring membership contract"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    membership_tier_id = Column(String(255), nullable=False, index=True)
    membership_tier_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # SubscriptionStatus
    billing_interval = Column(String(10), nullable=False)  # BillingInterval
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_provider = Column(String(32), nullable=False)  # 'wompi_card', 'epayco_paypal', 'nequi', ...
    provider_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), unique=True, nullable=True)  # Originating order
    current_period_start = Column(UTCDateTime, nullable=False)
    current_period_end = Column(UTCDateTime, nullable=False)
    trial_end = Column(UTCDateTime, nullable=True)
    provider_approved_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    entitlements = relationship("Entitlement", back_populates="subscription")
