"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, UniqueConstraint
from app.models.base import Base, UTCDateTime, utcnow


class WebhookEvent(Base):
    """Webhook idempotency ledger, one row per (provider, event_id)"""
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(32), nullable=False, index=True)
    event_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(UTCDateTime, nullable=True)
    failed = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
