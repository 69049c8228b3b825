"""Pydantic schemas for subscriptions"""
from datetime import datetime
from typing import Optional
from pydantic import Field
from app.schemas.checkout import CamelModel


class SubscriptionStatusResponse(CamelModel):
    id: int
    status: str
    membership_tier_id: str
    membership_tier_name: Optional[str] = None
    billing_interval: str
    payment_provider: str
    current_period_start: datetime
    current_period_end: datetime
    cancelled_at: Optional[datetime] = None


class CancelSubscriptionRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=255)
