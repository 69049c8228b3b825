"""Pydantic schemas for session pack codes"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import Field
from app.schemas.checkout import CamelModel


class PackCodeRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=16)


class PackCodeStatus(CamelModel):
    valid: bool
    reason: Optional[Literal["expired", "exhausted", "inactive"]] = None
    code: str
    pack_name: Optional[str] = None
    booking_id: int
    sessions_total: int
    sessions_used: int
    sessions_remaining: int
    expires_at: Optional[datetime] = None


class RedeemPackRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=16)
    scheduled_at: datetime


class PackRedemptionResponse(CamelModel):
    booking_id: int
    scheduled_at: datetime
    status: str
    sessions_remaining: int
