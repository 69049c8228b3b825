"""Pydantic schemas for order status"""
from datetime import datetime
from typing import Optional
from pydantic import Field
from app.schemas.checkout import CamelModel


class OrderStatusResponse(CamelModel):
    reference: str
    order_type: str
    item_id: str
    item_name: str
    amount: float
    original_amount: float
    discount_amount: float
    currency: str
    payment_method: Optional[str] = None
    payment_status: str
    transaction_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ManualConfirmationRequest(CamelModel):
    transaction_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
