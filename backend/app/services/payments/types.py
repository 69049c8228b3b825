"""Shared vocabulary for payment gateway adapters"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from app.models.base import utcnow


class PaymentMethodType:
    CARD = "CARD"
    NEQUI = "NEQUI"
    PSE = "PSE"
    PAYPAL = "PAYPAL"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"


class TransactionStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"


class Currency:
    COP = "COP"
    USD = "USD"


GATEWAY_ERROR = "GATEWAY_ERROR"


class CustomerInfo(BaseModel):
    email: str
    name: str
    phone: Optional[str] = None
    document_type: str = "CC"
    document_number: Optional[str] = None


class CreatePaymentParams(BaseModel):
    amount: float
    currency: str
    order_id: int
    order_number: str
    customer: CustomerInfo
    description: str
    payment_method: Optional[str] = None
    metadata: Dict[str, Any] = {}
    return_url: str
    webhook_url: Optional[str] = None


class PaymentResult(BaseModel):
    """Normalised result of a create_payment call; failures are reported, never raised"""
    success: bool
    redirect_url: Optional[str] = None
    checkout_instructions: Optional[Dict[str, Any]] = None
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class WebhookVerification(BaseModel):
    valid: bool
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    transaction_id: Optional[str] = None
    status: Optional[str] = None  # TransactionStatus
    reference: Optional[str] = None  # Our order number when the provider echoes it
    lookup_ids: List[str] = []  # Provider ids that may have been stored at checkout
    amount: Optional[float] = None
    currency: Optional[str] = None
    subscription_id: Optional[str] = None
    data: Dict[str, Any] = {}
    error: Optional[str] = None


class TransactionStatusResult(BaseModel):
    success: bool
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class RefundParams(BaseModel):
    transaction_id: str
    amount: Optional[float] = None  # Partial refund when set
    currency: Optional[str] = None
    reason: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    status: Optional[str] = None  # PENDING, COMPLETED, FAILED
    error: Optional[str] = None
    error_code: Optional[str] = None


class GatewayMetadata(BaseModel):
    """Structured gateway record kept under order.metadata["gateway"]"""
    version: int = 1
    gateway: str
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    last_status: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
