"""Pydantic schemas for checkout"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutRequest(CamelModel):
    product_type: Literal["SESSION", "EVENT", "MEMBERSHIP", "COURSE", "PRODUCT", "PREMIUM_CONTENT"]
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1, max_length=255)
    amount: float = Field(..., ge=0)
    currency: Literal["COP", "USD"]
    payment_method: Literal["CARD", "NEQUI", "PSE", "PAYPAL", "BANK_TRANSFER", "CASH"]
    discount_code: Optional[str] = Field(None, max_length=64)

    # Guest checkout
    customer_email: Optional[EmailStr] = None
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=32)
    customer_document: Optional[str] = Field(None, max_length=32)

    # Product-specific
    scheduled_at: Optional[datetime] = None
    seats: Optional[int] = Field(None, ge=1)
    billing_interval: Optional[Literal["MONTHLY", "YEARLY"]] = None
    course_ids: List[str] = []
    metadata: Dict[str, Any] = {}

    @model_validator(mode="after")
    def check_product_fields(self):
        if self.product_type == "SESSION" and not self.scheduled_at and not self.metadata.get("isPack"):
            raise ValueError("scheduledAt is required for single sessions")
        if self.product_type == "EVENT" and not self.seats:
            self.seats = 1
        if self.product_type == "MEMBERSHIP" and not self.billing_interval:
            raise ValueError("billingInterval is required for memberships")
        if self.product_type == "COURSE" and not self.course_ids:
            self.course_ids = [self.product_id]
        if self.payment_method == "NEQUI" and self.currency != "COP":
            raise ValueError("Nequi only accepts COP")
        return self


class CheckoutResponse(CamelModel):
    success: bool
    reference: Optional[str] = None  # Order number
    redirect_url: Optional[str] = None
    checkout_instructions: Optional[Dict[str, Any]] = None
    transaction_id: Optional[str] = None
    gateway: Optional[str] = None
    zero_amount: bool = False
    original_amount: Optional[float] = None
    discount_amount: Optional[float] = None
    final_amount: Optional[float] = None


class DiscountValidateRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=64)
    amount: float = Field(..., ge=0)
    currency: Literal["COP", "USD"]
    course_ids: List[str] = []


class DiscountValidateResponse(CamelModel):
    valid: bool
    code: Optional[str] = None
    discount_amount: Optional[float] = None
    final_amount: Optional[float] = None
    reason: Optional[str] = None
    error: Optional[str] = None


class PaymentMethodOption(CamelModel):
    method: str
    gateway: str


class PaymentMethodsResponse(CamelModel):
    currency: str
    methods: List[PaymentMethodOption]
