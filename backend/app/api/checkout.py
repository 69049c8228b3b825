"""Checkout API routes"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.core.errors import OrchestrationError, to_http_exception
from app.core.security import optional_auth, get_client_ip
from app.db.session import get_db
from app.schemas.checkout import (
    CheckoutRequest, CheckoutResponse, DiscountValidateRequest, DiscountValidateResponse,
    PaymentMethodsResponse, PaymentMethodOption
)
from app.services.checkout_service import process_checkout
from app.services.discount_service import validate_discount_code
from app.services.payments import get_available_payment_methods
from app.services.user_service import get_user_by_id

router = APIRouter(prefix="/api/checkout", tags=["checkout"])
logger = logging.getLogger(__name__)


@router.post("", response_model=CheckoutResponse, response_model_by_alias=True)
def create_checkout(
    request_data: CheckoutRequest,
    request: Request,
    user_id: Optional[int] = Depends(optional_auth),
    db: Session = Depends(get_db)
):
    """Create an order and start its payment (guests must send customerEmail)"""
    user = get_user_by_id(user_id, db) if user_id else None
    try:
        return process_checkout(request_data, user, get_client_ip(request), db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.get("/methods", response_model=PaymentMethodsResponse, response_model_by_alias=True)
def list_payment_methods(currency: str = Query("COP", pattern="^(COP|USD)$")):
    """Payment methods offered for a currency and the gateway behind each"""
    methods = get_available_payment_methods(currency)
    return PaymentMethodsResponse(
        currency=currency,
        methods=[PaymentMethodOption(**m) for m in methods]
    )


@router.post("/discount/validate", response_model=DiscountValidateResponse, response_model_by_alias=True)
def validate_discount(
    request_data: DiscountValidateRequest,
    user_id: Optional[int] = Depends(optional_auth),
    db: Session = Depends(get_db)
):
    """Preview a discount code; an invalid code is a normal response with a reason"""
    if not request_data.code.strip():
        raise HTTPException(400, "Discount code is required")

    result = validate_discount_code(
        request_data.code, user_id, request_data.course_ids,
        request_data.amount, request_data.currency, db
    )
    return DiscountValidateResponse(
        valid=result.valid,
        code=result.discount.code if result.discount else None,
        discount_amount=result.discount_amount if result.valid else None,
        final_amount=result.final_amount,
        reason=result.reason,
        error=result.error
    )
