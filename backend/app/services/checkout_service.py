"""Checkout service - validates a purchase, prices it and hands it to a gateway"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    CheckoutValidationError, DuplicatePurchaseError, DiscountInvalidError, GatewayError
)
from app.core.metrics import checkouts_counter
from app.models.entitlement import EntitlementType
from app.models.order import OrderStatus, ProductType
from app.models.user import User
from app.schemas.checkout import CheckoutRequest, CheckoutResponse
from app.services.discount_service import round_amount, validate_discount_code
from app.services.entitlement_service import get_active_entitlement
from app.services.order_service import (
    create_order, complete_order, transition_order_status, update_gateway_metadata
)
from app.services.payments import (
    CreatePaymentParams, CustomerInfo, GatewayMetadata, PaymentResult, TransactionStatus,
    select_gateway, payment_method_enum
)
from app.services.payments.types import GATEWAY_ERROR
from app.services.subscription_service import get_live_subscription_for_tier
from app.services.user_service import get_user_by_email

logger = logging.getLogger(__name__)
checkout_logger = logging.getLogger("checkout")

# Product types whose grant is keyed by the product id itself
ENTITLEMENT_TYPES = {
    ProductType.EVENT: EntitlementType.EVENT,
    ProductType.PREMIUM_CONTENT: EntitlementType.PREMIUM_CONTENT,
}


def check_duplicate_purchase(owner_id: Optional[int], request: CheckoutRequest, db: Session) -> None:
    """Reject re-buying something the buyer already holds

    A different membership tier is an upgrade or downgrade and goes through.

    Raises:
        DuplicatePurchaseError: If an active grant or live subscription covers the purchase
    """
    if not owner_id:
        return

    if request.product_type == ProductType.MEMBERSHIP:
        if get_live_subscription_for_tier(owner_id, request.product_id, db):
            raise DuplicatePurchaseError("You already have an active subscription to this membership")
    elif request.product_type == ProductType.COURSE:
        owned = [c for c in request.course_ids
                 if get_active_entitlement(owner_id, EntitlementType.COURSE, c, db)]
        if owned:
            raise DuplicatePurchaseError(
                "You already have access to this course",
                details={"courseIds": owned}
            )
    elif request.product_type in ENTITLEMENT_TYPES:
        if get_active_entitlement(owner_id, ENTITLEMENT_TYPES[request.product_type], request.product_id, db):
            raise DuplicatePurchaseError("You already have access to this product")


def build_order_metadata(request: CheckoutRequest, customer: CustomerInfo,
                         client_ip: Optional[str]) -> Dict[str, Any]:
    """Snapshot stored on the order; issuance reads product details from here"""
    metadata = {
        "request": request.model_dump(mode="json", by_alias=True),
        "customer": customer.model_dump(),
        "clientIp": client_ip,
    }
    if request.billing_interval:
        metadata["billingInterval"] = request.billing_interval
    if request.product_type == ProductType.COURSE:
        metadata["courseIds"] = request.course_ids
    if request.product_type == ProductType.EVENT:
        metadata["seats"] = request.seats
    if request.scheduled_at:
        metadata["scheduledAt"] = request.scheduled_at.isoformat()
    if request.metadata.get("isPack"):
        metadata["isPack"] = True
    if request.metadata.get("productType"):
        metadata["productType"] = request.metadata["productType"]
    return metadata


def process_checkout(
    request: CheckoutRequest,
    user: Optional[User],
    client_ip: Optional[str],
    db: Session
) -> CheckoutResponse:
    """Create an order for a purchase and start its payment

    Zero-amount orders (free items, 100% discounts) complete on the spot
    without a gateway, ending in the same state a confirmed payment would.

    Raises:
        CheckoutValidationError, DuplicatePurchaseError, DiscountInvalidError, GatewayError
    """
    if user:
        email, name = user.email, user.name or request.customer_name
        owner_id = user.id
    else:
        if not request.customer_email:
            raise CheckoutValidationError("customerEmail is required for guest checkout")
        email, name = str(request.customer_email).lower(), request.customer_name
        existing = get_user_by_email(email, db)
        owner_id = existing.id if existing else None

    check_duplicate_purchase(owner_id, request, db)

    original_amount = round_amount(request.amount, request.currency)
    discount_amount = 0
    discount = None
    if request.discount_code:
        result = validate_discount_code(
            request.discount_code, owner_id, request.course_ids or [request.product_id],
            original_amount, request.currency, db
        )
        if not result.valid:
            checkout_logger.info(f"Discount {request.discount_code} rejected: {result.reason}")
            raise DiscountInvalidError(result.error, reason=result.reason)
        discount = result.discount
        discount_amount = result.discount_amount
    final_amount = round_amount(max(0, original_amount - discount_amount), request.currency)

    customer = CustomerInfo(
        email=email,
        name=name or email.split("@")[0],
        phone=request.customer_phone,
        document_number=request.customer_document
    )
    zero_amount = final_amount == 0
    gateway = None if zero_amount else select_gateway(request.payment_method, request.currency)

    order = create_order(
        db,
        user_id=user.id if user else None,
        guest_email=None if user else email,
        guest_name=None if user else name,
        order_type=request.product_type,
        item_id=request.product_id,
        item_name=request.product_name,
        original_amount=original_amount,
        discount_amount=discount_amount,
        amount=final_amount,
        currency=request.currency,
        payment_method=payment_method_enum(gateway.name, request.payment_method) if gateway else None,
        discount_code_id=discount.id if discount else None,
        discount_code=discount.code if discount else None,
        extra_data=build_order_metadata(request, customer, client_ip)
    )

    response = CheckoutResponse(
        success=True,
        reference=order.order_number,
        original_amount=original_amount,
        discount_amount=discount_amount,
        final_amount=final_amount
    )

    if zero_amount:
        try:
            complete_order(order, db)
            db.commit()
        except Exception:
            db.rollback()
            checkouts_counter.labels(product_type=order.order_type, gateway="none", outcome="error").inc()
            raise
        checkouts_counter.labels(product_type=order.order_type, gateway="none", outcome="completed").inc()
        checkout_logger.info(f"Zero-amount order {order.order_number} completed without a gateway")
        response.zero_amount = True
        return response

    params = CreatePaymentParams(
        amount=final_amount,
        currency=request.currency,
        order_id=order.id,
        order_number=order.order_number,
        customer=customer,
        description=f"{request.product_name} - {settings.BRAND_NAME}",
        payment_method=request.payment_method,
        metadata={"productType": request.product_type, "productId": request.product_id},
        return_url=f"{settings.FRONTEND_URL}/pago/confirmacion?ref={order.order_number}",
        webhook_url=f"{settings.BACKEND_URL}/webhooks/{gateway.name}"
    )
    try:
        result = gateway.create_payment(params)
    except Exception as e:
        checkout_logger.error(f"{gateway.name} raised while starting payment for {order.order_number}: {e}", exc_info=True)
        result = PaymentResult(success=False, error=f"{gateway.name} could not start the payment", error_code=GATEWAY_ERROR)

    if not result.success:
        transition_order_status(order, OrderStatus.FAILED, db)
        update_gateway_metadata(order, GatewayMetadata(
            gateway=gateway.name,
            last_status=TransactionStatus.ERROR,
            error=result.error,
            error_code=result.error_code
        ))
        db.commit()
        checkouts_counter.labels(product_type=order.order_type, gateway=gateway.name, outcome="failed").inc()
        checkout_logger.warning(
            f"Payment creation failed for {order.order_number} via {gateway.name}: "
            f"{result.error_code} {result.error}"
        )
        raise GatewayError(
            result.error or "The payment could not be started",
            details={"gatewayErrorCode": result.error_code, "reference": order.order_number}
        )

    update_gateway_metadata(order, GatewayMetadata(
        gateway=gateway.name,
        transaction_id=result.transaction_id,
        reference=result.reference or order.order_number,
        last_status=result.status or TransactionStatus.PENDING
    ))
    db.commit()
    checkouts_counter.labels(product_type=order.order_type, gateway=gateway.name, outcome="pending").inc()
    checkout_logger.info(
        f"Order {order.order_number} sent to {gateway.name} (transaction {result.transaction_id})"
    )

    response.redirect_url = result.redirect_url
    response.checkout_instructions = result.checkout_instructions
    response.transaction_id = result.transaction_id
    response.gateway = gateway.name
    return response

