"""Discount service - discount code validation, calculation and usage tracking"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.models.discount_usage import DiscountUsage
from app.models.order import Order
from app.schemas.content import DiscountCodeDefinition
from app.services.content import get_content_repository

logger = logging.getLogger(__name__)


class DiscountValidationResult(BaseModel):
    valid: bool
    discount: Optional[DiscountCodeDefinition] = None
    discount_amount: float = 0
    final_amount: Optional[float] = None
    reason: Optional[str] = None  # not_found, inactive, expired, exhausted, ...
    error: Optional[str] = None


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def round_amount(amount: float, currency: str = "COP") -> float:
    """Half-up rounding to the currency's minor unit (COP has none in practice)"""
    step = Decimal("0.01") if currency == "USD" else Decimal("1")
    return float(Decimal(str(amount)).quantize(step, rounding=ROUND_HALF_UP))


def calculate_discount(amount: float, discount_type: str, discount_value: float, currency: str = "COP") -> float:
    """Discount for an amount, clamped so it never exceeds the amount itself

    Args:
        amount: Original amount
        discount_type: 'percentage' or 'fixed_amount'
        discount_value: Percent (0-100) or absolute amount
    """
    if amount <= 0 or discount_value <= 0:
        return 0
    if discount_type == "percentage":
        discount = round_amount(amount * discount_value / 100, currency)
    else:
        discount = min(discount_value, amount)
    return max(0, min(discount, amount))


def get_usage_count(discount_code_id: str, db: Session) -> int:
    return db.query(DiscountUsage).filter(DiscountUsage.discount_code_id == discount_code_id).count()


def _reject(reason: str, error: str) -> DiscountValidationResult:
    return DiscountValidationResult(valid=False, reason=reason, error=error)


def validate_discount_code(
    code: str,
    user_id: Optional[int],
    course_ids: List[str],
    amount: float,
    currency: str,
    db: Session
) -> DiscountValidationResult:
    """Validate a discount code for a purchase

    Rules are checked in a fixed order and the first failing rule is
    reported with an explicit reason. Never raises for an invalid code.
    """
    discount = get_content_repository().get_discount_code(code.strip().upper())
    if not discount:
        return _reject("not_found", "Discount code not found")

    if not discount.active:
        return _reject("inactive", "This discount code is not active")

    now = datetime.now(timezone.utc)
    if discount.valid_from and now < _as_utc(discount.valid_from):
        return _reject("not_yet_valid", "This discount code is not valid yet")
    if discount.valid_until and now > _as_utc(discount.valid_until):
        return _reject("expired", "This discount code has expired")

    if discount.usage_type == "single_use":
        # Single use means one redemption across all buyers
        if get_usage_count(discount.id, db) > 0:
            return _reject("already_used", "This discount code has already been used")
    elif discount.max_uses and get_usage_count(discount.id, db) >= discount.max_uses:
        return _reject("exhausted", "This discount code has reached its usage limit")

    if discount.applies_to_courses:
        applicable = {c.id for c in discount.applies_to_courses}
        if not applicable.intersection(course_ids or []):
            return _reject("not_applicable", "This discount code does not apply to the selected products")

    if discount.min_purchase_amount and amount < discount.min_purchase_amount:
        return _reject("below_minimum", f"Minimum purchase amount is {discount.min_purchase_amount:g}")

    if discount.discount_type == "fixed_amount" and discount.currency != currency:
        return _reject("currency_mismatch", f"This discount code only applies to payments in {discount.currency}")

    discount_amount = calculate_discount(amount, discount.discount_type, discount.discount_value, currency)
    logger.info(f"Discount code {discount.code} valid for user {user_id}: -{discount_amount} {currency}")
    return DiscountValidationResult(
        valid=True,
        discount=discount,
        discount_amount=discount_amount,
        final_amount=max(0, amount - discount_amount)
    )


def record_discount_usage(order: Order, db: Session) -> Optional[DiscountUsage]:
    """Record redemption of the order's discount code, at most once per order

    Runs inside the caller's transaction; the unique order_id column makes a
    concurrent duplicate fail at commit instead of double counting.
    """
    if not order.discount_code_id:
        return None

    existing = db.query(DiscountUsage).filter(DiscountUsage.order_id == order.id).first()
    if existing:
        return existing

    usage = DiscountUsage(
        discount_code_id=order.discount_code_id,
        discount_code=order.discount_code,
        user_id=order.user_id,
        order_id=order.id,
        discount_amount=order.discount_amount or 0,
        currency=order.currency
    )
    db.add(usage)
    db.flush()
    logger.info(f"Recorded discount usage of {order.discount_code} for order {order.order_number}")
    return usage
