"""Subscription service - membership lifecycle and the grants that follow it"""
import calendar
import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.orm import Session

from app.core.errors import CheckoutValidationError, NotFoundError
from app.models.entitlement import EntitlementType
from app.models.order import Order
from app.models.subscription import Subscription, SubscriptionStatus, BillingInterval
from app.schemas.subscriptions import SubscriptionStatusResponse
from app.services.entitlement_service import (
    grant_entitlement, extend_subscription_entitlements,
    revoke_subscription_entitlements, restore_subscription_entitlements
)

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 month = Feb 28/29)"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_billing_interval(start: datetime, billing_interval: str) -> datetime:
    if billing_interval == BillingInterval.YEARLY:
        return add_months(start, 12)
    return add_months(start, 1)


def get_subscription_by_id(subscription_id: int, db: Session) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.id == subscription_id).first()


def get_subscription_by_provider_id(provider_subscription_id: str, db: Session) -> Optional[Subscription]:
    if not provider_subscription_id:
        return None
    return db.query(Subscription).filter(
        Subscription.provider_subscription_id == provider_subscription_id
    ).first()


def get_live_subscriptions(user_id: int, db: Session) -> List[Subscription]:
    """Subscriptions currently holding a tier (ACTIVE, TRIAL or PAST_DUE)"""
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status.in_(SubscriptionStatus.LIVE)
    ).order_by(Subscription.created_at.desc()).all()


def get_live_subscription_for_tier(user_id: int, tier_id: str, db: Session) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.membership_tier_id == tier_id,
        Subscription.status.in_(SubscriptionStatus.LIVE)
    ).first()


def get_active_tier_ids(user_id: Optional[int], db: Session) -> List[str]:
    """Tier ids of the user's ACTIVE subscriptions, newest first"""
    if not user_id:
        return []
    rows = db.query(Subscription.membership_tier_id).filter(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE
    ).order_by(Subscription.created_at.desc()).all()
    return [row[0] for row in rows]


def create_subscription_for_order(order: Order, db: Session) -> Subscription:
    """Create the membership subscription and its grant for a completed order

    Idempotent by the unique order_id column. A subscription to a different
    tier supersedes the user's other live subscriptions. Does not commit.
    """
    existing = db.query(Subscription).filter(Subscription.order_id == order.id).first()
    if existing:
        return existing

    metadata = order.extra_data or {}
    billing_interval = metadata.get("billingInterval") or BillingInterval.MONTHLY
    gateway = metadata.get("gateway") or {}
    now = datetime.now(timezone.utc)
    period_end = add_billing_interval(now, billing_interval)

    subscription = Subscription(
        user_id=order.user_id,
        membership_tier_id=order.item_id,
        membership_tier_name=order.item_name,
        status=SubscriptionStatus.ACTIVE,
        billing_interval=billing_interval,
        amount=order.amount,
        currency=order.currency,
        payment_provider=(order.payment_method or gateway.get("gateway") or "manual").lower(),
        provider_subscription_id=metadata.get("providerSubscriptionId"),
        order_id=order.id,
        current_period_start=now,
        current_period_end=period_end,
        provider_approved_at=now
    )
    db.add(subscription)
    db.flush()

    grant_entitlement(
        user_id=order.user_id,
        entitlement_type=EntitlementType.MEMBERSHIP,
        resource_id=order.item_id,
        resource_name=order.item_name,
        db=db,
        order_id=order.id,
        subscription_id=subscription.id,
        expires_at=period_end
    )

    for other in get_live_subscriptions(order.user_id, db):
        if other.id != subscription.id and other.membership_tier_id != subscription.membership_tier_id:
            cancel_subscription(other, f"Superseded by tier {subscription.membership_tier_id}", db)

    payments_logger.info(
        f"Subscription {subscription.id} ({subscription.membership_tier_id}, {billing_interval}) "
        f"created for user {order.user_id} until {period_end.isoformat()}"
    )
    return subscription


def activate_subscription(subscription: Subscription, db: Session,
                          provider_subscription_id: Optional[str] = None) -> bool:
    """Provider approved the recurring agreement; no-op when already active"""
    if provider_subscription_id and not subscription.provider_subscription_id:
        subscription.provider_subscription_id = provider_subscription_id
    if subscription.status == SubscriptionStatus.ACTIVE:
        return False
    if subscription.status == SubscriptionStatus.CANCELLED:
        logger.warning(f"Ignoring approval for cancelled subscription {subscription.id}")
        return False

    subscription.status = SubscriptionStatus.ACTIVE
    subscription.provider_approved_at = datetime.now(timezone.utc)
    extend_subscription_entitlements(subscription.id, subscription.current_period_end, db)
    payments_logger.info(f"Subscription {subscription.id} activated")
    return True


def renew_subscription(subscription: Subscription, db: Session) -> bool:
    """Advance the period by exactly one interval after a successful charge

    Duplicate deliveries never reach here twice (webhook ledger), so every
    call is one real charge. Cancelled subscriptions are not revived.
    """
    if subscription.status == SubscriptionStatus.CANCELLED:
        logger.warning(f"Ignoring renewal payment for cancelled subscription {subscription.id}")
        return False

    new_start = subscription.current_period_end
    new_end = add_billing_interval(new_start, subscription.billing_interval)
    subscription.current_period_start = new_start
    subscription.current_period_end = new_end
    subscription.status = SubscriptionStatus.ACTIVE
    extended = extend_subscription_entitlements(subscription.id, new_end, db)
    payments_logger.info(
        f"Subscription {subscription.id} renewed until {new_end.isoformat()} ({extended} grant(s) extended)"
    )
    return True


def mark_past_due(subscription: Subscription, db: Session) -> bool:
    """Failed renewal charge; grants stay until the period end"""
    if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL):
        return False
    subscription.status = SubscriptionStatus.PAST_DUE
    payments_logger.warning(f"Subscription {subscription.id} is past due")
    return True


def cancel_subscription(subscription: Subscription, reason: str, db: Session) -> bool:
    """Cancel and revoke the grants tied to the subscription. Does not commit."""
    if subscription.status == SubscriptionStatus.CANCELLED:
        return False
    subscription.status = SubscriptionStatus.CANCELLED
    subscription.cancelled_at = datetime.now(timezone.utc)
    subscription.cancel_reason = reason
    revoke_subscription_entitlements(subscription.id, reason, db)
    payments_logger.info(f"Subscription {subscription.id} cancelled: {reason}")
    return True


def reactivate_subscription(subscription: Subscription, db: Session) -> Subscription:
    """Explicit reactivation of a cancelled subscription whose paid period has not ended

    Raises:
        CheckoutValidationError: If the subscription is not cancelled or the period is over
    """
    if subscription.status != SubscriptionStatus.CANCELLED:
        raise CheckoutValidationError("Only cancelled subscriptions can be reactivated")
    if subscription.current_period_end <= datetime.now(timezone.utc):
        raise CheckoutValidationError("The paid period has ended; purchase the membership again")
    if get_live_subscription_for_tier(subscription.user_id, subscription.membership_tier_id, db):
        raise CheckoutValidationError("Another subscription to this tier is already active")

    subscription.status = SubscriptionStatus.ACTIVE
    subscription.cancelled_at = None
    subscription.cancel_reason = None
    restore_subscription_entitlements(subscription.id, subscription.current_period_end, db)
    payments_logger.info(f"Subscription {subscription.id} reactivated")
    return subscription


def get_user_subscription(subscription_id: int, user_id: int, db: Session) -> Subscription:
    """Subscription owned by the user

    Raises:
        NotFoundError: If absent or owned by someone else
    """
    subscription = get_subscription_by_id(subscription_id, db)
    if not subscription or subscription.user_id != user_id:
        raise NotFoundError("Subscription not found")
    return subscription


def get_subscription_status(subscription_id: int, user_id: int, db: Session) -> SubscriptionStatusResponse:
    subscription = get_user_subscription(subscription_id, user_id, db)
    return SubscriptionStatusResponse(
        id=subscription.id,
        status=subscription.status,
        membership_tier_id=subscription.membership_tier_id,
        membership_tier_name=subscription.membership_tier_name,
        billing_interval=subscription.billing_interval,
        payment_provider=subscription.payment_provider,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancelled_at=subscription.cancelled_at
    )
