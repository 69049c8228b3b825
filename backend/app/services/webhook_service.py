"""Webhook service - verified, deduplicated processing of provider notifications

Every delivery goes through the same pipeline: signature check on the raw
body, the (provider, event_id) ledger, one handler chosen by event type, and
a single commit that marks the ledger row processed together with the side
effects it caused.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, SignatureInvalidError
from app.core.metrics import webhook_events_counter
from app.models.order import Order, OrderStatus, ProductType
from app.models.subscription import Subscription
from app.models.webhook_event import WebhookEvent
from app.schemas.orders import OrderStatusResponse
from app.services.entitlement_service import revoke_order_entitlements
from app.services.order_service import (
    apply_transaction_status, find_order_for_event, get_gateway_metadata, get_order_status,
    update_gateway_metadata
)
from app.services.payments import (
    GatewayMetadata, TransactionStatus, WebhookVerification, get_gateway, PAYMENT_GATEWAYS
)
from app.services.subscription_service import (
    activate_subscription, cancel_subscription, get_subscription_by_provider_id,
    mark_past_due, renew_subscription
)

logger = logging.getLogger(__name__)
webhooks_logger = logging.getLogger("webhooks")
security_logger = logging.getLogger("security")

EventHandler = Callable[[str, WebhookVerification, Session], bool]


# ============================================================================
# LEDGER
# ============================================================================

def get_ledger_entry(provider: str, event_id: str, db: Session) -> Optional[WebhookEvent]:
    return db.query(WebhookEvent).filter(
        WebhookEvent.provider == provider,
        WebhookEvent.event_id == event_id
    ).first()


def record_ledger_entry(provider: str, event: WebhookVerification, db: Session) -> WebhookEvent:
    """Insert-if-absent on (provider, event_id), committed before any side effect

    Two concurrent first deliveries both try the insert; the unique
    constraint lets one through and the other re-reads the winner's row.
    """
    entry = get_ledger_entry(provider, event.event_id, db)
    if entry:
        return entry

    entry = WebhookEvent(
        provider=provider,
        event_id=event.event_id,
        event_type=event.event_type or "unknown",
        payload=event.data or {}
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        entry = get_ledger_entry(provider, event.event_id, db)
    else:
        db.refresh(entry)
    return entry


def claim_processed(entry: WebhookEvent, db: Session) -> bool:
    """Mark the ledger row processed unless a concurrent delivery already did

    Runs in the same transaction as the handler's side effects, so losing
    this compare-and-set means rolling those side effects back.
    """
    db.flush()
    updated = db.query(WebhookEvent).filter(
        WebhookEvent.id == entry.id,
        WebhookEvent.processed == False  # noqa: E712
    ).update({
        WebhookEvent.processed: True,
        WebhookEvent.processed_at: datetime.now(timezone.utc),
        WebhookEvent.failed: False,
        WebhookEvent.error_message: None
    }, synchronize_session=False)
    return updated == 1


def mark_failed(entry_id: int, error: Exception, db: Session) -> None:
    """Record a handler failure in a fresh transaction so the provider can redeliver"""
    entry = db.query(WebhookEvent).filter(WebhookEvent.id == entry_id).first()
    if not entry:
        return
    entry.failed = True
    entry.error_message = f"{type(error).__name__}: {error}"[:2000]
    entry.retry_count = (entry.retry_count or 0) + 1
    db.commit()


# ============================================================================
# HANDLERS
# ============================================================================

def _record_event(order: Order, provider: str, event: WebhookVerification, keep_transaction_id: bool = False) -> None:
    current = get_gateway_metadata(order)
    transaction_id = event.transaction_id
    if keep_transaction_id and current and current.transaction_id:
        transaction_id = current.transaction_id
    update_gateway_metadata(order, GatewayMetadata(
        gateway=provider,
        transaction_id=transaction_id,
        reference=order.order_number,
        last_status=event.status
    ))


def handle_payment_event(provider: str, event: WebhookVerification, db: Session) -> bool:
    """One-shot payment status change for an order"""
    order = find_order_for_event(event.reference, event.lookup_ids, db)
    if not order:
        webhooks_logger.warning(
            f"No order for {provider} event {event.event_id} "
            f"(reference={event.reference}, ids={event.lookup_ids})"
        )
        return False

    changed = apply_transaction_status(order, event.status, db, transaction_id=event.transaction_id)
    _record_event(order, provider, event, keep_transaction_id=provider == "paypal")
    webhooks_logger.info(
        f"{provider} event {event.event_id} ({event.status}) applied to {order.order_number}: "
        f"{order.payment_status}{'' if changed else ' (unchanged)'}"
    )
    return True


def handle_paypal_order_approved(provider: str, event: WebhookVerification, db: Session) -> bool:
    """Buyer approved the PayPal order; capture it and complete on success"""
    order = find_order_for_event(event.reference, event.lookup_ids, db)
    if not order:
        webhooks_logger.warning(f"No order for PayPal approval {event.event_id}")
        return False
    if order.payment_status != OrderStatus.PENDING:
        return True

    capture = PAYMENT_GATEWAYS["paypal"].capture_order(event.transaction_id)
    if not capture.success:
        # Raising leaves the ledger row failed so PayPal's redelivery retries the capture
        raise RuntimeError(f"PayPal capture failed: {capture.error_code} {capture.error}")

    captured = event.model_copy(update={"status": capture.status})
    apply_transaction_status(order, capture.status, db, transaction_id=capture.transaction_id)
    _record_event(order, provider, captured, keep_transaction_id=True)
    webhooks_logger.info(f"PayPal order {event.transaction_id} captured for {order.order_number}: {capture.status}")
    return True


def handle_refund_event(provider: str, event: WebhookVerification, db: Session) -> bool:
    """Refund of a completed payment revokes what the order granted"""
    order = find_order_for_event(event.reference, event.lookup_ids, db)
    if not order:
        webhooks_logger.warning(f"No order for {provider} refund {event.event_id}")
        return False

    if order.payment_status == OrderStatus.PENDING:
        return handle_payment_event(provider, event, db)

    if order.payment_status == OrderStatus.COMPLETED:
        reason = f"Refunded via {provider}"
        if order.order_type == ProductType.MEMBERSHIP:
            subscription = db.query(Subscription).filter(Subscription.order_id == order.id).first()
            if subscription:
                cancel_subscription(subscription, reason, db)
        revoke_order_entitlements(order.id, reason, db)
        _record_event(order, provider, event, keep_transaction_id=True)
        webhooks_logger.info(f"Order {order.order_number} refunded; grants revoked")
    return True


def _find_subscription(event: WebhookVerification, db: Session) -> Optional[Subscription]:
    return get_subscription_by_provider_id(event.subscription_id, db)


def handle_subscription_approved(provider: str, event: WebhookVerification, db: Session) -> bool:
    subscription = _find_subscription(event, db)
    if subscription:
        activate_subscription(subscription, db)
        return True

    # First approval: the subscription is created when its order completes
    order = find_order_for_event(event.reference, event.lookup_ids, db)
    if not order:
        webhooks_logger.warning(f"No subscription or order for approval {event.event_id}")
        return False

    if event.subscription_id:
        extra = dict(order.extra_data or {})
        extra["providerSubscriptionId"] = event.subscription_id
        order.extra_data = extra
    apply_transaction_status(order, TransactionStatus.APPROVED, db, transaction_id=event.transaction_id)
    _record_event(order, provider, event)

    if event.subscription_id:
        subscription = db.query(Subscription).filter(Subscription.order_id == order.id).first()
        if subscription and not subscription.provider_subscription_id:
            subscription.provider_subscription_id = event.subscription_id
    return True


def handle_subscription_payment(provider: str, event: WebhookVerification, db: Session) -> bool:
    subscription = _find_subscription(event, db)
    if not subscription:
        return handle_payment_event(provider, event, db)
    renew_subscription(subscription, db)
    return True


def handle_subscription_payment_failed(provider: str, event: WebhookVerification, db: Session) -> bool:
    subscription = _find_subscription(event, db)
    if not subscription:
        return handle_payment_event(provider, event, db)
    mark_past_due(subscription, db)
    return True


def handle_subscription_cancelled(provider: str, event: WebhookVerification, db: Session) -> bool:
    subscription = _find_subscription(event, db)
    if not subscription:
        webhooks_logger.warning(f"No subscription {event.subscription_id} for cancellation {event.event_id}")
        return False
    cancel_subscription(subscription, f"Cancelled via {provider}", db)
    return True


# Keyed by (provider, event type); anything else is a one-shot payment event
WEBHOOK_HANDLERS: Dict[Tuple[str, str], EventHandler] = {
    ("paypal", "CHECKOUT.ORDER.APPROVED"): handle_paypal_order_approved,
    ("paypal", "PAYMENT.CAPTURE.REFUNDED"): handle_refund_event,
    ("nequi", "subscription.approved"): handle_subscription_approved,
    ("nequi", "payment.succeeded"): handle_subscription_payment,
    ("nequi", "payment.failed"): handle_subscription_payment_failed,
    ("nequi", "subscription.cancelled"): handle_subscription_cancelled,
}


def get_event_handler(provider: str, event_type: Optional[str]) -> EventHandler:
    return WEBHOOK_HANDLERS.get((provider, event_type), handle_payment_event)


# ============================================================================
# ENTRY POINTS
# ============================================================================

def handle_webhook(provider: str, headers: Mapping[str, str], raw_body: bytes, db: Session) -> Dict[str, bool]:
    """Process one webhook delivery

    Returns:
        dict: {"received": True, "processed": bool}; processed is False for
        duplicates, events matching no order and handler failures

    Raises:
        NotFoundError: Unknown provider
        SignatureInvalidError: Signature check failed; nothing was parsed or stored
    """
    provider = (provider or "").lower()
    gateway = get_gateway(provider)
    if not gateway:
        raise NotFoundError(f"Unknown payment provider: {provider}")

    try:
        event = gateway.verify_webhook(headers, raw_body)
    except Exception as e:
        security_logger.error(f"{provider} webhook verification raised: {e}", exc_info=True)
        event = WebhookVerification(valid=False, error="Unreadable webhook payload")
    if not event.valid or not event.event_id:
        webhook_events_counter.labels(provider=provider, outcome="rejected").inc()
        security_logger.warning(f"Rejected {provider} webhook: {event.error}")
        raise SignatureInvalidError(event.error or "Invalid webhook signature")

    entry = record_ledger_entry(provider, event, db)
    if entry.processed:
        webhook_events_counter.labels(provider=provider, outcome="duplicate").inc()
        webhooks_logger.info(f"Duplicate {provider} event {event.event_id}, already processed")
        return {"received": True, "processed": False}

    entry_id = entry.id
    try:
        handler = get_event_handler(provider, event.event_type)
        matched = handler(provider, event, db)
        if not claim_processed(entry, db):
            db.rollback()
            webhook_events_counter.labels(provider=provider, outcome="duplicate").inc()
            webhooks_logger.info(f"{provider} event {event.event_id} processed concurrently; discarding")
            return {"received": True, "processed": False}
        db.commit()
    except Exception as e:
        db.rollback()
        webhooks_logger.error(f"Failed to process {provider} event {event.event_id}: {e}", exc_info=True)
        mark_failed(entry_id, e, db)
        webhook_events_counter.labels(provider=provider, outcome="failed").inc()
        return {"received": True, "processed": False}

    outcome = "processed" if matched else "unmatched"
    webhook_events_counter.labels(provider=provider, outcome=outcome).inc()
    webhooks_logger.info(f"{provider} event {event.event_id} ({event.event_type}): {outcome}")
    return {"received": True, "processed": matched}


def refresh_order_from_gateway(order: Order, db: Session) -> OrderStatusResponse:
    """Ask the order's gateway for the current status and apply it

    Used when a webhook is late or lost. Goes through the same
    compare-and-set as webhooks; a lookup failure just returns the known state.
    """
    if order.payment_status != OrderStatus.PENDING:
        return get_order_status(order)

    record = get_gateway_metadata(order)
    gateway = get_gateway(record.gateway) if record else None
    transaction_id = (record.transaction_id if record else None) or order.gateway_transaction_id
    if not gateway or not transaction_id:
        return get_order_status(order)

    result = gateway.get_transaction_status(transaction_id)
    if not result.success:
        logger.warning(
            f"Status lookup for {order.order_number} via {gateway.name} failed: {result.error_code} {result.error}"
        )
        return get_order_status(order)

    try:
        apply_transaction_status(order, result.status, db, transaction_id=result.transaction_id)
        update_gateway_metadata(order, record.model_copy(update={
            "last_status": result.status,
            "updated_at": datetime.now(timezone.utc)
        }))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    return get_order_status(order)
