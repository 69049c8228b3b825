"""Order service - order records, numbering and the single PENDING -> terminal transition"""
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InternalError, OrderStateError
from app.models.order import Order, OrderStatus, ProductType
from app.schemas.orders import OrderStatusResponse
from app.services.discount_service import record_discount_usage
from app.services.issuance_service import issue_for_order
from app.services.payments import GatewayMetadata, map_to_order_status
from app.services.user_service import resolve_or_create_user

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")
security_logger = logging.getLogger("security")

ORDER_PREFIXES = {
    ProductType.SESSION: "ORD",
    ProductType.EVENT: "EVT",
    ProductType.MEMBERSHIP: "MEM",
    ProductType.COURSE: "CRS",
}
ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(product_type: str, now: Optional[datetime] = None) -> str:
    """Human-readable order number, e.g. EVT-20250314-7QK2"""
    now = now or datetime.now(timezone.utc)
    prefix = ORDER_PREFIXES.get(product_type, "ORD")
    suffix = "".join(secrets.choice(ORDER_SUFFIX_ALPHABET) for _ in range(4))
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


def parse_order_number(order_number: str) -> Optional[Dict[str, str]]:
    """Split an order number into its parts, or None when it is not one of ours"""
    parts = (order_number or "").split("-")
    if len(parts) != 3 or len(parts[1]) != 8 or not parts[1].isdigit() or len(parts[2]) != 4:
        return None
    return {"prefix": parts[0], "date": parts[1], "suffix": parts[2]}


def create_order(db: Session, **fields: Any) -> Order:
    """Insert a PENDING order, retrying on order-number collisions

    The unique order_number column is the only arbiter; a collision rolls the
    insert back and a fresh number is drawn.
    """
    for attempt in range(1, settings.ORDER_NUMBER_MAX_ATTEMPTS + 1):
        order = Order(
            order_number=generate_order_number(fields.get("order_type")),
            payment_status=OrderStatus.PENDING,
            **fields
        )
        db.add(order)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Order number collision on attempt {attempt}: {order.order_number}")
            continue
        db.refresh(order)
        payments_logger.info(
            f"Created order {order.order_number} ({order.order_type} {order.item_id}) "
            f"for {order.amount} {order.currency}"
        )
        return order

    raise InternalError("Could not allocate a unique order number")


def get_order_by_reference(reference: str, db: Session) -> Optional[Order]:
    return db.query(Order).filter(Order.order_number == reference).first()


def get_order_by_id(order_id: int, db: Session) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def find_order_for_event(reference: Optional[str], lookup_ids: Iterable[str], db: Session) -> Optional[Order]:
    """Locate the order a provider event refers to

    Providers that echo our order number are matched by it; the rest are
    matched by the transaction id stored when the payment was created.
    """
    if reference:
        order = get_order_by_reference(reference, db)
        if order:
            return order

    ids = [i for i in lookup_ids if i]
    if not ids:
        return None
    return db.query(Order).filter(Order.gateway_transaction_id.in_(ids)).first()


def transition_order_status(order: Order, new_status: str, db: Session) -> bool:
    """Move an order out of PENDING exactly once

    Compare-and-set on payment_status: of any number of concurrent callers
    only one sees rowcount 1. Does not commit.

    Returns:
        bool: True if this caller performed the transition
    """
    if new_status == OrderStatus.PENDING:
        return False

    db.flush()
    updated = db.query(Order).filter(
        Order.id == order.id,
        Order.payment_status == OrderStatus.PENDING
    ).update({
        Order.payment_status: new_status,
        Order.updated_at: datetime.now(timezone.utc)
    })

    if updated != 1:
        db.refresh(order)
        logger.info(
            f"Order {order.order_number} already {order.payment_status}, not moving to {new_status}"
        )
        return False

    payments_logger.info(f"Order {order.order_number}: PENDING -> {new_status}")
    return True


def update_gateway_metadata(order: Order, gateway_metadata: GatewayMetadata) -> None:
    """Store the structured gateway record under metadata["gateway"]"""
    extra = dict(order.extra_data or {})
    extra["gateway"] = gateway_metadata.model_dump(mode="json")
    order.extra_data = extra
    # The first id stays the lookup key for later provider events
    if gateway_metadata.transaction_id and not order.gateway_transaction_id:
        order.gateway_transaction_id = gateway_metadata.transaction_id


def get_gateway_metadata(order: Order) -> Optional[GatewayMetadata]:
    record = (order.extra_data or {}).get("gateway")
    return GatewayMetadata(**record) if record else None


def get_order_status(order: Order) -> OrderStatusResponse:
    gateway = get_gateway_metadata(order)
    return OrderStatusResponse(
        reference=order.order_number,
        order_type=order.order_type,
        item_id=order.item_id,
        item_name=order.item_name,
        amount=order.amount,
        original_amount=order.original_amount,
        discount_amount=order.discount_amount or 0,
        currency=order.currency,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        transaction_id=gateway.transaction_id if gateway else order.gateway_transaction_id,
        created_at=order.created_at,
        updated_at=order.updated_at
    )


def complete_order(order: Order, db: Session, transaction_id: Optional[str] = None) -> bool:
    """Complete a PENDING order and run every completion side effect

    Guest buyers get an account first so the grants have an owner. The
    transition, entitlements and discount usage share the caller's
    transaction; the caller commits.

    Returns:
        bool: False if another caller already moved the order out of PENDING
    """
    if not order.user_id:
        if not order.guest_email:
            raise InternalError(f"Order {order.order_number} has neither a user nor a guest email")
        user, is_new = resolve_or_create_user(order.guest_email, order.guest_name, db)
        order.user_id = user.id
        if is_new:
            payments_logger.info(f"Converted guest {order.guest_email} to user {user.id} for {order.order_number}")

    if not transition_order_status(order, OrderStatus.COMPLETED, db):
        return False

    if transaction_id and not order.gateway_transaction_id:
        order.gateway_transaction_id = transaction_id

    issue_for_order(order, db)
    record_discount_usage(order, db)
    return True


def apply_transaction_status(order: Order, transaction_status: Optional[str], db: Session,
                             transaction_id: Optional[str] = None) -> bool:
    """Apply a normalised provider status to an order; the caller commits

    Returns:
        bool: True if the order changed state
    """
    new_status = map_to_order_status(transaction_status)
    if new_status == OrderStatus.PENDING:
        return False
    if new_status == OrderStatus.COMPLETED:
        return complete_order(order, db, transaction_id=transaction_id)
    return transition_order_status(order, new_status, db)


def confirm_payment_manually(order: Order, admin_id: int, db: Session,
                             transaction_reference: Optional[str] = None,
                             notes: Optional[str] = None) -> OrderStatusResponse:
    """Admin confirmation of a payment received outside any gateway (bank transfer, cash)

    Completes the order through the same compare-and-set and side effects a
    gateway confirmation would, and records who confirmed it. Commits.

    Raises:
        OrderStateError: The order is not PENDING
    """
    if order.payment_status != OrderStatus.PENDING:
        raise OrderStateError(f"Order is not pending (current status: {order.payment_status})")

    extra = dict(order.extra_data or {})
    extra["manualConfirmation"] = {
        "confirmedAt": datetime.now(timezone.utc).isoformat(),
        "confirmedBy": admin_id,
        "transactionReference": transaction_reference,
        "notes": notes,
    }
    order.extra_data = extra
    try:
        if not complete_order(order, db, transaction_id=transaction_reference):
            db.rollback()
            db.refresh(order)
            raise OrderStateError(f"Order is not pending (current status: {order.payment_status})")
        db.commit()
    except OrderStateError:
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    security_logger.info(
        f"Admin {admin_id} manually confirmed payment for {order.order_number} (ref: {transaction_reference})"
    )
    return get_order_status(order)
