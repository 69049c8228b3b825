"""Issuance service - turns a COMPLETED order into bookings, subscriptions and grants

Every branch is idempotent per order (unique order_id on bookings and
subscriptions, active-grant checks on entitlements) so a retried webhook
re-running issuance never duplicates anything.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InternalError
from app.models.booking import Booking, BookingType, BookingStatus
from app.models.course_progress import CourseProgress
from app.models.entitlement import EntitlementType
from app.models.order import Order, OrderStatus, ProductType
from app.services.entitlement_service import get_active_entitlement, grant_entitlement
from app.services.perk_service import allocate_perks
from app.services.subscription_service import create_subscription_for_order

logger = logging.getLogger(__name__)

PACK_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # No 0/O or 1/I
PACK_CODE_LENGTH = 6
PACK_VALIDITY_DAYS = 365
PACK_CODE_ATTEMPTS = 5

_datetime_adapter = TypeAdapter(datetime)


def generate_pack_code() -> str:
    """Short redemption code a buyer can type, e.g. PACK-7KQ2MX"""
    return "PACK-" + "".join(secrets.choice(PACK_CODE_ALPHABET) for _ in range(PACK_CODE_LENGTH))


def allocate_pack_code(db: Session) -> str:
    """A pack code no booking holds yet"""
    for _ in range(PACK_CODE_ATTEMPTS):
        code = generate_pack_code()
        if not db.query(Booking.id).filter(Booking.pack_code == code).first():
            return code
    raise InternalError("Could not generate a unique pack code")


def is_pack_order(order: Order) -> bool:
    metadata = order.extra_data or {}
    return bool(metadata.get("isPack")) or metadata.get("productType") == "pack"


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    parsed = _datetime_adapter.validate_python(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _get_order_booking(order: Order, db: Session) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.order_id == order.id).first()


def issue_session_booking(order: Order, db: Session) -> Booking:
    """One-on-one session booking, or a session pack with a redemption code"""
    existing = _get_order_booking(order, db)
    if existing:
        return existing

    metadata = order.extra_data or {}
    booking_metadata = {}
    pack_code = None
    if is_pack_order(order):
        sessions = settings.SESSION_PACK_SIZE
        scheduled_at = None
        pack_code = allocate_pack_code(db)
        booking_metadata = {
            "isPack": True,
            "packExpiresAt": (datetime.now(timezone.utc) + timedelta(days=PACK_VALIDITY_DAYS)).isoformat(),
        }
    else:
        sessions = 1
        scheduled_at = _parse_datetime(metadata.get("scheduledAt"))
        if not scheduled_at:
            raise InternalError(f"Session order {order.order_number} has no scheduled time")

    booking = Booking(
        user_id=order.user_id,
        booking_type=BookingType.SESSION,
        resource_id=order.item_id,
        resource_name=order.item_name,
        status=BookingStatus.CONFIRMED,
        payment_status=OrderStatus.COMPLETED,
        payment_method=order.payment_method,
        amount=order.amount,
        currency=order.currency,
        sessions_total=sessions,
        sessions_remaining=sessions,
        scheduled_at=scheduled_at,
        order_id=order.id,
        pack_code=pack_code,
        extra_data=booking_metadata
    )
    db.add(booking)
    db.flush()
    logger.info(
        f"Session booking {booking.id} ({sessions} session(s)) created for order {order.order_number}"
    )
    return booking


def issue_event_booking(order: Order, db: Session) -> Booking:
    """Event seat(s), the EVENT grant, then perk allocation for the booking"""
    booking = _get_order_booking(order, db)
    if booking is None:
        seats = int((order.extra_data or {}).get("seats") or 1)
        booking = Booking(
            user_id=order.user_id,
            booking_type=BookingType.EVENT,
            resource_id=order.item_id,
            resource_name=order.item_name,
            status=BookingStatus.CONFIRMED,
            payment_status=OrderStatus.COMPLETED,
            payment_method=order.payment_method,
            amount=order.amount,
            currency=order.currency,
            sessions_total=seats,
            sessions_remaining=seats,
            order_id=order.id,
            extra_data={"seats": seats}
        )
        db.add(booking)
        db.flush()
        logger.info(f"Event booking {booking.id} ({seats} seat(s)) created for order {order.order_number}")

    grant_entitlement(
        user_id=order.user_id,
        entitlement_type=EntitlementType.EVENT,
        resource_id=order.item_id,
        resource_name=order.item_name,
        db=db,
        order_id=order.id
    )
    allocate_perks(booking.id, db)
    return booking


def issue_course_entitlements(order: Order, db: Session) -> List[str]:
    """One unexpiring grant per purchased course; returns the course ids granted"""
    metadata = order.extra_data or {}
    course_ids = metadata.get("courseIds") or [order.item_id]
    granted = []

    for course_id in course_ids:
        if get_active_entitlement(order.user_id, EntitlementType.COURSE, course_id, db):
            logger.info(f"User {order.user_id} already has course {course_id}, skipping")
            continue
        grant_entitlement(
            user_id=order.user_id,
            entitlement_type=EntitlementType.COURSE,
            resource_id=course_id,
            resource_name=order.item_name if course_id == order.item_id else None,
            db=db,
            order_id=order.id
        )
        granted.append(course_id)

        progress = db.query(CourseProgress).filter(
            CourseProgress.user_id == order.user_id,
            CourseProgress.course_id == course_id
        ).first()
        if progress is None:
            db.add(CourseProgress(user_id=order.user_id, course_id=course_id))
            db.flush()

    return granted


def issue_for_order(order: Order, db: Session) -> None:
    """Run the product-type side effects of a COMPLETED order. Does not commit."""
    if not order.user_id:
        raise InternalError(f"Order {order.order_number} has no owner to issue to")

    if order.order_type == ProductType.MEMBERSHIP:
        create_subscription_for_order(order, db)
    elif order.order_type == ProductType.COURSE:
        issue_course_entitlements(order, db)
    elif order.order_type == ProductType.SESSION:
        issue_session_booking(order, db)
    elif order.order_type == ProductType.EVENT:
        issue_event_booking(order, db)
    elif order.order_type == ProductType.PREMIUM_CONTENT:
        grant_entitlement(
            user_id=order.user_id,
            entitlement_type=EntitlementType.PREMIUM_CONTENT,
            resource_id=order.item_id,
            resource_name=order.item_name,
            db=db,
            order_id=order.id
        )
    else:
        # Physical products are fulfilled outside this service
        logger.info(f"No entitlement for {order.order_type} order {order.order_number}")
