"""Session pack service - validating and redeeming prepaid session pack codes

A pack is a session booking with sessions_remaining > 1 and a pack_code.
Redeeming books one session at the chosen time and decrements the pack with
a compare-and-set, so two concurrent redemptions cannot take the last
session twice.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from pydantic import TypeAdapter
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, PackCodeInvalidError, SlotUnavailableError
from app.models.booking import Booking, BookingType, BookingStatus
from app.models.order import OrderStatus
from app.schemas.sessions import PackCodeStatus, PackRedemptionResponse

logger = logging.getLogger(__name__)

PACK_REASON_MESSAGES = {
    "inactive": "This pack is no longer active",
    "expired": "This pack has expired",
    "exhausted": "All sessions of this pack have been used",
}

_datetime_adapter = TypeAdapter(datetime)


def normalize_pack_code(code: str) -> str:
    return (code or "").strip().upper()


def get_pack_booking(code: str, db: Session) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.pack_code == normalize_pack_code(code)).first()


def get_pack_expiry(pack: Booking) -> Optional[datetime]:
    value = (pack.extra_data or {}).get("packExpiresAt")
    if not value:
        return None
    expires_at = _datetime_adapter.validate_python(value)
    return expires_at if expires_at.tzinfo else expires_at.replace(tzinfo=timezone.utc)


def pack_unusable_reason(pack: Booking, now: datetime) -> Optional[str]:
    if pack.status == BookingStatus.CANCELLED:
        return "inactive"
    expires_at = get_pack_expiry(pack)
    if expires_at and now > expires_at:
        return "expired"
    if pack.sessions_remaining <= 0:
        return "exhausted"
    return None


def _owned_pack_or_404(code: str, user_id: int, db: Session) -> Booking:
    pack = get_pack_booking(code, db)
    # Someone else's code is reported like an unknown one
    if not pack or pack.user_id != user_id:
        raise NotFoundError("Pack code not found")
    return pack


def validate_pack_code(code: str, user_id: int, db: Session, now: Optional[datetime] = None) -> PackCodeStatus:
    """Remaining sessions of one of the user's packs

    An unusable pack is a normal answer with valid=False and a reason.

    Raises:
        NotFoundError: Unknown code, or a code owned by another user
    """
    pack = _owned_pack_or_404(code, user_id, db)
    reason = pack_unusable_reason(pack, now or datetime.now(timezone.utc))
    return PackCodeStatus(
        valid=reason is None,
        reason=reason,
        code=pack.pack_code,
        pack_name=pack.resource_name,
        booking_id=pack.id,
        sessions_total=pack.sessions_total,
        sessions_used=pack.sessions_total - pack.sessions_remaining,
        sessions_remaining=pack.sessions_remaining,
        expires_at=get_pack_expiry(pack)
    )


def is_slot_taken(scheduled_at: datetime, db: Session) -> bool:
    return db.query(Booking.id).filter(
        Booking.booking_type == BookingType.SESSION,
        Booking.scheduled_at == scheduled_at,
        Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED])
    ).first() is not None


def redeem_pack_code(
    code: str,
    user_id: int,
    scheduled_at: datetime,
    db: Session,
    now: Optional[datetime] = None
) -> PackRedemptionResponse:
    """Book one session from a pack at scheduled_at; commits

    Raises:
        NotFoundError: Unknown code, or a code owned by another user
        PackCodeInvalidError: Pack inactive, expired or used up
        SlotUnavailableError: Another session already holds that time
    """
    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

    pack = _owned_pack_or_404(code, user_id, db)
    reason = pack_unusable_reason(pack, now or datetime.now(timezone.utc))
    if reason:
        raise PackCodeInvalidError(PACK_REASON_MESSAGES[reason], reason=reason)
    if is_slot_taken(scheduled_at, db):
        raise SlotUnavailableError("This time slot is already booked")

    try:
        updated = db.query(Booking).filter(
            Booking.id == pack.id,
            Booking.sessions_remaining > 0
        ).update({Booking.sessions_remaining: Booking.sessions_remaining - 1}, synchronize_session=False)
        if updated != 1:
            db.rollback()
            raise PackCodeInvalidError(PACK_REASON_MESSAGES["exhausted"], reason="exhausted")

        session = Booking(
            user_id=user_id,
            booking_type=BookingType.SESSION,
            resource_id=pack.resource_id,
            resource_name=f"{pack.resource_name or 'Session'} (Pack)",
            status=BookingStatus.CONFIRMED,
            payment_status=OrderStatus.COMPLETED,
            amount=0,
            currency=pack.currency,
            sessions_total=1,
            sessions_remaining=1,
            scheduled_at=scheduled_at,
            pack_booking_id=pack.id,
            extra_data={"packCode": pack.pack_code}
        )
        db.add(session)
        db.commit()
    except PackCodeInvalidError:
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(pack)
    db.refresh(session)
    logger.info(
        f"Pack {pack.pack_code} redeemed by user {user_id} for {scheduled_at.isoformat()}; "
        f"{pack.sessions_remaining} session(s) left"
    )
    return PackRedemptionResponse(
        booking_id=session.id,
        scheduled_at=session.scheduled_at,
        status=session.status,
        sessions_remaining=pack.sessions_remaining
    )
