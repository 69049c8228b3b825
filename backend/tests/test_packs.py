"""Session pack code validation and redemption tests"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import status

from app.core.errors import NotFoundError, PackCodeInvalidError, SlotUnavailableError
from app.models.booking import Booking, BookingStatus
from app.services.order_service import complete_order
from app.services.pack_service import redeem_pack_code, validate_pack_code
from conftest import make_order


def buy_pack(db, user):
    order = make_order(db, user=user, order_type="SESSION", item_id="session-pack",
                       item_name="Session Pack", extra_data={"isPack": True})
    complete_order(order, db)
    db.commit()
    return db.query(Booking).filter(Booking.order_id == order.id).one()


def next_week(hour=10):
    return (datetime.now(timezone.utc) + timedelta(days=7)).replace(hour=hour, minute=0, second=0, microsecond=0)


@pytest.mark.critical
class TestValidatePackCode:

    def test_fresh_pack(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        result = validate_pack_code(pack.pack_code.lower(), test_user.id, db_session)

        assert result.valid is True
        assert result.reason is None
        assert result.code == pack.pack_code
        assert result.sessions_total == 8
        assert result.sessions_used == 0
        assert result.sessions_remaining == 8
        assert result.expires_at > datetime.now(timezone.utc) + timedelta(days=360)

    def test_unknown_code(self, db_session, test_user):
        with pytest.raises(NotFoundError):
            validate_pack_code("PACK-ZZZZZZ", test_user.id, db_session)

    def test_other_users_code_is_not_found(self, db_session, test_user, test_user_2):
        pack = buy_pack(db_session, test_user)
        with pytest.raises(NotFoundError):
            validate_pack_code(pack.pack_code, test_user_2.id, db_session)

    def test_expired_pack(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        later = datetime.now(timezone.utc) + timedelta(days=400)

        result = validate_pack_code(pack.pack_code, test_user.id, db_session, now=later)
        assert result.valid is False
        assert result.reason == "expired"

    def test_used_up_pack(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        pack.sessions_remaining = 0
        db_session.commit()

        result = validate_pack_code(pack.pack_code, test_user.id, db_session)
        assert result.valid is False
        assert result.reason == "exhausted"
        assert result.sessions_used == 8

    def test_cancelled_pack(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        pack.status = BookingStatus.CANCELLED
        db_session.commit()

        assert validate_pack_code(pack.pack_code, test_user.id, db_session).reason == "inactive"


@pytest.mark.critical
class TestRedeemPackCode:

    def test_redeem_books_a_session(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        slot = next_week()

        result = redeem_pack_code(pack.pack_code, test_user.id, slot, db_session)

        assert result.sessions_remaining == 7
        assert result.status == BookingStatus.CONFIRMED
        assert result.scheduled_at == slot
        session = db_session.get(Booking, result.booking_id)
        assert session.pack_booking_id == pack.id
        assert session.amount == 0
        assert session.order_id is None
        assert session.pack_code is None
        db_session.refresh(pack)
        assert pack.sessions_remaining == 7

    def test_last_session_then_exhausted(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        pack.sessions_remaining = 1
        db_session.commit()

        assert redeem_pack_code(pack.pack_code, test_user.id, next_week(9), db_session).sessions_remaining == 0
        with pytest.raises(PackCodeInvalidError) as exc_info:
            redeem_pack_code(pack.pack_code, test_user.id, next_week(11), db_session)
        assert exc_info.value.reason == "exhausted"

    def test_expired_pack_is_refused(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        later = datetime.now(timezone.utc) + timedelta(days=400)

        with pytest.raises(PackCodeInvalidError) as exc_info:
            redeem_pack_code(pack.pack_code, test_user.id, later + timedelta(days=1), db_session, now=later)
        assert exc_info.value.reason == "expired"
        db_session.refresh(pack)
        assert pack.sessions_remaining == 8

    def test_taken_slot_is_refused(self, db_session, test_user, test_user_2):
        slot = next_week()
        redeem_pack_code(buy_pack(db_session, test_user_2).pack_code, test_user_2.id, slot, db_session)
        pack = buy_pack(db_session, test_user)

        with pytest.raises(SlotUnavailableError):
            redeem_pack_code(pack.pack_code, test_user.id, slot, db_session)
        db_session.refresh(pack)
        assert pack.sessions_remaining == 8

    def test_naive_time_is_utc(self, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        slot = next_week()

        result = redeem_pack_code(pack.pack_code, test_user.id, slot.replace(tzinfo=None), db_session)
        assert result.scheduled_at == slot


@pytest.mark.high
class TestPackApi:

    def test_requires_auth(self, client):
        response = client.post("/api/sessions/validate-pack-code", json={"code": "PACK-ABCDEF"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_validate_and_redeem(self, authenticated_client, db_session, test_user):
        pack = buy_pack(db_session, test_user)

        validated = authenticated_client.post("/api/sessions/validate-pack-code", json={"code": pack.pack_code})
        assert validated.status_code == status.HTTP_200_OK
        assert validated.json()["sessionsRemaining"] == 8

        redeemed = authenticated_client.post("/api/sessions/redeem-pack", json={
            "code": pack.pack_code, "scheduledAt": next_week().isoformat()
        })
        assert redeemed.status_code == status.HTTP_200_OK
        assert redeemed.json()["sessionsRemaining"] == 7

    def test_unknown_code(self, authenticated_client):
        response = authenticated_client.post("/api/sessions/validate-pack-code", json={"code": "PACK-ZZZZZZ"})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"]["errorCode"] == "NOT_FOUND"

    def test_exhausted_pack_reports_reason(self, authenticated_client, db_session, test_user):
        pack = buy_pack(db_session, test_user)
        pack.sessions_remaining = 0
        db_session.commit()

        response = authenticated_client.post("/api/sessions/redeem-pack", json={
            "code": pack.pack_code, "scheduledAt": next_week().isoformat()
        })
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        detail = response.json()["detail"]
        assert detail["errorCode"] == "PACK_CODE_INVALID"
        assert detail["details"]["reason"] == "exhausted"
