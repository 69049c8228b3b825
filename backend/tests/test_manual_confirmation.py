"""Admin confirmation of payments received outside a gateway"""
import pytest
from unittest.mock import patch

from fastapi import status

from app.core.errors import OrderStateError
from app.models.entitlement import Entitlement, EntitlementType
from app.models.order import OrderStatus
from app.services.order_service import complete_order, confirm_payment_manually
from conftest import make_order


@pytest.mark.critical
class TestConfirmPaymentManually:

    def test_completes_and_issues(self, db_session, test_user, admin_user):
        order = make_order(db_session, user=test_user, gateway=None, payment_method="BANK_TRANSFER")

        result = confirm_payment_manually(order, admin_user.id, db_session,
                                          transaction_reference="TRX-991", notes="Paid at the desk")

        assert result.payment_status == "COMPLETED"
        assert result.transaction_id == "TRX-991"
        db_session.refresh(order)
        confirmation = order.extra_data["manualConfirmation"]
        assert confirmation["confirmedBy"] == admin_user.id
        assert confirmation["transactionReference"] == "TRX-991"
        assert confirmation["notes"] == "Paid at the desk"
        grant = db_session.query(Entitlement).filter(Entitlement.order_id == order.id).one()
        assert grant.type == EntitlementType.PREMIUM_CONTENT

    def test_completed_order_is_refused(self, db_session, test_user, admin_user):
        order = make_order(db_session, user=test_user)
        complete_order(order, db_session)
        db_session.commit()

        with pytest.raises(OrderStateError):
            confirm_payment_manually(order, admin_user.id, db_session)
        assert db_session.query(Entitlement).count() == 1

    def test_lost_race_is_refused(self, db_session, test_user, admin_user):
        order = make_order(db_session, user=test_user)
        # A webhook completed the order between the status check and the compare-and-set
        with patch("app.services.order_service.transition_order_status", return_value=False):
            with pytest.raises(OrderStateError):
                confirm_payment_manually(order, admin_user.id, db_session)

        db_session.refresh(order)
        assert "manualConfirmation" not in (order.extra_data or {})
        assert db_session.query(Entitlement).count() == 0


@pytest.mark.high
class TestConfirmPaymentApi:

    def test_requires_admin(self, authenticated_client, db_session, test_user):
        order = make_order(db_session, user=test_user)
        response = authenticated_client.post(f"/api/admin/orders/{order.order_number}/confirm-payment")
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_requires_auth(self, client):
        response = client.post("/api/admin/orders/ORD-20250101-XXXX/confirm-payment")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_admin_confirms(self, admin_client, db_session, test_user):
        order = make_order(db_session, user=test_user)
        response = admin_client.post(
            f"/api/admin/orders/{order.order_number}/confirm-payment",
            json={"transactionReference": "TRX-5", "notes": "Transfer seen on statement"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["paymentStatus"] == "COMPLETED"
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.COMPLETED

    def test_body_is_optional(self, admin_client, db_session, test_user):
        order = make_order(db_session, user=test_user)
        response = admin_client.post(f"/api/admin/orders/{order.order_number}/confirm-payment")
        assert response.status_code == status.HTTP_200_OK

    def test_unknown_order(self, admin_client):
        response = admin_client.post("/api/admin/orders/ORD-20250101-XXXX/confirm-payment")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"]["errorCode"] == "NOT_FOUND"

    def test_already_completed(self, admin_client, db_session, test_user):
        order = make_order(db_session, user=test_user)
        complete_order(order, db_session)
        db_session.commit()

        response = admin_client.post(f"/api/admin/orders/{order.order_number}/confirm-payment")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["errorCode"] == "INVALID_STATE"
