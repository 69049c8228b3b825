"""API route tests"""
import pytest
from fastapi import status
from unittest.mock import patch

from app.models.subscription import Subscription
from app.services.order_service import complete_order
from app.services.payments import PAYMENT_GATEWAYS, PaymentResult
from conftest import make_order, wompi_webhook


@pytest.mark.critical
class TestPublicEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == status.HTTP_200_OK
        assert "# HELP" in response.text

    def test_payment_methods_by_currency(self, client):
        response = client.get("/api/checkout/methods", params={"currency": "USD"})
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["currency"] == "USD"
        assert {m["method"] for m in data["methods"]} == {"CARD", "PAYPAL"}

    def test_payment_methods_rejects_unknown_currency(self, client):
        response = client.get("/api/checkout/methods", params={"currency": "EUR"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.critical
class TestCheckoutApi:

    def test_zero_amount_guest_checkout(self, client):
        response = client.post("/api/checkout", json={
            "productType": "COURSE",
            "productId": "course-drip",
            "productName": "Drip Course",
            "amount": 200000,
            "currency": "COP",
            "paymentMethod": "CARD",
            "discountCode": "FREE100",
            "customerEmail": "guest@example.com",
            "customerName": "Guest Buyer",
        })

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["zeroAmount"] is True
        assert data["finalAmount"] == 0

        order_status = client.get(f"/api/orders/{data['reference']}/status").json()
        assert order_status["paymentStatus"] == "COMPLETED"

    def test_paid_checkout_returns_redirect(self, authenticated_client):
        accepted = PaymentResult(success=True, redirect_url="https://checkout.wompi.co/l/link_9",
                                 transaction_id="link_9", status="PENDING")
        with patch.object(PAYMENT_GATEWAYS["wompi"], "create_payment", return_value=accepted):
            response = authenticated_client.post("/api/checkout", json={
                "productType": "PREMIUM_CONTENT",
                "productId": "premium-1",
                "productName": "Premium Meditations",
                "amount": 50000,
                "currency": "COP",
                "paymentMethod": "CARD",
            })

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["redirectUrl"] == "https://checkout.wompi.co/l/link_9"

    def test_missing_fields_rejected(self, client):
        response = client.post("/api/checkout", json={"productType": "COURSE"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_invalid_discount_reports_reason(self, client):
        response = client.post("/api/checkout", json={
            "productType": "PREMIUM_CONTENT",
            "productId": "premium-1",
            "productName": "Premium Meditations",
            "amount": 50000,
            "currency": "COP",
            "paymentMethod": "CARD",
            "discountCode": "OLD",
            "customerEmail": "guest@example.com",
        })
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        detail = response.json()["detail"]
        assert detail["errorCode"] == "DISCOUNT_INVALID"
        assert detail["details"]["reason"] == "expired"

    def test_discount_preview(self, client):
        response = client.post("/api/checkout/discount/validate", json={
            "code": "WELCOME10", "amount": 100000, "currency": "COP"
        })
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["finalAmount"] == 90000

    def test_foreign_origin_rejected(self, client):
        response = client.post(
            "/api/checkout/discount/validate",
            json={"code": "WELCOME10", "amount": 100000, "currency": "COP"},
            headers={"Origin": "https://evil.example.com"}
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.critical
class TestOrderAndWebhookApi:

    def test_order_status(self, client, db_session, test_user):
        order = make_order(db_session, user=test_user)
        response = client.get(f"/api/orders/{order.order_number}/status")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["paymentStatus"] == "PENDING"
        assert data["transactionId"] == "link_123"

    def test_unknown_order(self, client):
        response = client.get("/api/orders/ORD-20250101-XXXX/status")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"]["errorCode"] == "NOT_FOUND"

    def test_webhook_completes_order(self, client, db_session, test_user):
        order = make_order(db_session, user=test_user)
        headers, body = wompi_webhook("tx-api-1", "APPROVED", reference=order.order_number)

        response = client.post("/webhooks/wompi", content=body, headers=headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"received": True, "processed": True}
        assert client.get(f"/api/orders/{order.order_number}/status").json()["paymentStatus"] == "COMPLETED"

    def test_webhook_bad_signature(self, client):
        headers, body = wompi_webhook("tx-api-2", "APPROVED")
        headers["X-Event-Checksum"] = "0" * 64

        response = client.post("/webhooks/wompi", content=body, headers=headers)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["errorCode"] == "SIGNATURE_INVALID"

    def test_webhook_unknown_provider(self, client):
        response = client.post("/webhooks/acme", content=b"{}")
        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.high
class TestAuthenticatedApi:

    def test_subscriptions_require_auth(self, client):
        assert client.get("/api/subscriptions").status_code == status.HTTP_401_UNAUTHORIZED
        assert client.get("/api/access/bookings").status_code == status.HTTP_401_UNAUTHORIZED

    def test_cancel_subscription(self, authenticated_client, db_session, test_user):
        order = make_order(db_session, user=test_user, order_type="MEMBERSHIP", item_id="tier-gold",
                           item_name="Gold", extra_data={"billingInterval": "MONTHLY"})
        complete_order(order, db_session)
        db_session.commit()
        subscription = db_session.query(Subscription).filter(Subscription.order_id == order.id).one()

        listed = authenticated_client.get("/api/subscriptions").json()["subscriptions"]
        assert [s["id"] for s in listed] == [subscription.id]

        response = authenticated_client.post(f"/api/subscriptions/{subscription.id}/cancel",
                                             json={"reason": "Too expensive"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "CANCELLED"

    def test_other_users_subscription_is_hidden(self, authenticated_client, db_session, test_user_2):
        order = make_order(db_session, user=test_user_2, order_type="MEMBERSHIP", item_id="tier-gold",
                           item_name="Gold", extra_data={"billingInterval": "MONTHLY"})
        complete_order(order, db_session)
        db_session.commit()
        subscription = db_session.query(Subscription).filter(Subscription.order_id == order.id).one()

        response = authenticated_client.get(f"/api/subscriptions/{subscription.id}/status")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_event_bookings_with_perks(self, authenticated_client, db_session, test_user):
        order = make_order(db_session, user=test_user, order_type="EVENT", item_id="event-live",
                           item_name="Live Workshop", extra_data={"seats": 2})
        complete_order(order, db_session)
        db_session.commit()

        response = authenticated_client.get("/api/access/bookings")

        assert response.status_code == status.HTTP_200_OK
        bookings = response.json()["bookings"]
        assert len(bookings) == 1
        assert bookings[0]["eventId"] == "event-live"
        assert bookings[0]["seats"] == 2
        assert [p["perkType"] for p in bookings[0]["perks"]] == ["workbook", "meditation"]

    def test_lesson_access_for_guest(self, client):
        response = client.get("/api/access/courses/course-drip/lessons/lesson-1")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["reason"] == "free_preview"
