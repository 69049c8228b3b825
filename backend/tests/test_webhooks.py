"""Webhook pipeline tests: verification, idempotency ledger and event handlers"""
from unittest.mock import patch

import pytest

from app.core.errors import NotFoundError, SignatureInvalidError
from app.models.entitlement import Entitlement
from app.models.order import OrderStatus
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.webhook_event import WebhookEvent
from app.services.payments import PAYMENT_GATEWAYS, TransactionStatusResult, WebhookVerification
from app.services.webhook_service import (
    claim_processed, get_event_handler, get_ledger_entry, handle_payment_event, handle_webhook,
    record_ledger_entry, refresh_order_from_gateway
)
from conftest import epayco_confirmation, make_order, nequi_webhook, wompi_webhook


@pytest.mark.critical
class TestWebhookPipeline:

    def test_approved_payment_completes_order(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        headers, body = wompi_webhook("tx-1", "APPROVED", reference=order.order_number)

        result = handle_webhook("wompi", headers, body, db_session)

        assert result == {"received": True, "processed": True}
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.COMPLETED
        assert order.extra_data["gateway"]["last_status"] == "APPROVED"
        grant = db_session.query(Entitlement).filter(Entitlement.order_id == order.id).one()
        assert grant.resource_id == "premium-1"

        entry = db_session.query(WebhookEvent).one()
        assert entry.provider == "wompi"
        assert entry.event_id == "tx-1:APPROVED"
        assert entry.processed is True

    def test_duplicate_delivery_has_no_effect(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        headers, body = wompi_webhook("tx-1", "APPROVED", reference=order.order_number)

        handle_webhook("wompi", headers, body, db_session)
        second = handle_webhook("wompi", headers, body, db_session)

        assert second == {"received": True, "processed": False}
        assert db_session.query(WebhookEvent).count() == 1
        assert db_session.query(Entitlement).count() == 1

    def test_order_matched_by_stored_transaction_id(self, db_session, test_user):
        """Payment-link payments carry a Wompi-generated reference, not our order number"""
        order = make_order(db_session, user=test_user, transaction_id="link_777")
        headers, body = wompi_webhook("tx-9", "APPROVED", reference="wompi-ref-1", payment_link_id="link_777")

        assert handle_webhook("wompi", headers, body, db_session)["processed"] is True
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.COMPLETED
        # The id stored at checkout stays the lookup key
        assert order.gateway_transaction_id == "link_777"

    def test_invalid_signature_rejected_before_ledger(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        headers, body = wompi_webhook("tx-1", "APPROVED", reference=order.order_number)
        headers["X-Event-Checksum"] = "0" * 64

        with pytest.raises(SignatureInvalidError):
            handle_webhook("wompi", headers, body, db_session)

        assert db_session.query(WebhookEvent).count() == 0
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.PENDING

    def test_unknown_provider(self, db_session):
        with pytest.raises(NotFoundError):
            handle_webhook("stripe", {}, b"{}", db_session)

    def test_undecodable_form_body_rejected(self, db_session):
        with pytest.raises(SignatureInvalidError):
            handle_webhook("epayco", {"Content-Type": "application/x-www-form-urlencoded"},
                           b"x_ref_payco=\xff\xfe&x_transaction_id=1", db_session)
        assert db_session.query(WebhookEvent).count() == 0

    def test_verification_crash_is_a_rejection(self, db_session):
        headers, body = wompi_webhook("tx-1", "APPROVED")
        with patch.object(PAYMENT_GATEWAYS["wompi"], "verify_webhook", side_effect=TypeError("bad payload")):
            with pytest.raises(SignatureInvalidError):
                handle_webhook("wompi", headers, body, db_session)
        assert db_session.query(WebhookEvent).count() == 0

    def test_terminal_status_is_never_overwritten(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        handle_webhook("wompi", *wompi_webhook("tx-1", "DECLINED", reference=order.order_number), db=db_session)
        handle_webhook("wompi", *wompi_webhook("tx-1", "APPROVED", reference=order.order_number), db=db_session)

        db_session.refresh(order)
        assert order.payment_status == OrderStatus.FAILED
        assert db_session.query(Entitlement).count() == 0

    def test_pending_event_leaves_order_pending(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        result = handle_webhook("wompi", *wompi_webhook("tx-1", "PENDING", reference=order.order_number),
                                db=db_session)
        assert result["processed"] is True
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.PENDING

    def test_unmatched_event_is_recorded(self, db_session):
        result = handle_webhook("wompi", *wompi_webhook("tx-404", "APPROVED", reference="ORD-00000000-NONE"),
                                db=db_session)
        assert result == {"received": True, "processed": False}
        assert db_session.query(WebhookEvent).one().processed is True

    def test_handler_failure_marks_event_failed_and_allows_retry(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        headers, body = wompi_webhook("tx-1", "APPROVED", reference=order.order_number)

        with patch("app.services.webhook_service.apply_transaction_status", side_effect=RuntimeError("db down")):
            result = handle_webhook("wompi", headers, body, db_session)

        assert result["processed"] is False
        entry = db_session.query(WebhookEvent).one()
        assert entry.failed is True
        assert entry.processed is False
        assert entry.retry_count == 1
        assert "db down" in entry.error_message

        retry = handle_webhook("wompi", headers, body, db_session)
        assert retry["processed"] is True
        db_session.refresh(entry)
        assert entry.processed is True
        assert entry.failed is False

    def test_guest_order_creates_account_on_completion(self, db_session):
        order = make_order(db_session, guest_email="newguest@example.com")
        handle_webhook("wompi", *wompi_webhook("tx-1", "APPROVED", reference=order.order_number), db=db_session)

        db_session.refresh(order)
        assert order.user_id is not None
        assert order.user.created_from_guest is True

    def test_epayco_confirmation(self, db_session, test_user):
        order = make_order(db_session, user=test_user, gateway="epayco", transaction_id=None,
                           payment_method="EPAYCO_CARD")
        headers, body = epayco_confirmation("98765", "1", order.order_number)

        assert handle_webhook("epayco", headers, body, db_session)["processed"] is True
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.COMPLETED
        assert order.gateway_transaction_id == "98765"


@pytest.mark.high
class TestLedger:

    def test_record_is_insert_if_absent(self, db_session):
        event = WebhookVerification(valid=True, event_id="evt-1", event_type="payment", data={"a": 1})
        first = record_ledger_entry("nequi", event, db_session)
        second = record_ledger_entry("nequi", event, db_session)
        assert first.id == second.id

    def test_same_event_id_from_other_provider_is_distinct(self, db_session):
        event = WebhookVerification(valid=True, event_id="evt-1", event_type="payment")
        record_ledger_entry("nequi", event, db_session)
        record_ledger_entry("wompi", event, db_session)
        assert db_session.query(WebhookEvent).count() == 2

    def test_claim_processed_only_once(self, db_session):
        event = WebhookVerification(valid=True, event_id="evt-1", event_type="payment")
        entry = record_ledger_entry("nequi", event, db_session)
        assert claim_processed(entry, db_session) is True
        assert claim_processed(entry, db_session) is False

    def test_concurrent_first_delivery_reads_the_winning_row(self, db_session):
        winner = WebhookEvent(provider="nequi", event_id="evt-race", event_type="payment",
                              payload={}, processed=True)
        db_session.add(winner)
        db_session.commit()
        winner_id = winner.id

        # The racing delivery looked before the winner committed
        lookups = []

        def first_lookup_misses(provider, event_id, db):
            lookups.append(event_id)
            return None if len(lookups) == 1 else get_ledger_entry(provider, event_id, db)

        event = WebhookVerification(valid=True, event_id="evt-race", event_type="payment")
        with patch("app.services.webhook_service.get_ledger_entry", side_effect=first_lookup_misses):
            entry = record_ledger_entry("nequi", event, db_session)

        assert len(lookups) == 2
        assert entry.id == winner_id
        assert entry.processed is True
        assert db_session.query(WebhookEvent).count() == 1

    def test_lost_claim_rolls_back_side_effects(self, db_session, test_user):
        order = make_order(
            db_session, user=test_user, order_type="MEMBERSHIP", item_id="tier-gold", item_name="Gold",
            gateway="nequi", transaction_id="nq-code-1", payment_method="NEQUI_PUSH",
            extra_data={"billingInterval": "MONTHLY"}
        )
        headers, body = nequi_webhook(
            "evt-approved", "subscription.approved",
            data={"reference": order.order_number}, subscription_id="nequi-sub-1"
        )

        def processed_concurrently(entry, db):
            db.query(WebhookEvent).filter(WebhookEvent.id == entry.id).update(
                {WebhookEvent.processed: True}, synchronize_session=False
            )
            return claim_processed(entry, db)

        with patch("app.services.webhook_service.claim_processed", side_effect=processed_concurrently):
            result = handle_webhook("nequi", headers, body, db_session)

        assert result == {"received": True, "processed": False}
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.PENDING
        assert db_session.query(Subscription).count() == 0
        assert db_session.query(Entitlement).count() == 0

    def test_default_handler(self):
        assert get_event_handler("wompi", "transaction.updated") is handle_payment_event


@pytest.mark.critical
class TestNequiSubscriptionEvents:

    def _approve(self, db_session, user, subscription_id="nequi-sub-1"):
        order = make_order(
            db_session, user=user, order_type="MEMBERSHIP", item_id="tier-gold", item_name="Gold",
            gateway="nequi", transaction_id="nq-code-1", payment_method="NEQUI_PUSH",
            extra_data={"billingInterval": "MONTHLY"}
        )
        headers, body = nequi_webhook(
            "evt-approved", "subscription.approved",
            data={"reference": order.order_number}, subscription_id=subscription_id
        )
        handle_webhook("nequi", headers, body, db_session)
        return order

    def test_approval_completes_order_and_creates_subscription(self, db_session, test_user):
        order = self._approve(db_session, test_user)

        db_session.refresh(order)
        assert order.payment_status == OrderStatus.COMPLETED
        subscription = db_session.query(Subscription).filter(Subscription.order_id == order.id).one()
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.provider_subscription_id == "nequi-sub-1"
        assert subscription.payment_provider == "nequi_push"

    def test_renewal_extends_one_period(self, db_session, test_user):
        self._approve(db_session, test_user)
        subscription = db_session.query(Subscription).one()
        old_end = subscription.current_period_end

        handle_webhook("nequi", *nequi_webhook("evt-renew-1", "payment.succeeded",
                                                 subscription_id="nequi-sub-1"), db=db_session)
        # Redelivery of the same charge must not extend again
        handle_webhook("nequi", *nequi_webhook("evt-renew-1", "payment.succeeded",
                                                 subscription_id="nequi-sub-1"), db=db_session)

        db_session.refresh(subscription)
        assert subscription.current_period_start == old_end
        assert subscription.current_period_end > old_end
        assert (subscription.current_period_end - old_end).days in (28, 29, 30, 31)
        grant = db_session.query(Entitlement).filter(Entitlement.subscription_id == subscription.id).one()
        assert grant.expires_at == subscription.current_period_end

    def test_failed_charge_marks_past_due(self, db_session, test_user):
        self._approve(db_session, test_user)
        handle_webhook("nequi", *nequi_webhook("evt-fail-1", "payment.failed",
                                                 subscription_id="nequi-sub-1"), db=db_session)
        assert db_session.query(Subscription).one().status == SubscriptionStatus.PAST_DUE

    def test_cancellation_revokes_membership(self, db_session, test_user):
        self._approve(db_session, test_user)
        handle_webhook("nequi", *nequi_webhook("evt-cancel-1", "subscription.cancelled",
                                                 subscription_id="nequi-sub-1"), db=db_session)

        subscription = db_session.query(Subscription).one()
        assert subscription.status == SubscriptionStatus.CANCELLED
        grant = db_session.query(Entitlement).filter(Entitlement.subscription_id == subscription.id).one()
        assert grant.revoked is True


@pytest.mark.high
class TestPayPalEvents:

    def _deliver(self, db_session, event):
        with patch.object(PAYMENT_GATEWAYS["paypal"], "verify_webhook", return_value=event):
            return handle_webhook("paypal", {}, b"{}", db_session)

    def test_approval_captures_and_completes(self, db_session, test_user):
        order = make_order(db_session, user=test_user, gateway="paypal", transaction_id="PP-ORDER-1",
                           currency="USD", amount=25, payment_method="PAYPAL_DIRECT")
        event = WebhookVerification(
            valid=True, event_id="WH-1", event_type="CHECKOUT.ORDER.APPROVED",
            transaction_id="PP-ORDER-1", status="PENDING", reference=order.order_number,
            lookup_ids=["PP-ORDER-1"]
        )
        capture = TransactionStatusResult(success=True, status="APPROVED", transaction_id="PP-ORDER-1")
        with patch.object(PAYMENT_GATEWAYS["paypal"], "capture_order", return_value=capture) as mock_capture:
            assert self._deliver(db_session, event)["processed"] is True

        mock_capture.assert_called_once_with("PP-ORDER-1")
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.COMPLETED

    def test_failed_capture_is_retried_on_redelivery(self, db_session, test_user):
        order = make_order(db_session, user=test_user, gateway="paypal", transaction_id="PP-ORDER-2",
                           currency="USD", amount=25, payment_method="PAYPAL_DIRECT")
        event = WebhookVerification(
            valid=True, event_id="WH-2", event_type="CHECKOUT.ORDER.APPROVED",
            transaction_id="PP-ORDER-2", reference=order.order_number
        )
        failed = TransactionStatusResult(success=False, error="timeout", error_code="GATEWAY_ERROR")
        with patch.object(PAYMENT_GATEWAYS["paypal"], "capture_order", return_value=failed):
            assert self._deliver(db_session, event)["processed"] is False

        assert db_session.query(WebhookEvent).one().failed is True
        db_session.refresh(order)
        assert order.payment_status == OrderStatus.PENDING

    def test_refund_revokes_grants(self, db_session, test_user):
        order = make_order(db_session, user=test_user, gateway="paypal", transaction_id="PP-ORDER-3",
                           currency="USD", amount=25, payment_method="PAYPAL_DIRECT")
        completed = WebhookVerification(
            valid=True, event_id="WH-3", event_type="PAYMENT.CAPTURE.COMPLETED",
            transaction_id="CAPTURE-3", status="APPROVED", reference=order.order_number
        )
        refunded = WebhookVerification(
            valid=True, event_id="WH-4", event_type="PAYMENT.CAPTURE.REFUNDED",
            transaction_id="REFUND-3", status="VOIDED", reference=order.order_number
        )
        self._deliver(db_session, completed)
        self._deliver(db_session, refunded)

        grant = db_session.query(Entitlement).filter(Entitlement.order_id == order.id).one()
        assert grant.revoked is True
        assert grant.revoked_reason == "Refunded via paypal"
        db_session.refresh(order)
        # The order stays an audit record of the completed payment
        assert order.payment_status == OrderStatus.COMPLETED
        assert order.extra_data["gateway"]["transaction_id"] == "PP-ORDER-3"


@pytest.mark.high
class TestRefreshFromGateway:

    def test_refresh_applies_gateway_status(self, db_session, test_user):
        order = make_order(db_session, user=test_user, transaction_id="tx-lookup")
        lookup = TransactionStatusResult(success=True, status="APPROVED", transaction_id="tx-lookup")
        with patch.object(PAYMENT_GATEWAYS["wompi"], "get_transaction_status", return_value=lookup):
            status = refresh_order_from_gateway(order, db_session)

        assert status.payment_status == OrderStatus.COMPLETED
        assert db_session.query(Entitlement).count() == 1

    def test_refresh_failure_returns_known_state(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        lookup = TransactionStatusResult(success=False, error="not found", error_code="WOMPI_STATUS_ERROR")
        with patch.object(PAYMENT_GATEWAYS["wompi"], "get_transaction_status", return_value=lookup):
            status = refresh_order_from_gateway(order, db_session)
        assert status.payment_status == OrderStatus.PENDING

    def test_terminal_orders_are_not_looked_up(self, db_session, test_user):
        order = make_order(db_session, user=test_user)
        handle_webhook("wompi", *wompi_webhook("tx-1", "DECLINED", reference=order.order_number), db=db_session)
        with patch.object(PAYMENT_GATEWAYS["wompi"], "get_transaction_status") as lookup:
            status = refresh_order_from_gateway(order, db_session)
        lookup.assert_not_called()
        assert status.payment_status == OrderStatus.FAILED
