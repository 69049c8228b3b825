"""PayPal adapter - Orders v2 API with server-side webhook verification"""
import logging
from typing import Any, Dict, Mapping, Optional
import httpx

from app.core.config import settings, PAYPAL_API_URLS
from app.db.redis import get_cached_gateway_token, set_cached_gateway_token
from app.services.payments.base import (
    PaymentGateway, lower_headers, parse_json_body, GATEWAY_CALL_ERRORS, MALFORMED_RESPONSE_ERRORS
)
from app.services.payments.types import (
    PaymentMethodType, TransactionStatus, Currency, CreatePaymentParams, PaymentResult,
    WebhookVerification, TransactionStatusResult, RefundParams, RefundResult, GATEWAY_ERROR
)

payments_logger = logging.getLogger("payments")

PAYPAL_EVENT_STATUS_MAP = {
    "CHECKOUT.ORDER.APPROVED": TransactionStatus.PENDING,  # Buyer approved, capture still pending
    "PAYMENT.CAPTURE.COMPLETED": TransactionStatus.APPROVED,
    "PAYMENT.CAPTURE.DENIED": TransactionStatus.DECLINED,
    "PAYMENT.CAPTURE.REFUNDED": TransactionStatus.VOIDED,
}

PAYPAL_ORDER_STATUS_MAP = {
    "CREATED": TransactionStatus.PENDING,
    "SAVED": TransactionStatus.PENDING,
    "APPROVED": TransactionStatus.PENDING,
    "PAYER_ACTION_REQUIRED": TransactionStatus.PENDING,
    "COMPLETED": TransactionStatus.APPROVED,
    "VOIDED": TransactionStatus.VOIDED,
    "DECLINED": TransactionStatus.DECLINED,
}

PAYPAL_CAPTURE_STATUS_MAP = {
    "COMPLETED": TransactionStatus.APPROVED,
    "DECLINED": TransactionStatus.DECLINED,
    "PARTIALLY_REFUNDED": TransactionStatus.APPROVED,
    "PENDING": TransactionStatus.PENDING,
    "REFUNDED": TransactionStatus.VOIDED,
    "FAILED": TransactionStatus.ERROR,
}

REQUIRED_TRANSMISSION_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-cert-url",
    "paypal-auth-algo",
    "paypal-transmission-sig",
)


class PayPalGateway(PaymentGateway):
    name = "paypal"
    supported_currencies = (Currency.USD, Currency.COP)
    supported_methods = (PaymentMethodType.PAYPAL, PaymentMethodType.CARD)

    @property
    def api_url(self) -> str:
        return PAYPAL_API_URLS.get(settings.PAYPAL_ENVIRONMENT, PAYPAL_API_URLS["sandbox"])

    def is_configured(self) -> bool:
        return bool(settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET)

    def get_access_token(self) -> str:
        """OAuth client-credentials token, cached in Redis until shortly before expiry

        Raises:
            httpx.HTTPError: If PayPal cannot be reached or rejects the credentials
            KeyError: If the token response carries no access_token
        """
        cached = get_cached_gateway_token(self.name)
        if cached:
            return cached

        response = httpx.post(
            f"{self.api_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET),
            timeout=settings.GATEWAY_TIMEOUT
        )
        response.raise_for_status()
        token_json = response.json()
        token = token_json["access_token"]
        set_cached_gateway_token(self.name, token, int(token_json.get("expires_in", 0)))
        return token

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
        }

    def create_payment(self, params: CreatePaymentParams) -> PaymentResult:
        invalid = self.validate_currency(params.currency) or self.validate_payment_method(params.payment_method)
        if invalid:
            return invalid
        if not self.is_configured():
            return self.not_configured()

        # COP has no minor unit at PayPal
        value = f"{params.amount:.2f}" if params.currency == Currency.USD else str(int(round(params.amount)))
        order_request = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": params.order_number,
                "custom_id": params.order_number,
                "description": params.description[:127],
                "amount": {"currency_code": params.currency, "value": value},
            }],
            "application_context": {
                "brand_name": settings.BRAND_NAME,
                "landing_page": "LOGIN",
                "user_action": "PAY_NOW",
                "return_url": params.return_url,
                "cancel_url": params.return_url,
            },
        }

        try:
            response = httpx.post(
                f"{self.api_url}/v2/checkout/orders",
                json=order_request,
                headers={**self._headers(), "Prefer": "return=representation"},
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.network_error(e)

        if response.status_code >= 400:
            return self.rejected(response, "PAYPAL_CREATE_ERROR")

        try:
            order = response.json()
            approve_link = next((link["href"] for link in order.get("links") or [] if link.get("rel") == "approve"), None)
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.malformed_response(e)
        if not order.get("id") or not approve_link:
            return PaymentResult(success=False, error="PayPal order has no approval link", error_code="PAYPAL_CREATE_ERROR")

        payments_logger.info(f"PayPal order {order['id']} created for order {params.order_number}")
        return PaymentResult(
            success=True,
            redirect_url=approve_link,
            transaction_id=order["id"],
            reference=params.order_number,
            status=PAYPAL_ORDER_STATUS_MAP.get(order.get("status"), TransactionStatus.PENDING)
        )

    def capture_order(self, paypal_order_id: str) -> TransactionStatusResult:
        """Capture an approved PayPal order; completion arrives as PAYMENT.CAPTURE.COMPLETED"""
        try:
            response = httpx.post(
                f"{self.api_url}/v2/checkout/orders/{paypal_order_id}/capture",
                json={},
                headers=self._headers(),
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.lookup_failed(paypal_order_id, e)

        if response.status_code >= 400:
            payments_logger.error(f"PayPal capture rejected for {paypal_order_id}: HTTP {response.status_code}")
            return TransactionStatusResult(
                success=False,
                error=f"paypal returned HTTP {response.status_code}",
                error_code="PAYPAL_CAPTURE_ERROR"
            )

        try:
            order = response.json()
            return TransactionStatusResult(
                success=True,
                status=PAYPAL_ORDER_STATUS_MAP.get(order.get("status"), TransactionStatus.PENDING),
                transaction_id=order.get("id", paypal_order_id),
                reference=self._purchase_unit_reference(order)
            )
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.lookup_failed(paypal_order_id, e)

    @staticmethod
    def _purchase_unit_reference(resource: Dict[str, Any]) -> Optional[str]:
        units = resource.get("purchase_units") or []
        if units and units[0].get("reference_id"):
            return units[0]["reference_id"]
        return resource.get("custom_id")

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookVerification:
        headers = lower_headers(headers)
        missing = [h for h in REQUIRED_TRANSMISSION_HEADERS if not headers.get(h)]
        if missing:
            return WebhookVerification(valid=False, error=f"Missing PayPal headers: {', '.join(missing)}")
        if not self.is_configured() or not settings.PAYPAL_WEBHOOK_ID:
            return WebhookVerification(valid=False, error="PayPal webhook verification not configured")

        event = parse_json_body(raw_body)
        if event is None:
            return WebhookVerification(valid=False, error="Invalid JSON body")

        verification_request = {
            "auth_algo": headers["paypal-auth-algo"],
            "cert_url": headers["paypal-cert-url"],
            "transmission_id": headers["paypal-transmission-id"],
            "transmission_sig": headers["paypal-transmission-sig"],
            "transmission_time": headers["paypal-transmission-time"],
            "webhook_id": settings.PAYPAL_WEBHOOK_ID,
            "webhook_event": event,
        }
        try:
            response = httpx.post(
                f"{self.api_url}/v1/notifications/verify-webhook-signature",
                json=verification_request,
                headers=self._headers(),
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            payments_logger.error(f"PayPal webhook verification call failed: {e}")
            return WebhookVerification(valid=False, error="Could not verify signature with PayPal")

        if response.status_code >= 400:
            return WebhookVerification(valid=False, error="Invalid signature")
        try:
            verification_status = response.json().get("verification_status")
        except MALFORMED_RESPONSE_ERRORS as e:
            payments_logger.error(f"Unreadable PayPal verification response: {e}")
            return WebhookVerification(valid=False, error="Could not verify signature with PayPal")
        if verification_status != "SUCCESS":
            return WebhookVerification(valid=False, error="Invalid signature")

        event_type = event.get("event_type", "")
        resource = event.get("resource") or {}
        related_order_id = (
            resource.get("supplementary_data", {}).get("related_ids", {}).get("order_id")
        )
        lookup_ids = [i for i in (resource.get("id"), related_order_id) if i]
        amount = resource.get("amount") or {}
        try:
            amount_value = float(amount["value"]) if amount.get("value") else None
        except ValueError:
            amount_value = None

        return WebhookVerification(
            valid=True,
            event_id=event.get("id"),
            event_type=event_type,
            transaction_id=resource.get("id"),
            status=PAYPAL_EVENT_STATUS_MAP.get(event_type, TransactionStatus.PENDING),
            reference=self._purchase_unit_reference(resource),
            lookup_ids=lookup_ids,
            amount=amount_value,
            currency=amount.get("currency_code"),
            data=event
        )

    def get_transaction_status(self, transaction_id: str) -> TransactionStatusResult:
        if not self.is_configured():
            return TransactionStatusResult(success=False, error="paypal is not configured", error_code="PAYPAL_NOT_CONFIGURED")

        try:
            response = httpx.get(
                f"{self.api_url}/v2/checkout/orders/{transaction_id}",
                headers=self._headers(),
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.lookup_failed(transaction_id, e)

        if response.status_code >= 400:
            return TransactionStatusResult(
                success=False,
                error=f"paypal returned HTTP {response.status_code}",
                error_code="PAYPAL_STATUS_ERROR"
            )

        try:
            order = response.json()
            status = PAYPAL_ORDER_STATUS_MAP.get(order.get("status"), TransactionStatus.PENDING)
            units = order.get("purchase_units") or [{}]
            captures = units[0].get("payments", {}).get("captures") or []
            if captures:
                # The capture, not the order, says whether money moved
                status = PAYPAL_CAPTURE_STATUS_MAP.get(captures[0].get("status"), status)
            amount = units[0].get("amount") or {}

            return TransactionStatusResult(
                success=True,
                status=status,
                transaction_id=order.get("id", transaction_id),
                reference=self._purchase_unit_reference(order),
                amount=float(amount["value"]) if amount.get("value") else None,
                currency=amount.get("currency_code")
            )
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.lookup_failed(transaction_id, e)

    def refund(self, params: RefundParams) -> RefundResult:
        body = {}
        if params.amount and params.currency:
            value = f"{params.amount:.2f}" if params.currency == Currency.USD else str(int(round(params.amount)))
            body["amount"] = {"currency_code": params.currency, "value": value}
        if params.reason:
            body["note_to_payer"] = params.reason[:255]

        try:
            response = httpx.post(
                f"{self.api_url}/v2/payments/captures/{params.transaction_id}/refund",
                json=body,
                headers=self._headers(),
                timeout=settings.GATEWAY_TIMEOUT
            )
            if response.status_code < 400:
                refund = response.json()
                refund_id, refund_status = refund.get("id"), refund.get("status")
        except GATEWAY_CALL_ERRORS as e:
            payments_logger.error(f"PayPal refund failed for capture {params.transaction_id}: {e}")
            return RefundResult(success=False, status="FAILED", error=str(e), error_code=GATEWAY_ERROR)

        if response.status_code >= 400:
            return RefundResult(
                success=False,
                status="FAILED",
                error=f"paypal returned HTTP {response.status_code}",
                error_code="PAYPAL_REFUND_ERROR"
            )

        return RefundResult(
            success=True,
            refund_id=refund_id,
            status="COMPLETED" if refund_status == "COMPLETED" else "PENDING"
        )
