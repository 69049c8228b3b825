"""Nequi adapter - push payment notifications to the buyer's Nequi app (COP)"""
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping
import httpx

from app.core.config import settings
from app.db.redis import get_cached_gateway_token, set_cached_gateway_token
from app.services.payments.base import (
    PaymentGateway, hmac_sha256_hex, signatures_match, lower_headers, parse_json_body,
    GATEWAY_CALL_ERRORS, MALFORMED_RESPONSE_ERRORS
)
from app.services.payments.types import (
    PaymentMethodType, TransactionStatus, Currency, CreatePaymentParams, PaymentResult,
    WebhookVerification, TransactionStatusResult
)

payments_logger = logging.getLogger("payments")

NEQUI_STATUS_MAP = {
    "35": TransactionStatus.APPROVED,
    "36": TransactionStatus.PENDING,
    "37": TransactionStatus.DECLINED,
    "38": TransactionStatus.EXPIRED,
    "39": TransactionStatus.VOIDED,
}

# Event types that carry a payment status of their own
NEQUI_EVENT_STATUS_MAP = {
    "subscription.approved": TransactionStatus.APPROVED,
    "payment.succeeded": TransactionStatus.APPROVED,
    "payment.failed": TransactionStatus.DECLINED,
    "subscription.cancelled": TransactionStatus.VOIDED,
    "single_payment.completed": TransactionStatus.APPROVED,
    "payment.single.completed": TransactionStatus.APPROVED,
}

PUSH_CHANNEL = "PNP04-C001"
CODE_PREFIX = "EYD"
_BASE36 = string.digits + string.ascii_lowercase


def map_nequi_status(code) -> str:
    return NEQUI_STATUS_MAP.get(str(code), TransactionStatus.PENDING)


def _base36(number: int) -> str:
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_payment_code() -> str:
    """Unique message/payment code, e.g. EYD-LZ3K9Q1A-7F2C"""
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{CODE_PREFIX}-{timestamp}-{random_part}".upper()


def normalize_phone(phone: str) -> str:
    return "".join(ch for ch in (phone or "") if ch.isdigit())


def is_valid_colombian_mobile(phone: str) -> bool:
    """10 digits starting with 3"""
    digits = normalize_phone(phone)
    return len(digits) == 10 and digits.startswith("3")


class NequiGateway(PaymentGateway):
    name = "nequi"
    supported_currencies = (Currency.COP,)
    supported_methods = (PaymentMethodType.NEQUI,)

    def is_configured(self) -> bool:
        # Only push mode talks to the API; 'app' mode is handled through Wompi
        return bool(
            settings.NEQUI_MODE == "push"
            and settings.NEQUI_CLIENT_ID
            and settings.NEQUI_CLIENT_SECRET
            and settings.NEQUI_API_KEY
        )

    def get_access_token(self) -> str:
        """OAuth client-credentials token, cached in Redis

        Raises:
            httpx.HTTPError: If the token endpoint cannot be reached or rejects the credentials
            KeyError: If the token response carries no access_token
        """
        cached = get_cached_gateway_token(self.name)
        if cached:
            return cached

        response = httpx.post(
            settings.NEQUI_AUTH_URI,
            data={"grant_type": "client_credentials"},
            auth=(settings.NEQUI_CLIENT_ID, settings.NEQUI_CLIENT_SECRET),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=settings.GATEWAY_TIMEOUT
        )
        response.raise_for_status()
        token_json = response.json()
        token = token_json["access_token"]
        set_cached_gateway_token(self.name, token, int(token_json.get("expires_in", 0)))
        return token

    def _request(self, operation: str, service_path: str, message_id: str, body: Dict[str, Any]) -> httpx.Response:
        envelope = {
            "RequestMessage": {
                "RequestHeader": {
                    "Channel": PUSH_CHANNEL,
                    "RequestDate": datetime.now(timezone.utc).isoformat(),
                    "MessageID": message_id,
                    "ClientID": settings.NEQUI_CLIENT_ID,
                    "Destination": {
                        "ServiceName": "PaymentsService",
                        "ServiceOperation": operation,
                        "ServiceRegion": "C001",
                        "ServiceVersion": "1.0.0",
                    },
                },
                "RequestBody": {"any": body},
            }
        }
        return httpx.post(
            f"{settings.NEQUI_API_BASE_URL}/payments/v2/{service_path}",
            json=envelope,
            headers={
                "Authorization": f"Bearer {self.get_access_token()}",
                "x-api-key": settings.NEQUI_API_KEY,
                "Content-Type": "application/json",
            },
            timeout=settings.GATEWAY_TIMEOUT
        )

    def create_payment(self, params: CreatePaymentParams) -> PaymentResult:
        invalid = self.validate_currency(params.currency) or self.validate_payment_method(params.payment_method)
        if invalid:
            return invalid
        if not self.is_configured():
            return PaymentResult(success=False, error="Nequi push payments are not enabled", error_code="NEQUI_NOT_CONFIGURED")

        phone = normalize_phone(params.customer.phone)
        if not is_valid_colombian_mobile(phone):
            return PaymentResult(
                success=False,
                error="A Colombian mobile number is required to pay with Nequi",
                error_code="NEQUI_PHONE_REQUIRED"
            )

        code = generate_payment_code()
        try:
            response = self._request(
                "unregisteredPayment",
                "-services-paymentservice-unregisteredpayment",
                code,
                {"unregisteredPaymentRQ": {
                    "phoneNumber": phone,
                    "code": code,
                    "value": str(int(round(params.amount))),
                    "reference1": params.order_number,
                }}
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.network_error(e)

        if response.status_code >= 400:
            return self.rejected(response, "NEQUI_CREATE_ERROR")

        try:
            payment_rs = (
                response.json().get("ResponseMessage", {}).get("ResponseBody", {})
                .get("any", {}).get("unregisteredPaymentRS", {})
            )
            transaction_id = payment_rs.get("transactionId") or code
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.malformed_response(e)
        payments_logger.info(f"Nequi push {code} sent for order {params.order_number}")

        return PaymentResult(
            success=True,
            checkout_instructions={
                "type": "nequi_push",
                "code": code,
                "phoneLast4": phone[-4:],
                "message": "Aprueba el pago en tu app Nequi",
            },
            transaction_id=transaction_id,
            reference=params.order_number,
            status=TransactionStatus.PENDING
        )

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookVerification:
        headers = lower_headers(headers)
        if not settings.NEQUI_WEBHOOK_SECRET:
            return WebhookVerification(valid=False, error="Nequi webhook secret not configured")

        expected = hmac_sha256_hex(settings.NEQUI_WEBHOOK_SECRET, raw_body)
        if not signatures_match(expected, headers.get("x-nequi-signature")):
            return WebhookVerification(valid=False, error="Invalid signature")

        envelope = parse_json_body(raw_body)
        if not envelope or not envelope.get("eventId") or not envelope.get("eventType"):
            return WebhookVerification(valid=False, error="Missing eventId or eventType")

        event_type = envelope["eventType"]
        data = envelope.get("data")
        if not isinstance(data, dict):
            data = {}
        if data.get("status") is not None:
            status = map_nequi_status(data["status"])
        else:
            status = NEQUI_EVENT_STATUS_MAP.get(event_type, TransactionStatus.PENDING)

        lookup_ids = [i for i in (data.get("transactionId"), data.get("code")) if i]
        amount = data.get("amount", data.get("value"))
        try:
            amount = float(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None

        return WebhookVerification(
            valid=True,
            event_id=envelope["eventId"],
            event_type=event_type,
            transaction_id=data.get("transactionId"),
            status=status,
            reference=data.get("reference") or data.get("reference1"),
            lookup_ids=lookup_ids,
            amount=amount,
            currency=Currency.COP,
            subscription_id=envelope.get("subscriptionId"),
            data=envelope
        )

    def get_transaction_status(self, transaction_id: str) -> TransactionStatusResult:
        if not self.is_configured():
            return TransactionStatusResult(success=False, error="Nequi push payments are not enabled", error_code="NEQUI_NOT_CONFIGURED")

        try:
            response = self._request(
                "getStatusPayment",
                "-services-paymentservice-getstatuspayment",
                f"status-{transaction_id}",
                {"getStatusPaymentRQ": {"codeQR": transaction_id}}
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.lookup_failed(transaction_id, e)

        if response.status_code >= 400:
            return TransactionStatusResult(
                success=False,
                error=f"nequi returned HTTP {response.status_code}",
                error_code="NEQUI_STATUS_ERROR"
            )

        try:
            status_rs = (
                response.json().get("ResponseMessage", {}).get("ResponseBody", {})
                .get("any", {}).get("getStatusPaymentRS", {})
            )
            value = status_rs.get("value")
            return TransactionStatusResult(
                success=True,
                status=map_nequi_status(status_rs.get("status")),
                transaction_id=transaction_id,
                amount=float(value) if value else None,
                currency=Currency.COP
            )
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.lookup_failed(transaction_id, e)
