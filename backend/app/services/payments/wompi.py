"""Wompi adapter - hosted payment links for COP card, Nequi, PSE and bank transfer"""
import logging
from typing import Mapping
import httpx

from app.core.config import settings, WOMPI_API_URLS, WOMPI_CHECKOUT_URL
from app.services.payments.base import (
    PaymentGateway, hmac_sha256_hex, signatures_match, lower_headers, parse_json_body,
    GATEWAY_CALL_ERRORS, MALFORMED_RESPONSE_ERRORS
)
from app.services.payments.types import (
    PaymentMethodType, TransactionStatus, Currency, CreatePaymentParams, PaymentResult,
    WebhookVerification, TransactionStatusResult
)

payments_logger = logging.getLogger("payments")

WOMPI_STATUS_MAP = {
    "APPROVED": TransactionStatus.APPROVED,
    "DECLINED": TransactionStatus.DECLINED,
    "VOIDED": TransactionStatus.VOIDED,
    "PENDING": TransactionStatus.PENDING,
    "ERROR": TransactionStatus.ERROR,
}


def map_wompi_status(status: str) -> str:
    return WOMPI_STATUS_MAP.get((status or "").upper(), TransactionStatus.PENDING)


class WompiGateway(PaymentGateway):
    name = "wompi"
    supported_currencies = (Currency.COP,)
    supported_methods = (
        PaymentMethodType.CARD, PaymentMethodType.NEQUI,
        PaymentMethodType.PSE, PaymentMethodType.BANK_TRANSFER,
    )

    @property
    def api_url(self) -> str:
        return WOMPI_API_URLS[settings.WOMPI_ENVIRONMENT]

    def _auth_headers(self):
        return {"Authorization": f"Bearer {settings.WOMPI_PRIVATE_KEY}"}

    def is_configured(self) -> bool:
        return bool(settings.WOMPI_PUBLIC_KEY and settings.WOMPI_PRIVATE_KEY)

    def create_payment(self, params: CreatePaymentParams) -> PaymentResult:
        invalid = self.validate_currency(params.currency) or self.validate_payment_method(params.payment_method)
        if invalid:
            return invalid
        if not self.is_configured():
            return self.not_configured()

        payload = {
            "name": params.description[:64],
            "description": params.description,
            "single_use": True,
            "collect_shipping": False,
            "currency": Currency.COP,
            "amount_in_cents": int(round(params.amount * 100)),
            "redirect_url": params.return_url,
            "sku": params.order_number,
        }

        try:
            response = httpx.post(
                f"{self.api_url}/payment_links",
                json=payload,
                headers=self._auth_headers(),
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.network_error(e)

        if response.status_code >= 400:
            return self.rejected(response, "WOMPI_CREATE_ERROR")

        try:
            link_id = (response.json().get("data") or {}).get("id")
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.malformed_response(e)
        if not link_id:
            return PaymentResult(success=False, error="Wompi response had no payment link id", error_code="WOMPI_CREATE_ERROR")

        payments_logger.info(f"Wompi payment link {link_id} created for order {params.order_number}")
        return PaymentResult(
            success=True,
            redirect_url=f"{WOMPI_CHECKOUT_URL}/{link_id}",
            transaction_id=link_id,
            reference=params.order_number,
            status=TransactionStatus.PENDING
        )

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookVerification:
        headers = lower_headers(headers)
        if not settings.WOMPI_EVENTS_SECRET:
            return WebhookVerification(valid=False, error="Wompi events secret not configured")

        timestamp = headers.get("x-event-timestamp", "")
        expected = hmac_sha256_hex(settings.WOMPI_EVENTS_SECRET, timestamp.encode("utf-8") + raw_body)
        if not signatures_match(expected, headers.get("x-event-checksum")):
            return WebhookVerification(valid=False, error="Invalid signature")

        data = parse_json_body(raw_body) or {}
        event_data = data.get("data")
        transaction = event_data.get("transaction") if isinstance(event_data, dict) else None
        if not isinstance(transaction, dict) or not transaction.get("id"):
            return WebhookVerification(valid=False, error="No transaction in webhook payload")

        raw_status = transaction.get("status", "PENDING")
        try:
            amount = transaction["amount_in_cents"] / 100 if transaction.get("amount_in_cents") else None
        except TypeError:
            amount = None
        lookup_ids = [transaction["id"]]
        if transaction.get("payment_link_id"):
            lookup_ids.append(transaction["payment_link_id"])

        return WebhookVerification(
            valid=True,
            # Wompi resends the same transaction per status change; id + status is stable across retries
            event_id=f"{transaction['id']}:{raw_status}",
            event_type=data.get("event", "transaction.updated"),
            transaction_id=transaction["id"],
            status=map_wompi_status(raw_status),
            reference=transaction.get("reference"),
            lookup_ids=lookup_ids,
            amount=amount,
            currency=transaction.get("currency"),
            data=data
        )

    def get_transaction_status(self, transaction_id: str) -> TransactionStatusResult:
        if not self.is_configured():
            return TransactionStatusResult(success=False, error="wompi is not configured", error_code="WOMPI_NOT_CONFIGURED")

        try:
            response = httpx.get(
                f"{self.api_url}/transactions/{transaction_id}",
                headers=self._auth_headers(),
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.lookup_failed(transaction_id, e)

        if response.status_code >= 400:
            return TransactionStatusResult(
                success=False,
                error=f"wompi returned HTTP {response.status_code}",
                error_code="WOMPI_STATUS_ERROR"
            )

        try:
            transaction = response.json().get("data") or {}
            amount_in_cents = transaction.get("amount_in_cents")
            return TransactionStatusResult(
                success=True,
                status=map_wompi_status(transaction.get("status")),
                transaction_id=transaction.get("id", transaction_id),
                reference=transaction.get("reference"),
                amount=amount_in_cents / 100 if amount_in_cents else None,
                currency=transaction.get("currency")
            )
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.lookup_failed(transaction_id, e)
