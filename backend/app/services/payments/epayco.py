"""ePayco adapter - hosted checkout for COP/USD cards, PayPal, PSE and cash"""
import json
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode
import httpx

from app.core.config import settings, EPAYCO_CHECKOUT_URL, EPAYCO_API_REST
from app.services.payments.base import (
    PaymentGateway, hmac_sha256_hex, signatures_match, lower_headers, parse_json_body,
    GATEWAY_CALL_ERRORS, MALFORMED_RESPONSE_ERRORS
)
from app.services.payments.types import (
    PaymentMethodType, TransactionStatus, Currency, CreatePaymentParams, PaymentResult,
    WebhookVerification, TransactionStatusResult
)

payments_logger = logging.getLogger("payments")

EPAYCO_STATUS_MAP = {
    "1": TransactionStatus.APPROVED,
    "2": TransactionStatus.DECLINED,
    "3": TransactionStatus.PENDING,
    "4": TransactionStatus.ERROR,
    "6": TransactionStatus.DECLINED,  # Reversed
    "7": TransactionStatus.PENDING,  # Held for review
    "10": TransactionStatus.DECLINED,  # Rejected
    "11": TransactionStatus.EXPIRED,
}


def map_epayco_status(code) -> str:
    return EPAYCO_STATUS_MAP.get(str(code), TransactionStatus.PENDING)


def split_customer_name(name: str):
    """ePayco wants first and last name separately"""
    parts = (name or "").split()
    first_name = parts[0] if parts else "Cliente"
    last_name = " ".join(parts[1:]) or "N/A"
    return first_name, last_name


class EpaycoGateway(PaymentGateway):
    name = "epayco"
    supported_currencies = (Currency.COP, Currency.USD)
    supported_methods = (
        PaymentMethodType.CARD, PaymentMethodType.PAYPAL,
        PaymentMethodType.PSE, PaymentMethodType.CASH,
    )

    def is_configured(self) -> bool:
        return bool(settings.EPAYCO_PUBLIC_KEY and settings.EPAYCO_PRIVATE_KEY)

    def build_checkout_params(self, params: CreatePaymentParams) -> Dict[str, Any]:
        first_name, last_name = split_customer_name(params.customer.name)
        amount = f"{params.amount:.2f}" if params.currency == Currency.USD else str(int(round(params.amount)))
        checkout = {
            "p_cust_id_cliente": settings.EPAYCO_PUBLIC_KEY,
            "p_key": settings.EPAYCO_P_KEY,
            "p_id_invoice": params.order_number,
            "p_description": params.description,
            "p_amount": amount,
            "p_amount_base": amount,
            "p_tax": "0",
            "p_currency_code": params.currency,
            "p_test_request": "TRUE" if settings.EPAYCO_TEST else "FALSE",
            "p_url_response": params.return_url,
            "p_url_confirmation": params.webhook_url or params.return_url,
            "p_confirm_method": "POST",
            "p_billing_name": first_name,
            "p_billing_lastname": last_name,
            "p_billing_email": params.customer.email,
            "p_billing_doc_type": params.customer.document_type or "CC",
            "p_billing_country": "CO",
            "p_extra1": str(params.order_id),
            "p_extra2": json.dumps(params.metadata or {}),
        }
        if params.customer.phone:
            checkout["p_billing_phone"] = params.customer.phone
        if params.customer.document_number:
            checkout["p_billing_document"] = params.customer.document_number
        return checkout

    def create_payment(self, params: CreatePaymentParams) -> PaymentResult:
        invalid = self.validate_currency(params.currency) or self.validate_payment_method(params.payment_method)
        if invalid:
            return invalid
        if not self.is_configured():
            return self.not_configured()

        checkout_url = f"{EPAYCO_CHECKOUT_URL}?{urlencode(self.build_checkout_params(params))}"
        payments_logger.info(f"ePayco checkout prepared for order {params.order_number} ({params.currency})")
        return PaymentResult(
            success=True,
            redirect_url=checkout_url,
            reference=params.order_number,
            status=TransactionStatus.PENDING
        )

    def _parse_confirmation(self, headers: Dict[str, str], raw_body: bytes) -> Optional[Dict[str, str]]:
        content_type = headers.get("content-type", "")
        if "application/x-www-form-urlencoded" in content_type:
            try:
                return dict(parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True))
            except UnicodeDecodeError:
                return None
        data = parse_json_body(raw_body)
        if data is None:
            return None
        return {k: "" if v is None else str(v) for k, v in data.items()}

    def expected_signature(self, payload: Dict[str, str]) -> str:
        message = "^".join([
            payload.get("x_cust_id_cliente", ""),
            settings.EPAYCO_P_KEY,
            payload.get("x_ref_payco", ""),
            payload.get("x_transaction_id", ""),
            payload.get("x_amount", ""),
            payload.get("x_currency_code", ""),
        ])
        return hmac_sha256_hex(settings.EPAYCO_PRIVATE_KEY, message)

    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookVerification:
        headers = lower_headers(headers)
        if not settings.EPAYCO_PRIVATE_KEY:
            return WebhookVerification(valid=False, error="ePayco private key not configured")

        payload = self._parse_confirmation(headers, raw_body)
        if not payload or not payload.get("x_ref_payco") or not payload.get("x_transaction_id"):
            return WebhookVerification(valid=False, error="Missing required fields")

        if not signatures_match(self.expected_signature(payload), payload.get("x_signature")):
            return WebhookVerification(valid=False, error="Invalid signature")

        code = payload.get("x_cod_response", "")
        try:
            amount = float(payload["x_amount"]) if payload.get("x_amount") else None
        except ValueError:
            amount = None

        return WebhookVerification(
            valid=True,
            event_id=f"{payload['x_ref_payco']}:{code}",
            event_type=f"transaction.{payload.get('x_response', 'unknown')}",
            transaction_id=payload["x_ref_payco"],
            status=map_epayco_status(code),
            reference=payload.get("x_id_invoice"),
            lookup_ids=[payload["x_ref_payco"]],
            amount=amount,
            currency=payload.get("x_currency_code"),
            data=payload
        )

    def get_transaction_status(self, transaction_id: str) -> TransactionStatusResult:
        try:
            response = httpx.get(
                f"{EPAYCO_API_REST}/transaction/response.json",
                params={"ref_payco": transaction_id},
                timeout=settings.GATEWAY_TIMEOUT
            )
        except GATEWAY_CALL_ERRORS as e:
            return self.lookup_failed(transaction_id, e)

        try:
            body = response.json() if response.status_code < 400 else {}
            data = body.get("data") if body.get("success") else None
        except MALFORMED_RESPONSE_ERRORS as e:
            return self.lookup_failed(transaction_id, e)
        if not isinstance(data, dict) or not data:
            return TransactionStatusResult(success=False, error="Transaction not found", error_code="EPAYCO_NOT_FOUND")

        try:
            amount = float(data.get("x_amount", data.get("valor")))
        except (TypeError, ValueError):
            amount = None

        return TransactionStatusResult(
            success=True,
            status=map_epayco_status(data.get("x_cod_response", data.get("cod_respuesta"))),
            transaction_id=str(data.get("x_ref_payco", data.get("ref_payco", transaction_id))),
            reference=data.get("x_id_invoice"),
            amount=amount,
            currency=data.get("x_currency_code", data.get("moneda"))
        )
