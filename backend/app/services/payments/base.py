"""Abstract base class for payment gateway adapters"""
import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple
import httpx
from redis.exceptions import RedisError

from app.core.metrics import gateway_errors_counter
from app.services.payments.types import (
    CreatePaymentParams, PaymentResult, WebhookVerification,
    TransactionStatusResult, RefundParams, RefundResult, GATEWAY_ERROR
)

payments_logger = logging.getLogger("payments")

# A 2xx body in a shape the adapter did not expect
MALFORMED_RESPONSE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)
# Anything a provider round trip can raise, cached OAuth token lookup included
GATEWAY_CALL_ERRORS = (httpx.HTTPError, RedisError) + MALFORMED_RESPONSE_ERRORS


def hmac_sha256_hex(secret: str, message) -> str:
    """Hex HMAC-SHA256 of a str or bytes message"""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: Optional[str]) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.lower(), received.strip().lower())


def lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def parse_json_body(raw_body: bytes) -> Optional[Dict[str, Any]]:
    """Decode a JSON webhook body, None when it is not a JSON object"""
    try:
        data = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


class PaymentGateway(ABC):
    """Abstract base class defining the interface contract for payment gateways.

    Every provider adapter implements these methods and normalises its own
    vocabulary into the shared result types. Adapters only talk HTTP; they
    never touch the database. Failures are returned as results with an
    error code, never raised to the caller.
    """

    name: str = ""
    supported_currencies: Tuple[str, ...] = ()
    supported_methods: Tuple[str, ...] = ()

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether all credentials this adapter needs are present"""
        pass

    @abstractmethod
    def create_payment(self, params: CreatePaymentParams) -> PaymentResult:
        """Start a payment with the provider.

        Args:
            params: Amount, currency, order identity, customer and callback URLs

        Returns:
            PaymentResult with a redirect URL or in-band checkout instructions,
            or success=False with error and error_code
        """
        pass

    @abstractmethod
    def verify_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookVerification:
        """Verify a webhook against the raw, unparsed body and extract the event.

        Returns:
            WebhookVerification with valid=False and an error when the
            signature does not match; the body is not interpreted further.
        """
        pass

    @abstractmethod
    def get_transaction_status(self, transaction_id: str) -> TransactionStatusResult:
        """Ask the provider for the current status of a transaction"""
        pass

    def refund(self, params: RefundParams) -> RefundResult:
        return RefundResult(
            success=False,
            status="FAILED",
            error=f"Refunds are not supported by {self.name}",
            error_code="REFUND_NOT_SUPPORTED"
        )

    def validate_currency(self, currency: str) -> Optional[PaymentResult]:
        """Failed result when the currency is unsupported, None otherwise"""
        if currency not in self.supported_currencies:
            return PaymentResult(
                success=False,
                error=f"{self.name} does not support currency {currency}",
                error_code="UNSUPPORTED_CURRENCY"
            )
        return None

    def validate_payment_method(self, payment_method: Optional[str]) -> Optional[PaymentResult]:
        """Failed result when the method is unsupported, None otherwise"""
        if payment_method and payment_method not in self.supported_methods:
            return PaymentResult(
                success=False,
                error=f"{self.name} does not support payment method {payment_method}",
                error_code="UNSUPPORTED_PAYMENT_METHOD"
            )
        return None

    def not_configured(self) -> PaymentResult:
        return PaymentResult(
            success=False,
            error=f"{self.name} is not configured",
            error_code=f"{self.name.upper()}_NOT_CONFIGURED"
        )

    def network_error(self, exc: Exception) -> PaymentResult:
        """Map transport failures and timeouts to GATEWAY_ERROR"""
        gateway_errors_counter.labels(gateway=self.name).inc()
        payments_logger.error(f"{self.name} request failed: {exc}")
        return PaymentResult(success=False, error=f"Could not reach {self.name}: {exc}", error_code=GATEWAY_ERROR)

    def malformed_response(self, exc: Exception) -> PaymentResult:
        """Failed result for a 2xx response that could not be read"""
        gateway_errors_counter.labels(gateway=self.name).inc()
        payments_logger.error(f"{self.name} sent an unreadable response: {type(exc).__name__}: {exc}")
        return PaymentResult(success=False, error=f"Unexpected response from {self.name}", error_code=GATEWAY_ERROR)

    def lookup_failed(self, transaction_id: str, exc: Exception) -> TransactionStatusResult:
        """Failed status lookup or capture for transport and decoding errors"""
        gateway_errors_counter.labels(gateway=self.name).inc()
        payments_logger.error(f"{self.name} lookup failed for {transaction_id}: {type(exc).__name__}: {exc}")
        return TransactionStatusResult(success=False, error=str(exc), error_code=GATEWAY_ERROR)

    def rejected(self, response: httpx.Response, error_code: str) -> PaymentResult:
        """Failed result for a non-2xx provider response"""
        gateway_errors_counter.labels(gateway=self.name).inc()
        payments_logger.error(
            f"{self.name} rejected request: HTTP {response.status_code} - {response.text[:500]}"
        )
        return PaymentResult(
            success=False,
            error=f"{self.name} returned HTTP {response.status_code}",
            error_code=error_code
        )
