"""Error taxonomy for checkout, webhook and entitlement operations"""
from typing import Any, Dict, Optional
from fastapi import HTTPException


class OrchestrationError(Exception):
    """Base class for all errors surfaced to API callers.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable category (VALIDATION, DUPLICATE, ...)
        status_code: HTTP status the API layer should answer with
        details: Additional context (e.g. discount rejection reason)
    """
    error_code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.message, "errorCode": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class CheckoutValidationError(OrchestrationError):
    """Malformed or incomplete checkout input"""
    error_code = "VALIDATION"
    status_code = 400


class DuplicatePurchaseError(OrchestrationError):
    """Buyer already owns the product or membership tier"""
    error_code = "DUPLICATE"
    status_code = 409


class DiscountInvalidError(OrchestrationError):
    """Discount code rejected; `reason` names the rule that failed"""
    error_code = "DISCOUNT_INVALID"
    status_code = 400

    def __init__(self, message: str, reason: str):
        self.reason = reason
        super().__init__(message, details={"reason": reason})


class GatewayError(OrchestrationError):
    """Adapter call failed or the provider declined the payment"""
    error_code = "GATEWAY_ERROR"
    status_code = 502


class SignatureInvalidError(OrchestrationError):
    """Webhook rejected before parsing"""
    error_code = "SIGNATURE_INVALID"
    status_code = 401


class NotFoundError(OrchestrationError):
    """Referenced order, booking or subscription is absent"""
    error_code = "NOT_FOUND"
    status_code = 404


class CapacityExhaustedError(OrchestrationError):
    """Perk cap reached for non-priority buyers"""
    error_code = "CAPACITY_EXHAUSTED"
    status_code = 409


class PackCodeInvalidError(OrchestrationError):
    """Session pack cannot be redeemed; `reason` is expired, exhausted or inactive"""
    error_code = "PACK_CODE_INVALID"
    status_code = 400

    def __init__(self, message: str, reason: str):
        self.reason = reason
        super().__init__(message, details={"reason": reason})


class SlotUnavailableError(OrchestrationError):
    error_code = "SLOT_UNAVAILABLE"
    status_code = 409


class OrderStateError(OrchestrationError):
    """Operation needs a PENDING order"""
    error_code = "INVALID_STATE"
    status_code = 409


class InternalError(OrchestrationError):
    error_code = "INTERNAL"
    status_code = 500


def to_http_exception(exc: OrchestrationError) -> HTTPException:
    """Route-level translation, mirroring the payload the global handler sends"""
    return HTTPException(exc.status_code, exc.to_dict())
