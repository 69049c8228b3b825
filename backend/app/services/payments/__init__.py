"""Payment gateway package - public API exports"""

from app.services.payments.base import PaymentGateway
from app.services.payments.registry import (
    PAYMENT_GATEWAYS,
    get_gateway,
    select_gateway,
    select_gateway_name,
    get_configured_gateways,
    get_available_payment_methods,
    payment_method_enum,
    map_to_order_status,
)
from app.services.payments.types import (
    PaymentMethodType,
    TransactionStatus,
    Currency,
    CustomerInfo,
    CreatePaymentParams,
    PaymentResult,
    WebhookVerification,
    TransactionStatusResult,
    RefundParams,
    RefundResult,
    GatewayMetadata,
)

__all__ = [
    "PaymentGateway",
    "PAYMENT_GATEWAYS",
    "get_gateway",
    "select_gateway",
    "select_gateway_name",
    "get_configured_gateways",
    "get_available_payment_methods",
    "payment_method_enum",
    "map_to_order_status",
    "PaymentMethodType",
    "TransactionStatus",
    "Currency",
    "CustomerInfo",
    "CreatePaymentParams",
    "PaymentResult",
    "WebhookVerification",
    "TransactionStatusResult",
    "RefundParams",
    "RefundResult",
    "GatewayMetadata",
]
