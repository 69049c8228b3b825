"""Gateway registry and the single (payment method, currency) -> gateway selector"""
from typing import Dict, List, Optional

from app.models.order import OrderStatus
from app.services.payments.base import PaymentGateway
from app.services.payments.epayco import EpaycoGateway
from app.services.payments.nequi import NequiGateway
from app.services.payments.paypal import PayPalGateway
from app.services.payments.types import PaymentMethodType, TransactionStatus, Currency
from app.services.payments.wompi import WompiGateway

PAYMENT_GATEWAYS: Dict[str, PaymentGateway] = {
    "wompi": WompiGateway(),
    "epayco": EpaycoGateway(),
    "paypal": PayPalGateway(),
    "nequi": NequiGateway(),
}

# Provider vocabulary (already normalised by the adapters) -> internal order status
TRANSACTION_TO_ORDER_STATUS = {
    TransactionStatus.APPROVED: OrderStatus.COMPLETED,
    TransactionStatus.DECLINED: OrderStatus.FAILED,
    TransactionStatus.ERROR: OrderStatus.FAILED,
    TransactionStatus.VOIDED: OrderStatus.CANCELLED,
    TransactionStatus.EXPIRED: OrderStatus.CANCELLED,
    TransactionStatus.PENDING: OrderStatus.PENDING,
}

PAYMENT_METHOD_ENUMS = {
    ("wompi", PaymentMethodType.NEQUI): "WOMPI_NEQUI",
    ("wompi", PaymentMethodType.PSE): "WOMPI_PSE",
    ("wompi", PaymentMethodType.BANK_TRANSFER): "WOMPI_PSE",
    ("wompi", PaymentMethodType.CARD): "WOMPI_CARD",
    ("epayco", PaymentMethodType.CARD): "EPAYCO_CARD",
    ("epayco", PaymentMethodType.PAYPAL): "EPAYCO_PAYPAL",
    ("epayco", PaymentMethodType.PSE): "EPAYCO_PSE",
    ("epayco", PaymentMethodType.CASH): "EPAYCO_CASH",
    ("paypal", PaymentMethodType.CARD): "PAYPAL_CARD",
    ("paypal", PaymentMethodType.PAYPAL): "PAYPAL_DIRECT",
    ("nequi", PaymentMethodType.NEQUI): "NEQUI_PUSH",
}

DEFAULT_PAYMENT_METHOD_ENUMS = {
    "wompi": "WOMPI_CARD",
    "epayco": "EPAYCO_CARD",
    "paypal": "PAYPAL_DIRECT",
    "nequi": "NEQUI_PUSH",
}


def get_gateway(name: str) -> Optional[PaymentGateway]:
    return PAYMENT_GATEWAYS.get((name or "").lower())


def select_gateway_name(payment_method: str, currency: str) -> str:
    """Pure selection rule; the only place payment method and currency are branched on"""
    if payment_method == PaymentMethodType.NEQUI and currency == Currency.COP:
        return "nequi" if PAYMENT_GATEWAYS["nequi"].is_configured() else "wompi"
    if payment_method in (PaymentMethodType.CARD, PaymentMethodType.PSE, PaymentMethodType.BANK_TRANSFER) \
            and currency == Currency.COP:
        return "wompi"
    # PayPal, cash, USD cards and anything unrecognised go through ePayco
    return "epayco"


def select_gateway(payment_method: str, currency: str) -> PaymentGateway:
    return PAYMENT_GATEWAYS[select_gateway_name(payment_method, currency)]


def get_configured_gateways() -> List[str]:
    return [name for name, gateway in PAYMENT_GATEWAYS.items() if gateway.is_configured()]


def get_available_payment_methods(currency: str) -> List[Dict[str, str]]:
    """Payment methods offered for a currency, each with the gateway that would handle it"""
    if currency == Currency.COP:
        methods = [
            PaymentMethodType.CARD, PaymentMethodType.NEQUI,
            PaymentMethodType.PSE, PaymentMethodType.PAYPAL,
        ]
    elif currency == Currency.USD:
        methods = [PaymentMethodType.CARD, PaymentMethodType.PAYPAL]
    else:
        return []
    return [{"method": m, "gateway": select_gateway_name(m, currency)} for m in methods]


def payment_method_enum(gateway_name: str, payment_method: Optional[str]) -> str:
    """Persisted payment method value, e.g. WOMPI_NEQUI or EPAYCO_PAYPAL"""
    return PAYMENT_METHOD_ENUMS.get(
        (gateway_name, payment_method),
        DEFAULT_PAYMENT_METHOD_ENUMS.get(gateway_name, "EPAYCO_CARD")
    )


def map_to_order_status(transaction_status: Optional[str]) -> str:
    return TRANSACTION_TO_ORDER_STATUS.get(transaction_status, OrderStatus.PENDING)
