"""Payment gateways - charges, invoices and refunds."""

from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.payment.factory import get_payment_gateway

__all__ = [
    "PaymentGatewayInterface",
    "get_payment_gateway",
]
