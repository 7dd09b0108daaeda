"""
Factory for getting payment gateway instance.
"""

from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.payment.stripe_payment import StripePaymentGateway


def get_payment_gateway() -> PaymentGatewayInterface:
    """
    Get payment gateway instance based on configuration.

    Currently only Stripe is supported, but this abstraction allows
    swapping to another gateway without touching the billing services.

    Returns:
        PaymentGatewayInterface: Configured payment gateway
    """
    return StripePaymentGateway()
