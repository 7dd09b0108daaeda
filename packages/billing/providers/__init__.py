"""Billing providers - abstracted external platform integrations."""

from packages.billing.providers.payment.factory import get_payment_gateway
from packages.billing.providers.store.factory import get_billing_store
from packages.billing.providers.tax.factory import get_tax_engine

__all__ = [
    "get_billing_store",
    "get_payment_gateway",
    "get_tax_engine",
]
