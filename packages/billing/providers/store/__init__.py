"""Billing store - persistence behind a narrow interface."""

from packages.billing.providers.store.interface import BillingStoreInterface
from packages.billing.providers.store.factory import get_billing_store

__all__ = [
    "BillingStoreInterface",
    "get_billing_store",
]
