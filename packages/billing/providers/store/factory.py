"""
Factory for getting the billing store.
"""

from typing import Optional

from packages.billing.providers.store.interface import BillingStoreInterface
from packages.billing.providers.store.sql_store import SqlBillingStore

# Global instance
_billing_store: Optional[BillingStoreInterface] = None


def get_billing_store() -> BillingStoreInterface:
    global _billing_store

    if _billing_store is None:
        _billing_store = SqlBillingStore()

    return _billing_store
