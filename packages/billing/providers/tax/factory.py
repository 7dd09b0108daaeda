"""
Factory for getting tax engine instance.
"""

from common.core.config import settings
from common.core.constants import TaxProviderType
from packages.billing.providers.tax.flat_rate_tax import FlatRateTaxEngine
from packages.billing.providers.tax.interface import TaxEngineInterface


def get_tax_engine() -> TaxEngineInterface:
    """Get the configured tax engine."""
    if settings.tax_provider == TaxProviderType.FLAT_RATE:
        return FlatRateTaxEngine()
    raise ValueError(f"Unsupported tax provider: {settings.tax_provider}")
