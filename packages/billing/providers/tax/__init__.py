"""Tax engines - tax owed on invoice subtotals."""

from packages.billing.providers.tax.interface import TaxEngineInterface
from packages.billing.providers.tax.factory import get_tax_engine

__all__ = [
    "TaxEngineInterface",
    "get_tax_engine",
]
