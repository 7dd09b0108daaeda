"""
Flat-rate tax engine with per-jurisdiction basis-point rates.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from packages.billing.exceptions import TaxComputationError
from packages.billing.providers.tax.interface import TaxEngineInterface

logger = get_logger(__name__)

_BPS = Decimal(10000)


class FlatRateTaxEngine(TaxEngineInterface):
    def __init__(
        self,
        default_rate_bps: Optional[int] = None,
        jurisdiction_rates_bps: Optional[dict[str, int]] = None,
    ):
        self.default_rate_bps = (
            settings.tax_default_rate_bps
            if default_rate_bps is None
            else default_rate_bps
        )
        self.jurisdiction_rates_bps = (
            settings.tax_jurisdiction_rates_bps
            if jurisdiction_rates_bps is None
            else jurisdiction_rates_bps
        )

    def rate_for(self, jurisdiction: Optional[str]) -> int:
        if jurisdiction is None:
            return self.default_rate_bps
        return self.jurisdiction_rates_bps.get(jurisdiction, self.default_rate_bps)

    async def compute_tax(self, subtotal: int, jurisdiction: Optional[str]) -> int:
        if subtotal < 0:
            raise TaxComputationError(f"Cannot tax a negative subtotal: {subtotal}")

        rate = self.rate_for(jurisdiction)
        if rate < 0:
            raise TaxComputationError(
                f"Invalid tax rate {rate} bps for jurisdiction {jurisdiction}"
            )

        tax = (Decimal(subtotal) * Decimal(rate) / _BPS).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
        logger.debug(
            f"Computed tax {tax} on {subtotal} at {rate} bps",
            extra={"jurisdiction": jurisdiction},
        )
        return int(tax)
