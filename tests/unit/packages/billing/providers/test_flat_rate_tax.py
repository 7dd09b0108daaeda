"""
Unit tests for FlatRateTaxEngine.
"""

import pytest

from packages.billing.exceptions import TaxComputationError
from packages.billing.providers.tax.flat_rate_tax import FlatRateTaxEngine


@pytest.fixture
def engine():
    return FlatRateTaxEngine(default_rate_bps=500, jurisdiction_rates_bps={"DE": 1900})


class TestFlatRateTaxEngine:
    @pytest.mark.asyncio
    async def test_jurisdiction_rate(self, engine):
        assert await engine.compute_tax(9000, "DE") == 1710

    @pytest.mark.asyncio
    async def test_default_rate_for_unknown_jurisdiction(self, engine):
        assert await engine.compute_tax(9000, "FR") == 450
        assert await engine.compute_tax(9000, None) == 450

    @pytest.mark.asyncio
    async def test_rounds_half_up(self, engine):
        # 10 * 5% = 0.5
        assert await engine.compute_tax(10, None) == 1

    @pytest.mark.asyncio
    async def test_negative_subtotal_rejected(self, engine):
        with pytest.raises(TaxComputationError):
            await engine.compute_tax(-1, None)

    @pytest.mark.asyncio
    async def test_negative_rate_rejected(self):
        engine = FlatRateTaxEngine(default_rate_bps=-100, jurisdiction_rates_bps={})

        with pytest.raises(TaxComputationError):
            await engine.compute_tax(100, None)
