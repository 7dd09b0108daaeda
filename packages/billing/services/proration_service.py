"""
Proration arithmetic for mid-period plan changes.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal

from packages.billing.models.domain.common import ensure_utc
from packages.billing.models.domain.plan import Plan
from packages.billing.models.domain.proration import ProrationResult
from packages.billing.services.metering_service import to_minor_units

_ONE_DAY = timedelta(days=1)


class ProrationCalculator:
    """
    Credit for the unused part of the old plan, netted against the new plan.

    The period length is the old plan's nominal cycle (30, 90 or 365 days).
    """

    def remaining_days(self, now: datetime, period_end: datetime) -> int:
        """Whole days left in the period, partial days rounded up."""
        remaining = ensure_utc(period_end) - ensure_utc(now)
        if remaining <= timedelta(0):
            return 0
        return math.ceil(remaining / _ONE_DAY)

    def prorate(
        self,
        old_plan: Plan,
        new_plan: Plan,
        now: datetime,
        period_end: datetime,
    ) -> ProrationResult:
        days_in_period = old_plan.billing_cycle.nominal_days
        remaining_days = self.remaining_days(now, period_end)

        credit = to_minor_units(
            Decimal(old_plan.price) * remaining_days / days_in_period
        )
        credit = min(credit, old_plan.price)

        return ProrationResult(
            credit=credit,
            amount_due=max(0, new_plan.price - credit),
            over_credit=max(0, credit - new_plan.price),
            remaining_days=remaining_days,
            days_in_period=days_in_period,
        )
