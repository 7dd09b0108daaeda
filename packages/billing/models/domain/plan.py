"""
Domain models for plans.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.common import UtcDatetime
from packages.billing.models.domain.enums import BillingCycle


class Plan(BaseModel):
    """
    A priced plan.

    Immutable once an active subscription's current period references it;
    price changes ship as a new plan.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: int  # Minor currency units per billing cycle
    billing_cycle: BillingCycle
    usage_limits: dict[str, int] = Field(default_factory=dict)
    metric_ids: list[int] = Field(default_factory=list)
    active: bool = True

    created_at: Optional[UtcDatetime] = None


class PlanCreateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str
    price: int = Field(ge=0)
    billing_cycle: BillingCycle
    usage_limits: dict[str, int] = Field(default_factory=dict)
    metric_ids: list[int] = Field(default_factory=list)
    active: bool = True
