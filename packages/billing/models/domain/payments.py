"""
Domain models for payment collection and retry.
"""

from typing import Optional
from pydantic import BaseModel, Field

from packages.billing.models.domain.enums import FailureClass
from packages.billing.models.domain.transaction import Transaction


class RetryPolicy(BaseModel):
    """Backoff schedule for one failure class."""

    name: str
    max_attempts: int = Field(ge=1)
    base_delay_seconds: float = Field(ge=0)
    backoff_multiplier: float = Field(ge=1)
    fallback_enabled: bool
    auto_retry: bool = True


class ChargeStatus:
    SUCCEEDED = "succeeded"
    PENDING = "pending"


class ChargeResult(BaseModel):
    """Outcome of a gateway charge call that did not raise."""

    status: str  # ChargeStatus value
    external_id: str
    failure_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChargeStatus.SUCCEEDED

    @property
    def pending(self) -> bool:
        return self.status == ChargeStatus.PENDING


class CollectionResult(BaseModel):
    """Result of driving a charge through its retry chain."""

    succeeded: bool
    pending: bool = False
    transaction: Optional[Transaction] = None
    attempts: list[Transaction] = Field(default_factory=list)
    failure_class: Optional[FailureClass] = None
    used_fallback: bool = False
    delays: list[float] = Field(default_factory=list)
