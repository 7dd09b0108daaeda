"""
Domain models for payment transactions.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict

from packages.billing.models.domain.common import UtcDatetime
from packages.billing.models.domain.enums import (
    FailureClass,
    TransactionKind,
    TransactionStatus,
)


class Transaction(BaseModel):
    """
    One gateway money movement: a charge attempt or a refund.

    At most one completed subscription_charge exists per
    (subscription_id, period_key).
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    amount: int  # Signed; refunds are negative
    status: TransactionStatus
    kind: TransactionKind
    idempotency_key: str
    period_key: Optional[str] = None
    related_transaction_id: Optional[int] = None
    invoice_id: Optional[int] = None
    external_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    attempt_number: int = 1
    failure_reason: Optional[FailureClass] = None

    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @property
    def unsettled(self) -> bool:
        """The gateway call was sent but its outcome never came back."""
        return self.status == TransactionStatus.PENDING and not self.external_id


class TransactionCreateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    subscription_id: int
    amount: int
    status: TransactionStatus = TransactionStatus.PENDING
    kind: TransactionKind
    idempotency_key: str
    period_key: Optional[str] = None
    related_transaction_id: Optional[int] = None
    invoice_id: Optional[int] = None
    external_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    attempt_number: int = 1
    failure_reason: Optional[FailureClass] = None


class TransactionUpdateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: Optional[TransactionStatus] = None
    external_id: Optional[str] = None
    failure_reason: Optional[FailureClass] = None
