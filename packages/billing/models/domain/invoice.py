"""
Domain models for invoices and one-time charges.
"""

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.common import UtcDatetime
from packages.billing.models.domain.enums import InvoiceItemKind, InvoiceStatus


class InvoiceItem(BaseModel):
    kind: InvoiceItemKind
    description: str
    amount: int  # Signed; negative for credits
    item_metadata: dict[str, Any] = Field(default_factory=dict)


class Invoice(BaseModel):
    """
    Priced invoice for one subscription period.

    At most one non-void invoice exists per period_key.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    period_key: str
    period_start: UtcDatetime
    period_end: UtcDatetime
    items: list[InvoiceItem] = Field(default_factory=list)
    subtotal: int
    tax: int
    total: int
    amount_due: int
    status: InvoiceStatus
    external_invoice_id: Optional[str] = None

    created_at: Optional[UtcDatetime] = None
    paid_at: Optional[UtcDatetime] = None

    @property
    def is_settled(self) -> bool:
        return self.status in (InvoiceStatus.PAID, InvoiceStatus.VOID)


class InvoiceCreateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    subscription_id: int
    period_key: str
    period_start: UtcDatetime
    period_end: UtcDatetime
    items: list[dict[str, Any]] = Field(default_factory=list)
    subtotal: int
    tax: int
    total: int
    amount_due: int = Field(ge=0)
    status: InvoiceStatus = InvoiceStatus.OPEN
    external_invoice_id: Optional[str] = None


class OneTimeCharge(BaseModel):
    """
    An ad-hoc charge or credit carried onto the subscription's next invoice.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    description: str
    amount: int  # Negative amounts are credits
    invoice_id: Optional[int] = None
    created_at: Optional[UtcDatetime] = None

    def to_item(self) -> InvoiceItem:
        return InvoiceItem(
            kind=InvoiceItemKind.ONE_TIME,
            description=self.description,
            amount=self.amount,
            item_metadata={"one_time_charge_id": self.id},
        )


class OneTimeChargeCreateModel(BaseModel):
    subscription_id: int
    description: str
    amount: int
