"""
Domain models for payment gateway webhook payloads.

Stripe payloads are parsed into typed models, then normalized into a
GatewayWebhookEvent that the billing services consume.
"""

from datetime import datetime
from typing import Optional, Any
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class StripeWebhookType(str, Enum):
    """Stripe webhook event types we care about."""

    # Charges
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_FAILED = "charge.failed"

    # Payment intents
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_PAYMENT_FAILED = "payment_intent.payment_failed"

    # Invoices
    INVOICE_PAID = "invoice.paid"


class GatewayEventType(str, Enum):
    """Gateway-neutral event kinds."""

    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_FAILED = "charge.failed"
    INVOICE_PAID = "invoice.paid"
    IGNORED = "ignored"


_STRIPE_TO_GATEWAY = {
    StripeWebhookType.CHARGE_SUCCEEDED: GatewayEventType.CHARGE_SUCCEEDED,
    StripeWebhookType.PAYMENT_INTENT_SUCCEEDED: GatewayEventType.CHARGE_SUCCEEDED,
    StripeWebhookType.CHARGE_FAILED: GatewayEventType.CHARGE_FAILED,
    StripeWebhookType.PAYMENT_INTENT_PAYMENT_FAILED: GatewayEventType.CHARGE_FAILED,
    StripeWebhookType.INVOICE_PAID: GatewayEventType.INVOICE_PAID,
}


class StripeChargeData(BaseModel):
    """Stripe charge or payment intent object."""

    id: str
    amount: Optional[int] = None
    status: Optional[str] = None
    payment_intent: Optional[str] = None
    failure_code: Optional[str] = None
    last_payment_error: Optional[dict[str, Any]] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    def decline_code(self) -> Optional[str]:
        if self.last_payment_error:
            return self.last_payment_error.get(
                "decline_code"
            ) or self.last_payment_error.get("code")
        return self.failure_code


class StripeInvoiceData(BaseModel):
    """Stripe invoice object."""

    id: str
    customer: Optional[str] = None
    status: Optional[str] = None
    amount_due: Optional[int] = None
    amount_paid: Optional[int] = None
    paid: Optional[bool] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class StripeEventData(BaseModel):
    """Stripe event data wrapper."""

    object: dict[str, Any]  # The actual object (charge, payment intent, invoice)


class StripeWebhookPayload(BaseModel):
    """Complete Stripe webhook payload."""

    id: str
    type: str
    data: StripeEventData
    created: int
    livemode: bool = False

    def to_gateway_event(self) -> "GatewayWebhookEvent":
        try:
            stripe_type = StripeWebhookType(self.type)
        except ValueError:
            return GatewayWebhookEvent(
                external_id=self.id, event_type=GatewayEventType.IGNORED, raw_type=self.type
            )

        event_type = _STRIPE_TO_GATEWAY[stripe_type]
        if event_type == GatewayEventType.INVOICE_PAID:
            invoice = StripeInvoiceData(**self.data.object)
            return GatewayWebhookEvent(
                external_id=self.id,
                event_type=event_type,
                raw_type=self.type,
                object_id=invoice.id,
                metadata=invoice.metadata,
            )

        charge = StripeChargeData(**self.data.object)
        return GatewayWebhookEvent(
            external_id=self.id,
            event_type=event_type,
            raw_type=self.type,
            object_id=charge.id,
            related_object_id=charge.payment_intent,
            failure_code=(
                charge.decline_code()
                if event_type == GatewayEventType.CHARGE_FAILED
                else None
            ),
            metadata=charge.metadata,
        )


class GatewayWebhookEvent(BaseModel):
    """
    Normalized webhook event.

    object_id is the charge (or invoice) the gateway refers to;
    related_object_id carries the payment intent id when the event is for a
    charge created under one.
    """

    external_id: str
    event_type: GatewayEventType
    raw_type: str
    object_id: Optional[str] = None
    related_object_id: Optional[str] = None
    failure_code: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class WebhookProcessingResult(BaseModel):
    external_id: str
    event_type: GatewayEventType
    duplicate: bool = False
    handled: bool = False


class ProcessedWebhookEvent(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    event_type: str
    received_at: Optional[datetime] = None
