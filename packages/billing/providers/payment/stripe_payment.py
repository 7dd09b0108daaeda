"""
Stripe implementation of payment gateway.
"""

import asyncio
from typing import Any, Optional
import stripe

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.exceptions import CardError, GatewayError, ValidationError
from packages.billing.models.domain.payments import ChargeResult, ChargeStatus
from packages.billing.models.domain.webhooks import (
    GatewayWebhookEvent,
    StripeWebhookPayload,
)
from packages.billing.providers.payment.interface import PaymentGatewayInterface

logger = get_logger(__name__)

# PaymentIntent statuses that settle later and are reported by webhook
_PENDING_STATUSES = {
    "processing",
    "requires_action",
    "requires_confirmation",
    "requires_capture",
}


def _to_gateway_error(error: stripe.StripeError) -> GatewayError:
    """Map a Stripe SDK error onto the billing error taxonomy."""
    if isinstance(error, stripe.CardError):
        reason = getattr(getattr(error, "error", None), "decline_code", None)
        return CardError(str(error), reason=reason or error.code)
    if isinstance(
        error, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)
    ):
        return GatewayError(str(error), retryable=True)
    return GatewayError(str(error), retryable=False)


class StripePaymentGateway(PaymentGatewayInterface):
    """Stripe-based payment implementation."""

    def __init__(self):
        """Initialize Stripe with API credentials."""
        stripe.api_key = settings.stripe_secret_key
        self.currency = settings.stripe_currency

    @trace_span
    async def create_charge(
        self,
        idempotency_key: str,
        amount: int,
        payment_method_id: str,
        customer_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> ChargeResult:
        """
        Create and confirm an off-session PaymentIntent.

        Declines surface as CardError carrying the decline code.
        """
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=self.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                confirm=True,
                off_session=True,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.warning(
                f"Stripe charge failed: {str(e)}",
                extra={"idempotency_key": idempotency_key, "error": str(e)},
            )
            raise _to_gateway_error(e)

        logger.info(
            "Created Stripe payment intent",
            extra={
                "idempotency_key": idempotency_key,
                "payment_intent_id": intent.id,
                "status": intent.status,
            },
        )

        if intent.status == "succeeded":
            return ChargeResult(status=ChargeStatus.SUCCEEDED, external_id=intent.id)
        if intent.status in _PENDING_STATUSES:
            return ChargeResult(status=ChargeStatus.PENDING, external_id=intent.id)

        last_error = getattr(intent, "last_payment_error", None)
        reason = None
        if last_error is not None:
            reason = getattr(last_error, "decline_code", None) or getattr(
                last_error, "code", None
            )
        raise CardError(
            f"Payment intent {intent.id} ended in status {intent.status}",
            reason=reason or "card_declined",
        )

    @trace_span
    async def create_invoice(
        self,
        idempotency_key: str,
        customer_id: Optional[str],
        items: list[dict[str, Any]],
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Create a draft Stripe invoice with one invoice item per line."""
        if not customer_id:
            raise GatewayError(
                "Stripe invoices require a customer", retryable=False
            )

        try:
            invoice = await asyncio.to_thread(
                stripe.Invoice.create,
                customer=customer_id,
                auto_advance=False,
                collection_method="charge_automatically",
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
            for index, item in enumerate(items):
                await asyncio.to_thread(
                    stripe.InvoiceItem.create,
                    customer=customer_id,
                    invoice=invoice.id,
                    amount=item["amount"],
                    currency=self.currency,
                    description=item["description"],
                    idempotency_key=f"{idempotency_key}:item:{index}",
                )
        except stripe.StripeError as e:
            logger.error(
                f"Failed to create Stripe invoice: {str(e)}",
                extra={"idempotency_key": idempotency_key, "error": str(e)},
            )
            raise _to_gateway_error(e)

        logger.info(
            "Created Stripe invoice",
            extra={"idempotency_key": idempotency_key, "invoice_id": invoice.id},
        )
        return invoice.id

    @trace_span
    async def refund(
        self,
        external_charge_id: str,
        amount: int,
        idempotency_key: str,
    ) -> str:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=external_charge_id,
                amount=amount,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(
                f"Failed to refund Stripe charge: {str(e)}",
                extra={"payment_intent_id": external_charge_id, "error": str(e)},
            )
            raise _to_gateway_error(e)

        logger.info(
            "Created Stripe refund",
            extra={"payment_intent_id": external_charge_id, "refund_id": refund.id},
        )
        return refund.id

    def parse_webhook(self, payload: bytes, signature: str) -> GatewayWebhookEvent:
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, settings.stripe_webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {str(e)}")
            raise ValidationError("Invalid signature")
        except ValueError as e:
            raise ValidationError(f"Invalid webhook payload: {str(e)}")

        return StripeWebhookPayload(**event).to_gateway_event()

    @trace_span
    async def health_check(self) -> bool:
        """Check if Stripe API is reachable."""
        try:
            await asyncio.to_thread(stripe.Balance.retrieve)
            return True
        except Exception as e:
            logger.error(f"Stripe health check failed: {str(e)}")
            return False
