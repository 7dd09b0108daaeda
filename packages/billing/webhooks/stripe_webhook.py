"""
Stripe webhook handler for payment events.

Handles events from Stripe payment platform:
- Charge and payment intent success/failure (deferred renewal settlements)
- Invoice payment
"""

from fastapi import Request, HTTPException, status
from pydantic import ValidationError as PydanticValidationError

from common.core.otel_axiom_exporter import get_logger
from packages.billing.exceptions import SubscriptionBusyError, ValidationError
from packages.billing.models.domain.webhooks import WebhookProcessingResult
from packages.billing.providers.payment.factory import get_payment_gateway
from packages.billing.services.billing_cycle_service import BillingCycleOrchestrator

logger = get_logger(__name__)


async def handle_stripe_webhook(request: Request) -> WebhookProcessingResult:
    """
    Handle incoming webhook from Stripe.

    Validates the webhook signature, then applies the event at most once.
    Any processing failure answers 5xx so Stripe redelivers the event.
    """
    try:
        payload_bytes = await request.body()
        sig_header = request.headers.get("stripe-signature")

        if not sig_header:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing stripe-signature header",
            )

        event = get_payment_gateway().parse_webhook(payload_bytes, sig_header)

        logger.info(
            f"Received Stripe webhook: {event.raw_type}",
            extra={
                "event_id": event.external_id,
                "event_type": event.raw_type,
                "object_id": event.object_id,
            },
        )

        return await BillingCycleOrchestrator().handle_gateway_event(event)

    except (ValidationError, PydanticValidationError) as e:
        logger.error(f"Invalid Stripe webhook: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )
    except HTTPException:
        raise
    except SubscriptionBusyError as e:
        logger.warning(f"Stripe webhook deferred: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscription busy, retry later",
        )
    except Exception as e:
        logger.error(
            f"Failed to process Stripe webhook: {str(e)}", extra={"error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )
