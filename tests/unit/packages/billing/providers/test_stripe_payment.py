"""
Unit tests for StripePaymentGateway.

The Stripe SDK is patched; no network calls are made.
"""

import threading

import pytest
import stripe
from unittest.mock import MagicMock, patch

from packages.billing.exceptions import CardError, GatewayError, ValidationError
from packages.billing.models.domain.payments import ChargeStatus
from packages.billing.models.domain.webhooks import GatewayEventType
from packages.billing.providers.payment.stripe_payment import StripePaymentGateway

STRIPE = "packages.billing.providers.payment.stripe_payment.stripe"


@pytest.fixture
def gateway():
    return StripePaymentGateway()


def intent(status, intent_id="pi_123", last_payment_error=None):
    mock = MagicMock()
    mock.id = intent_id
    mock.status = status
    mock.last_payment_error = last_payment_error
    return mock


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestCreateCharge:
    @pytest.mark.asyncio
    async def test_succeeded(self, mock_start_span, gateway):
        with patch(f"{STRIPE}.PaymentIntent.create", return_value=intent("succeeded")) as create:
            result = await gateway.create_charge(
                idempotency_key="1:key:renewal:1",
                amount=9000,
                payment_method_id="pm_primary",
                customer_id="cus_test123",
            )

        assert result.status == ChargeStatus.SUCCEEDED
        assert result.external_id == "pi_123"
        kwargs = create.call_args.kwargs
        assert kwargs["idempotency_key"] == "1:key:renewal:1"
        assert kwargs["off_session"] is True
        assert kwargs["confirm"] is True

    @pytest.mark.asyncio
    async def test_processing_is_pending(self, mock_start_span, gateway):
        with patch(f"{STRIPE}.PaymentIntent.create", return_value=intent("processing")):
            result = await gateway.create_charge(
                idempotency_key="k", amount=100, payment_method_id="pm"
            )

        assert result.status == ChargeStatus.PENDING
        assert result.pending is True

    @pytest.mark.asyncio
    async def test_unpaid_intent_raises_card_error(self, mock_start_span, gateway):
        error = MagicMock()
        error.decline_code = "insufficient_funds"
        with patch(
            f"{STRIPE}.PaymentIntent.create",
            return_value=intent("requires_payment_method", last_payment_error=error),
        ):
            with pytest.raises(CardError) as exc_info:
                await gateway.create_charge(
                    idempotency_key="k", amount=100, payment_method_id="pm"
                )

        assert exc_info.value.reason == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_stripe_card_error(self, mock_start_span, gateway):
        with patch(
            f"{STRIPE}.PaymentIntent.create",
            side_effect=stripe.CardError("Card expired", None, "expired_card"),
        ):
            with pytest.raises(CardError) as exc_info:
                await gateway.create_charge(
                    idempotency_key="k", amount=100, payment_method_id="pm"
                )

        assert exc_info.value.reason == "expired_card"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self, mock_start_span, gateway):
        with patch(
            f"{STRIPE}.PaymentIntent.create",
            side_effect=stripe.APIConnectionError("connection reset"),
        ):
            with pytest.raises(GatewayError) as exc_info:
                await gateway.create_charge(
                    idempotency_key="k", amount=100, payment_method_id="pm"
                )

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_sdk_call_runs_off_the_event_loop(self, mock_start_span, gateway):
        callers = []

        def create(**kwargs):
            callers.append(threading.get_ident())
            return intent("succeeded")

        with patch(f"{STRIPE}.PaymentIntent.create", side_effect=create):
            await gateway.create_charge(
                idempotency_key="k", amount=100, payment_method_id="pm"
            )

        assert callers and callers[0] != threading.get_ident()


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestInvoicesAndRefunds:
    @pytest.mark.asyncio
    async def test_create_invoice_items(self, mock_start_span, gateway):
        invoice = MagicMock()
        invoice.id = "in_123"
        with (
            patch(f"{STRIPE}.Invoice.create", return_value=invoice),
            patch(f"{STRIPE}.InvoiceItem.create") as create_item,
        ):
            invoice_id = await gateway.create_invoice(
                idempotency_key="1:key:invoice",
                customer_id="cus_test123",
                items=[
                    {"description": "Starter", "amount": 9000},
                    {"description": "api_calls", "amount": 1400},
                ],
            )

        assert invoice_id == "in_123"
        keys = [call.kwargs["idempotency_key"] for call in create_item.call_args_list]
        assert keys == ["1:key:invoice:item:0", "1:key:invoice:item:1"]

    @pytest.mark.asyncio
    async def test_create_invoice_without_customer(self, mock_start_span, gateway):
        with pytest.raises(GatewayError):
            await gateway.create_invoice(idempotency_key="k", customer_id=None, items=[])

    @pytest.mark.asyncio
    async def test_refund(self, mock_start_span, gateway):
        refund = MagicMock()
        refund.id = "re_123"
        with patch(f"{STRIPE}.Refund.create", return_value=refund) as create:
            refund_id = await gateway.refund("pi_123", 9000, "k:refund")

        assert refund_id == "re_123"
        assert create.call_args.kwargs["payment_intent"] == "pi_123"
        assert create.call_args.kwargs["idempotency_key"] == "k:refund"

    @pytest.mark.asyncio
    async def test_health_check_failure(self, mock_start_span, gateway):
        with patch(
            f"{STRIPE}.Balance.retrieve", side_effect=stripe.APIConnectionError("down")
        ):
            assert await gateway.health_check() is False


class TestParseWebhook:
    def event(self, event_type, obj):
        return {
            "id": "evt_1",
            "type": event_type,
            "created": 1767225600,
            "data": {"object": obj},
        }

    def test_payment_intent_failed(self, gateway):
        payload = self.event(
            "payment_intent.payment_failed",
            {
                "id": "pi_123",
                "status": "requires_payment_method",
                "last_payment_error": {"decline_code": "insufficient_funds"},
            },
        )
        with patch(f"{STRIPE}.Webhook.construct_event", return_value=payload):
            event = gateway.parse_webhook(b"{}", "sig")

        assert event.event_type == GatewayEventType.CHARGE_FAILED
        assert event.object_id == "pi_123"
        assert event.failure_code == "insufficient_funds"

    def test_charge_succeeded_links_payment_intent(self, gateway):
        payload = self.event(
            "charge.succeeded", {"id": "ch_1", "payment_intent": "pi_123"}
        )
        with patch(f"{STRIPE}.Webhook.construct_event", return_value=payload):
            event = gateway.parse_webhook(b"{}", "sig")

        assert event.event_type == GatewayEventType.CHARGE_SUCCEEDED
        assert event.related_object_id == "pi_123"
        assert event.failure_code is None

    def test_invoice_paid(self, gateway):
        payload = self.event("invoice.paid", {"id": "in_123", "paid": True})
        with patch(f"{STRIPE}.Webhook.construct_event", return_value=payload):
            event = gateway.parse_webhook(b"{}", "sig")

        assert event.event_type == GatewayEventType.INVOICE_PAID
        assert event.object_id == "in_123"

    def test_unknown_event_ignored(self, gateway):
        payload = self.event("customer.created", {"id": "cus_1"})
        with patch(f"{STRIPE}.Webhook.construct_event", return_value=payload):
            event = gateway.parse_webhook(b"{}", "sig")

        assert event.event_type == GatewayEventType.IGNORED
        assert event.raw_type == "customer.created"

    def test_bad_signature(self, gateway):
        with patch(
            f"{STRIPE}.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("bad", "sig"),
        ):
            with pytest.raises(ValidationError):
                gateway.parse_webhook(b"{}", "sig")
