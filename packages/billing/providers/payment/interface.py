"""
Interface for payment gateways.

Abstracts charge collection, invoicing and refunds away from specific
platforms (Stripe, Adyen, etc.)
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from packages.billing.models.domain.payments import ChargeResult
from packages.billing.models.domain.webhooks import GatewayWebhookEvent


class PaymentGatewayInterface(ABC):
    """
    Abstract interface for payment gateways.

    Every mutating call carries an idempotency key; replaying a key must
    return the original result instead of moving money twice.
    """

    @abstractmethod
    async def create_charge(
        self,
        idempotency_key: str,
        amount: int,
        payment_method_id: str,
        customer_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> ChargeResult:
        """
        Charge a payment method.

        Args:
            idempotency_key: Key deduplicating this attempt at the gateway
            amount: Amount in minor currency units
            payment_method_id: Gateway payment method to charge
            customer_id: Gateway customer the method belongs to
            metadata: Free-form key/values attached to the charge

        Returns:
            ChargeResult with status succeeded or pending

        Raises:
            CardError: The payment method was declined
            GatewayError: The gateway could not be reached or errored
        """
        pass

    @abstractmethod
    async def create_invoice(
        self,
        idempotency_key: str,
        customer_id: Optional[str],
        items: list[dict[str, Any]],
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """
        Create the gateway-side invoice record.

        Returns:
            external_invoice_id
        """
        pass

    @abstractmethod
    async def refund(
        self,
        external_charge_id: str,
        amount: int,
        idempotency_key: str,
    ) -> str:
        """
        Refund (part of) a charge.

        Returns:
            external refund id
        """
        pass

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: str) -> GatewayWebhookEvent:
        """
        Verify a webhook signature and normalize the event.

        Raises:
            ValidationError: Signature or payload is invalid
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the payment backend is available and healthy.

        Returns:
            True if healthy, False otherwise
        """
        pass
