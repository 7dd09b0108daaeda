"""
Invoice assembly.

One invoice per subscription period, keyed by period_key. The gateway
invoice is created first with a deterministic idempotency key, then the
local row is persisted; re-running assembly for a period returns the
existing invoice instead of creating another.
"""

from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.exceptions import (
    ConsistencyError,
    TaxComputationError,
    ValidationError,
)
from packages.billing.models.domain.common import utcnow
from packages.billing.models.domain.enums import InvoiceItemKind, InvoiceStatus
from packages.billing.models.domain.invoice import (
    Invoice,
    InvoiceCreateModel,
    InvoiceItem,
    OneTimeCharge,
    OneTimeChargeCreateModel,
)
from packages.billing.models.domain.plan import Plan
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import UsageCharge
from packages.billing.providers.payment.factory import get_payment_gateway
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.store.factory import get_billing_store
from packages.billing.providers.store.interface import BillingStoreInterface
from packages.billing.providers.tax.factory import get_tax_engine
from packages.billing.providers.tax.interface import TaxEngineInterface

logger = get_logger(__name__)


def invoice_idempotency_key(subscription_id: int, period_key: str) -> str:
    return f"{subscription_id}:{period_key}:invoice"


class InvoiceAssembler:
    """Service for building, persisting and settling invoices."""

    def __init__(
        self,
        store: Optional[BillingStoreInterface] = None,
        gateway: Optional[PaymentGatewayInterface] = None,
        tax_engine: Optional[TaxEngineInterface] = None,
    ):
        self.store = store or get_billing_store()
        self.gateway = gateway or get_payment_gateway()
        self.tax_engine = tax_engine or get_tax_engine()
        self.persist_attempts = settings.invoice_persist_attempts

    def build_items(
        self,
        plan: Plan,
        usage_charges: list[UsageCharge],
        one_time_charges: list[OneTimeCharge],
    ) -> list[InvoiceItem]:
        items = [
            InvoiceItem(
                kind=InvoiceItemKind.SUBSCRIPTION,
                description=f"{plan.name} ({plan.billing_cycle.value})",
                amount=plan.price,
                item_metadata={"plan_id": plan.id},
            )
        ]

        for charge in usage_charges:
            if charge.amount == 0:
                continue
            items.append(
                InvoiceItem(
                    kind=InvoiceItemKind.USAGE,
                    description=f"Usage: {charge.metric_name or charge.metric_id}",
                    amount=charge.amount,
                    item_metadata={
                        "metric_id": charge.metric_id,
                        "usage": str(charge.usage),
                        "tiers": [
                            line.model_dump(mode="json") for line in charge.tiers
                        ],
                    },
                )
            )

        items.extend(charge.to_item() for charge in one_time_charges)
        return items

    async def _compute_tax(self, subtotal: int, jurisdiction: Optional[str]) -> int:
        try:
            tax = await self.tax_engine.compute_tax(max(subtotal, 0), jurisdiction)
        except TaxComputationError:
            raise
        except Exception as e:
            raise TaxComputationError(f"Tax engine failed: {str(e)}") from e

        if tax < 0:
            raise TaxComputationError(f"Tax engine returned negative tax {tax}")
        return tax

    @trace_span
    async def assemble(
        self,
        subscription: Subscription,
        plan: Plan,
        usage_charges: list[UsageCharge],
        one_time_charges: Optional[list[OneTimeCharge]] = None,
    ) -> Invoice:
        """
        Build and persist the invoice for the subscription's current period.

        Returns the existing invoice unchanged when the period was already
        invoiced.

        Raises:
            TaxComputationError: Tax failed; nothing persisted, gateway untouched
            GatewayError: Gateway invoice could not be created
            ConsistencyError: Gateway invoice exists but local persist kept failing
        """
        period_key = subscription.period_key

        existing = await self.store.get_invoice_by_period_key(period_key)
        if existing:
            logger.info(
                f"Invoice {existing.id} already exists for period {period_key}",
                extra={"subscription_id": subscription.id, "invoice_id": existing.id},
            )
            return existing

        if plan.price < 0:
            raise ValidationError(f"Plan {plan.id} has a negative price")

        if one_time_charges is None:
            one_time_charges = await self.store.get_pending_one_time_charges(
                subscription.id
            )

        items = self.build_items(plan, usage_charges, one_time_charges)
        subtotal = sum(item.amount for item in items)
        tax = await self._compute_tax(subtotal, subscription.tax_jurisdiction)
        total = subtotal + tax

        external_invoice_id = await self.gateway.create_invoice(
            idempotency_key=invoice_idempotency_key(subscription.id, period_key),
            customer_id=subscription.external_customer_id,
            items=[item.model_dump(mode="json") for item in items],
            metadata={
                "subscription_id": str(subscription.id),
                "period_key": period_key,
            },
        )

        create_model = InvoiceCreateModel(
            subscription_id=subscription.id,
            period_key=period_key,
            period_start=subscription.current_period_start,
            period_end=subscription.current_period_end,
            items=[item.model_dump(mode="json") for item in items],
            subtotal=subtotal,
            tax=tax,
            total=total,
            amount_due=max(0, total),
            status=InvoiceStatus.OPEN,
            external_invoice_id=external_invoice_id,
        )

        carry_forward = None
        if total < 0:
            carry_forward = OneTimeChargeCreateModel(
                subscription_id=subscription.id,
                description=f"Credit carried forward from {period_key}",
                amount=total,
            )

        invoice = await self._persist(
            create_model, [charge.id for charge in one_time_charges], carry_forward
        )

        logger.info(
            f"Assembled invoice {invoice.id} for period {period_key}: "
            f"subtotal={subtotal} tax={tax} total={total}",
            extra={
                "subscription_id": subscription.id,
                "invoice_id": invoice.id,
                "external_invoice_id": external_invoice_id,
            },
        )
        return invoice

    async def _persist(
        self,
        create_model: InvoiceCreateModel,
        one_time_charge_ids: list[int],
        carry_forward: Optional[OneTimeChargeCreateModel] = None,
    ) -> Invoice:
        """
        Persist locally, reconciling by period_key after each failure.

        A concurrent writer that already stored the period's invoice wins.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.persist_attempts + 1):
            try:
                return await self.store.create_invoice(
                    create_model, one_time_charge_ids, carry_forward
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Invoice persist attempt {attempt} failed: {str(e)}",
                    extra={
                        "period_key": create_model.period_key,
                        "external_invoice_id": create_model.external_invoice_id,
                    },
                )

            try:
                existing = await self.store.get_invoice_by_period_key(
                    create_model.period_key
                )
            except Exception as e:
                logger.warning(f"Invoice reconciliation read failed: {str(e)}")
                continue
            if existing:
                return existing

        logger.error(
            f"Gateway invoice {create_model.external_invoice_id} has no local record",
            extra={"period_key": create_model.period_key},
        )
        raise ConsistencyError(
            f"Could not persist invoice for period {create_model.period_key}: {last_error}",
            period_key=create_model.period_key,
            external_id=create_model.external_invoice_id,
        )

    @trace_span
    async def mark_paid(self, invoice: Invoice) -> Invoice:
        if invoice.status == InvoiceStatus.PAID:
            return invoice
        if invoice.status == InvoiceStatus.VOID:
            raise ValidationError(f"Invoice {invoice.id} is void")

        paid = await self.store.set_invoice_status(
            invoice.id, InvoiceStatus.PAID, paid_at=utcnow()
        )
        logger.info(f"Invoice {invoice.id} paid", extra={"invoice_id": invoice.id})
        return paid

    @trace_span
    async def void(self, invoice: Invoice) -> Invoice:
        if invoice.status == InvoiceStatus.VOID:
            return invoice
        if invoice.status == InvoiceStatus.PAID:
            raise ValidationError(f"Invoice {invoice.id} is already paid")

        voided = await self.store.set_invoice_status(invoice.id, InvoiceStatus.VOID)
        logger.info(f"Invoice {invoice.id} voided", extra={"invoice_id": invoice.id})
        return voided
