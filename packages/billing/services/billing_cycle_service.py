"""
Billing cycle orchestration: renewal, dunning, plan changes and cancellation.

Exclusivity per subscription comes from two layers:
- the lock provider key subscription:{id}, taken non-blocking by renewal and
  dunning so a busy subscription is skipped rather than waited on;
- a version compare-and-swap on every subscription write, so a writer that
  lost the lock (TTL expiry) or never took it (cancellation) cannot
  overwrite a newer state.

No database session is held across gateway calls or backoff sleeps; the
lock is extended before each sleep.
"""

import asyncio
from contextvars import ContextVar
from datetime import datetime
from typing import Awaitable, Callable, Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import annotate_span, trace_span, get_logger
from common.providers.locking.factory import get_lock_provider
from common.providers.locking.interface import DistributedLockInterface
from packages.billing.exceptions import (
    ConsistencyError,
    InvalidStateTransitionError,
    PaymentFailedError,
    PlanNotFoundError,
    StaleVersionError,
    SubscriptionBusyError,
    SubscriptionNotFoundError,
    ValidationError,
)
from packages.billing.models.domain.common import add_months, ensure_utc, utcnow
from packages.billing.models.domain.enums import (
    ChargePurpose,
    FailureClass,
    InvoiceStatus,
    SubscriptionStatus,
    TransactionKind,
    TransactionStatus,
)
from packages.billing.models.domain.invoice import Invoice, OneTimeChargeCreateModel
from packages.billing.models.domain.plan import Plan
from packages.billing.models.domain.results import (
    BillingRunSummary,
    PlanChangeOutcome,
    RenewalOutcome,
    RenewalOutcomeType,
)
from packages.billing.models.domain.subscription import (
    CancellationOptions,
    Subscription,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.transaction import Transaction
from packages.billing.models.domain.usage import UsageRecord
from packages.billing.models.domain.webhooks import (
    GatewayEventType,
    GatewayWebhookEvent,
    WebhookProcessingResult,
)
from packages.billing.providers.payment.factory import get_payment_gateway
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.store.factory import get_billing_store
from packages.billing.providers.store.interface import BillingStoreInterface
from packages.billing.providers.tax.interface import TaxEngineInterface
from packages.billing.services.invoice_service import InvoiceAssembler
from packages.billing.services.metering_service import UsageMeteringEngine
from packages.billing.services.payment_retry_service import PaymentRetryCoordinator
from packages.billing.services.proration_service import ProrationCalculator

logger = get_logger(__name__)

# Stale-version retries for writes that do not take the lock
_CAS_ATTEMPTS = 5
# How long user-initiated operations wait for a busy subscription
_LOCK_WAIT_SECONDS = 5.0
# Concurrency slot of the batch task running in this context
_batch_slot: ContextVar[Optional[asyncio.Semaphore]] = ContextVar(
    "billing_batch_slot", default=None
)


def subscription_lock_key(subscription_id: int) -> str:
    return f"subscription:{subscription_id}"


class BillingCycleOrchestrator:
    """Service owning every subscription state transition."""

    def __init__(
        self,
        store: Optional[BillingStoreInterface] = None,
        gateway: Optional[PaymentGatewayInterface] = None,
        tax_engine: Optional[TaxEngineInterface] = None,
        lock_provider: Optional[DistributedLockInterface] = None,
        payments: Optional[PaymentRetryCoordinator] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.store = store or get_billing_store()
        self.gateway = gateway or get_payment_gateway()
        self.lock = lock_provider or get_lock_provider()

        self.metering = UsageMeteringEngine(store=self.store)
        self.proration = ProrationCalculator()
        self.invoices = InvoiceAssembler(
            store=self.store, gateway=self.gateway, tax_engine=tax_engine
        )
        self.payments = payments or PaymentRetryCoordinator(
            store=self.store, gateway=self.gateway
        )

        self.sleep = sleep or asyncio.sleep
        self.lock_ttl = settings.subscription_lock_ttl_seconds
        self.max_concurrency = settings.billing_max_concurrency
        self.dunning_max_attempts = settings.dunning_max_attempts
        self.dunning_exhausted_status = SubscriptionStatus(
            settings.dunning_exhausted_status
        )

    # Reads

    async def _get_subscription(self, subscription_id: int) -> Subscription:
        subscription = await self.store.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    async def _get_plan(self, plan_id: int) -> Plan:
        plan = await self.store.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        return plan

    # Writes

    async def _apply(
        self, subscription: Subscription, update: SubscriptionUpdateModel
    ) -> Subscription:
        """
        CAS-write an update against the version the caller read.

        Raises:
            InvalidStateTransitionError: The status change is not allowed
            StaleVersionError: The subscription changed since it was read
        """
        if update.status is not None:
            target = SubscriptionStatus(update.status)
            if not subscription.status.can_transition_to(target):
                raise InvalidStateTransitionError(subscription.status, target)

        return await self.store.update_subscription(
            subscription.id, subscription.version, update
        )

    def _lock_aware_sleep(self, lock_key: str, token: str):
        async def sleep(delay: float) -> None:
            extended = await self.lock.extend_lock(
                lock_key, token, int(delay) + self.lock_ttl
            )
            if not extended:
                logger.warning(
                    f"Could not extend {lock_key} before backoff; relying on version checks",
                    extra={"lock_key": lock_key},
                )
            slot = _batch_slot.get()
            if slot is None:
                await self.sleep(delay)
                return

            # Give the batch slot to other subscriptions while this one waits
            slot.release()
            try:
                await self.sleep(delay)
            finally:
                await slot.acquire()

        return sleep

    async def _acquire_or_raise(self, subscription_id: int) -> tuple[str, str]:
        lock_key = subscription_lock_key(subscription_id)
        token = await self.lock.acquire_lock_with_retry(
            lock_key,
            lock_ttl_seconds=self.lock_ttl,
            acquire_timeout_seconds=_LOCK_WAIT_SECONDS,
        )
        if token is None:
            raise SubscriptionBusyError(
                f"Subscription {subscription_id} is being processed"
            )
        return lock_key, token

    # Renewal

    @trace_span
    async def renew_due(self, now: Optional[datetime] = None) -> BillingRunSummary:
        """Renew every subscription whose period has ended."""
        now = ensure_utc(now or utcnow())
        due = await self.store.list_due_subscriptions(now)

        logger.info(f"Renewal run: {len(due)} subscriptions due", extra={"now": now.isoformat()})
        summary = await self._run_batch(
            [subscription.id for subscription in due],
            lambda subscription_id: self.renew(subscription_id, now),
        )
        logger.info(
            f"Renewal run finished: {summary.renewed} renewed, {summary.failed} failed, "
            f"{summary.skipped} skipped, {len(summary.errors)} errors",
            extra={"summary": summary.model_dump()},
        )
        return summary

    @trace_span
    async def renew(
        self, subscription_id: int, now: Optional[datetime] = None
    ) -> RenewalOutcome:
        """
        Bill and advance one subscription if its period has ended.

        Returns a skipped outcome when another worker holds the subscription.
        """
        now = ensure_utc(now or utcnow())
        lock_key = subscription_lock_key(subscription_id)

        token = await self.lock.acquire_lock(lock_key, timeout_seconds=self.lock_ttl)
        if token is None:
            logger.info(f"Subscription {subscription_id} locked by another worker; skipping")
            return RenewalOutcome(
                subscription_id=subscription_id,
                outcome=RenewalOutcomeType.SKIPPED,
                reason="locked",
            )

        try:
            return await self._renew_locked(subscription_id, now, lock_key, token)
        finally:
            await self.lock.release_lock(lock_key, token)

    async def _renew_locked(
        self, subscription_id: int, now: datetime, lock_key: str, token: str
    ) -> RenewalOutcome:
        subscription = await self._get_subscription(subscription_id)
        annotate_span(subscription_id=subscription_id, period_key=subscription.period_key)

        if subscription.status == SubscriptionStatus.CANCELLING:
            if not subscription.is_due(now):
                return self._skipped(subscription, "cancels at period end")
            cancelled = await self._finalize_cancellation(subscription, now)
            return self._cancelled(cancelled)

        if not subscription.status.is_renewable():
            return self._skipped(subscription, f"status {subscription.status.value}")
        if not subscription.is_due(now):
            return self._skipped(subscription, "not due")

        plan = await self._get_plan(subscription.plan_id)

        # Claim: bump the version so any renewal that read the old one aborts
        try:
            subscription = await self.store.update_subscription(
                subscription.id, subscription.version, SubscriptionUpdateModel()
            )
        except StaleVersionError:
            return self._skipped(subscription, "claimed by another worker")

        period_key = subscription.period_key
        completed = await self.store.get_completed_charge(subscription.id, period_key)
        if completed:
            logger.info(
                f"Period {period_key} already charged by transaction {completed.id}",
                extra={"subscription_id": subscription.id},
            )
            invoice = await self.store.get_invoice_by_period_key(period_key)
            return await self._commit_payment(subscription, plan, invoice, completed, now)

        usage_charges = await self.metering.calculate_usage(
            subscription,
            plan,
            subscription.current_period_start,
            subscription.current_period_end,
        )
        invoice = await self.invoices.assemble(subscription, plan, usage_charges)

        # A cancellation may have landed while the invoice was assembled
        current = await self._get_subscription(subscription.id)
        if current.status in (SubscriptionStatus.CANCELLING, SubscriptionStatus.CANCELLED):
            if invoice.status == InvoiceStatus.OPEN:
                await self.invoices.void(invoice)
            if current.status == SubscriptionStatus.CANCELLING:
                current = await self._finalize_cancellation(current, now)
            return self._cancelled(current, invoice_id=invoice.id)
        if current.version != subscription.version:
            return self._skipped(current, "modified during invoicing")

        if invoice.status == InvoiceStatus.PAID:
            return await self._commit_payment(subscription, plan, invoice, None, now)

        result = await self.payments.collect(
            subscription,
            invoice.amount_due,
            period_key,
            purpose=ChargePurpose.RENEWAL,
            invoice_id=invoice.id,
            sleep=self._lock_aware_sleep(lock_key, token),
        )

        if result.pending:
            logger.info(
                f"Renewal charge for {period_key} pending gateway confirmation",
                extra={"subscription_id": subscription.id},
            )
            return RenewalOutcome(
                subscription_id=subscription.id,
                outcome=RenewalOutcomeType.PENDING,
                status=subscription.status,
                invoice_id=invoice.id,
                transaction_id=result.transaction.id if result.transaction else None,
            )

        if result.succeeded:
            return await self._commit_payment(
                subscription, plan, invoice, result.transaction, now
            )

        return await self._commit_failure(subscription, invoice, result.failure_class, now)

    async def _commit_payment(
        self,
        subscription: Subscription,
        plan: Plan,
        invoice: Optional[Invoice],
        transaction: Optional[Transaction],
        now: datetime,
    ) -> RenewalOutcome:
        """
        Advance the period after a completed charge.

        If a cancellation won the race for the version, the charge is
        refunded and the cancellation is finalized instead.
        """
        if subscription.status in (
            SubscriptionStatus.CANCELLING,
            SubscriptionStatus.CANCELLED,
        ):
            return await self._unwind_cancelled(subscription, invoice, transaction, now)

        update = self.payments.record_success(subscription)
        update.current_period_start = subscription.current_period_end
        update.current_period_end = add_months(
            subscription.current_period_end, plan.billing_cycle.months
        )

        try:
            renewed = await self._apply(subscription, update)
        except StaleVersionError:
            current = await self._get_subscription(subscription.id)
            if current.status not in (
                SubscriptionStatus.CANCELLING,
                SubscriptionStatus.CANCELLED,
            ):
                raise
            return await self._unwind_cancelled(current, invoice, transaction, now)

        if invoice is not None and invoice.status == InvoiceStatus.OPEN:
            await self.invoices.mark_paid(invoice)

        logger.info(
            f"Renewed subscription {renewed.id} through {renewed.current_period_end.isoformat()}",
            extra={
                "subscription_id": renewed.id,
                "transaction_id": transaction.id if transaction else None,
            },
        )
        return RenewalOutcome(
            subscription_id=renewed.id,
            outcome=RenewalOutcomeType.RENEWED,
            status=renewed.status,
            invoice_id=invoice.id if invoice else None,
            transaction_id=transaction.id if transaction else None,
        )

    async def _unwind_cancelled(
        self,
        current: Subscription,
        invoice: Optional[Invoice],
        transaction: Optional[Transaction],
        now: datetime,
    ) -> RenewalOutcome:
        """Refund the period's charge and finish a cancellation that won the race."""
        logger.warning(
            f"Subscription {current.id} cancelled during renewal; refunding",
            extra={"subscription_id": current.id},
        )
        if transaction is not None:
            await self.payments.refund(transaction, reason="cancelled during renewal")
        if invoice is not None and invoice.status == InvoiceStatus.OPEN:
            await self.invoices.void(invoice)
        if current.status == SubscriptionStatus.CANCELLING:
            current = await self._finalize_cancellation(current, now)
        return self._cancelled(current, invoice_id=invoice.id if invoice else None)

    async def _commit_failure(
        self,
        subscription: Subscription,
        invoice: Optional[Invoice],
        failure_class: Optional[FailureClass],
        now: datetime,
    ) -> RenewalOutcome:
        failure_class = failure_class or FailureClass.GENERIC
        update = self.payments.record_failure(subscription, failure_class)
        # Only a past-due subscription moves on to the exhausted status
        exhausted = (
            subscription.status == SubscriptionStatus.PAST_DUE
            and update.failed_payment_count >= self.dunning_max_attempts
        )
        if exhausted:
            update.status = self.dunning_exhausted_status
            if self.dunning_exhausted_status == SubscriptionStatus.CANCELLED:
                update.cancelled_at = now

        try:
            failed = await self._apply(subscription, update)
        except StaleVersionError:
            current = await self._get_subscription(subscription.id)
            if current.status == SubscriptionStatus.CANCELLING:
                current = await self._finalize_cancellation(current, now)
            if current.status == SubscriptionStatus.CANCELLED:
                return self._cancelled(current, invoice_id=invoice.id if invoice else None)
            raise

        logger.warning(
            f"Payment failed for subscription {failed.id} "
            f"({failure_class.value}, {failed.failed_payment_count} failures)",
            extra={"subscription_id": failed.id, "status": failed.status.value},
        )
        return RenewalOutcome(
            subscription_id=failed.id,
            outcome=(
                RenewalOutcomeType.EXHAUSTED if exhausted else RenewalOutcomeType.FAILED
            ),
            status=failed.status,
            invoice_id=invoice.id if invoice else None,
            failure_class=failure_class,
        )

    # Dunning

    @trace_span
    async def run_dunning_sweep(
        self, now: Optional[datetime] = None
    ) -> BillingRunSummary:
        """Retry collection for past-due subscriptions."""
        now = ensure_utc(now or utcnow())
        past_due = await self.store.list_past_due_subscriptions()

        logger.info(f"Dunning sweep: {len(past_due)} subscriptions past due")
        summary = await self._run_batch(
            [subscription.id for subscription in past_due],
            lambda subscription_id: self.dun(subscription_id, now),
        )
        logger.info(
            f"Dunning sweep finished: {summary.renewed} recovered, "
            f"{summary.exhausted} exhausted, {summary.skipped} skipped",
            extra={"summary": summary.model_dump()},
        )
        return summary

    @trace_span
    async def dun(
        self, subscription_id: int, now: Optional[datetime] = None
    ) -> RenewalOutcome:
        """One dunning attempt for a past-due subscription."""
        now = ensure_utc(now or utcnow())
        lock_key = subscription_lock_key(subscription_id)

        token = await self.lock.acquire_lock(lock_key, timeout_seconds=self.lock_ttl)
        if token is None:
            return RenewalOutcome(
                subscription_id=subscription_id,
                outcome=RenewalOutcomeType.SKIPPED,
                reason="locked",
            )

        try:
            return await self._dun_locked(subscription_id, now, lock_key, token)
        finally:
            await self.lock.release_lock(lock_key, token)

    async def _dun_locked(
        self, subscription_id: int, now: datetime, lock_key: str, token: str
    ) -> RenewalOutcome:
        subscription = await self._get_subscription(subscription_id)
        annotate_span(subscription_id=subscription_id, period_key=subscription.period_key)
        if subscription.status != SubscriptionStatus.PAST_DUE:
            return self._skipped(subscription, f"status {subscription.status.value}")

        if subscription.failed_payment_count >= self.dunning_max_attempts:
            update = SubscriptionUpdateModel(status=self.dunning_exhausted_status)
            if self.dunning_exhausted_status == SubscriptionStatus.CANCELLED:
                update.cancelled_at = now
            exhausted = await self._apply(subscription, update)
            logger.warning(
                f"Dunning exhausted for subscription {exhausted.id}",
                extra={"subscription_id": exhausted.id, "status": exhausted.status.value},
            )
            return RenewalOutcome(
                subscription_id=exhausted.id,
                outcome=RenewalOutcomeType.EXHAUSTED,
                status=exhausted.status,
            )

        if subscription.dunning_suppressed():
            return self._skipped(subscription, "card expired; waiting for a new payment method")

        invoice = await self.store.get_open_invoice(subscription.id)
        if invoice is None:
            return self._skipped(subscription, "no open invoice")

        plan = await self._get_plan(subscription.plan_id)

        # An earlier charge for the period may have gone through unseen
        result = await self.payments.resolve_unsettled(subscription, invoice.period_key)
        if result is not None and result.transaction.unsettled:
            return self._skipped(subscription, "earlier charge outcome unknown")
        if result is None or not (result.succeeded or result.pending):
            result = await self.payments.collect(
                subscription,
                invoice.amount_due,
                invoice.period_key,
                purpose=ChargePurpose.DUNNING,
                invoice_id=invoice.id,
                sequence=subscription.failed_payment_count,
                sleep=self._lock_aware_sleep(lock_key, token),
            )

        if result.pending:
            return RenewalOutcome(
                subscription_id=subscription.id,
                outcome=RenewalOutcomeType.PENDING,
                status=subscription.status,
                invoice_id=invoice.id,
                transaction_id=result.transaction.id if result.transaction else None,
            )
        if result.succeeded:
            return await self._commit_payment(
                subscription, plan, invoice, result.transaction, now
            )
        return await self._commit_failure(subscription, invoice, result.failure_class, now)

    # Plan changes

    @trace_span
    async def apply_plan_change(
        self,
        subscription_id: int,
        new_plan_id: int,
        now: Optional[datetime] = None,
    ) -> PlanChangeOutcome:
        """
        Switch plans mid-period, charging the prorated difference first.

        Raises:
            PaymentFailedError: The proration charge failed; plan unchanged
            SubscriptionBusyError: The subscription stayed locked
        """
        now = ensure_utc(now or utcnow())
        lock_key, token = await self._acquire_or_raise(subscription_id)
        try:
            return await self._change_plan_locked(subscription_id, new_plan_id, now)
        finally:
            await self.lock.release_lock(lock_key, token)

    async def _change_plan_locked(
        self, subscription_id: int, new_plan_id: int, now: datetime
    ) -> PlanChangeOutcome:
        subscription = await self._get_subscription(subscription_id)
        if not subscription.status.is_renewable():
            raise ValidationError(
                f"Cannot change plan of a {subscription.status.value} subscription"
            )
        if subscription.plan_id == new_plan_id:
            raise ValidationError(f"Subscription already on plan {new_plan_id}")

        old_plan = await self._get_plan(subscription.plan_id)
        new_plan = await self._get_plan(new_plan_id)
        if not new_plan.active:
            raise ValidationError(f"Plan {new_plan_id} is not available")

        proration = self.proration.prorate(
            old_plan, new_plan, now, subscription.current_period_end
        )

        transaction = None
        if proration.amount_due > 0:
            result = await self.payments.charge_once(
                subscription,
                proration.amount_due,
                subscription.period_key,
                purpose=ChargePurpose.PLAN_CHANGE,
                sequence=subscription.version,
            )
            if not result.succeeded or result.pending:
                failure = result.failure_class
                logger.warning(
                    f"Proration charge failed for subscription {subscription.id}",
                    extra={
                        "subscription_id": subscription.id,
                        "failure_class": failure.value if failure else "pending",
                    },
                )
                raise PaymentFailedError(
                    f"Proration charge of {proration.amount_due} did not complete",
                    failure_class=failure,
                )
            transaction = result.transaction

        try:
            updated = await self._apply(
                subscription, SubscriptionUpdateModel(plan_id=new_plan_id)
            )
        except StaleVersionError:
            if transaction is not None:
                await self.payments.refund(transaction, reason="plan change superseded")
            raise

        credit_charge = None
        if proration.over_credit > 0:
            credit_charge = await self.store.add_one_time_charge(
                OneTimeChargeCreateModel(
                    subscription_id=subscription.id,
                    description=f"Credit for unused time on {old_plan.name}",
                    amount=-proration.over_credit,
                )
            )

        logger.info(
            f"Subscription {subscription.id} moved from plan {old_plan.id} to {new_plan.id}",
            extra={
                "subscription_id": subscription.id,
                "credit": proration.credit,
                "amount_due": proration.amount_due,
                "over_credit": proration.over_credit,
            },
        )
        return PlanChangeOutcome(
            subscription=updated,
            proration=proration,
            transaction_id=transaction.id if transaction else None,
            credit_charge_id=credit_charge.id if credit_charge else None,
        )

    # Cancellation

    @trace_span
    async def cancel(
        self,
        subscription_id: int,
        options: Optional[CancellationOptions] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Cancel now or at period end.

        Does not wait for the renewal lock; a renewal in flight notices the
        cancellation through its version checks.
        """
        options = options or CancellationOptions()
        now = ensure_utc(now or utcnow())

        for _ in range(_CAS_ATTEMPTS):
            subscription = await self._get_subscription(subscription_id)
            if subscription.status == SubscriptionStatus.CANCELLED:
                return subscription

            if options.immediate:
                update = SubscriptionUpdateModel(
                    status=SubscriptionStatus.CANCELLED,
                    cancelled_at=now,
                )
            elif subscription.status == SubscriptionStatus.CANCELLING:
                return subscription
            else:
                update = SubscriptionUpdateModel(
                    status=SubscriptionStatus.CANCELLING,
                    cancel_at_period_end=True,
                )

            try:
                cancelled = await self._apply(subscription, update)
            except StaleVersionError:
                continue

            logger.info(
                f"Subscription {subscription_id} {cancelled.status.value}",
                extra={
                    "subscription_id": subscription_id,
                    "immediate": options.immediate,
                    "reason": options.reason,
                },
            )
            return cancelled

        raise ConsistencyError(
            f"Could not cancel subscription {subscription_id}: kept losing version races"
        )

    async def _finalize_cancellation(
        self, subscription: Subscription, now: datetime
    ) -> Subscription:
        for _ in range(_CAS_ATTEMPTS):
            if subscription.status == SubscriptionStatus.CANCELLED:
                return subscription
            try:
                return await self._apply(
                    subscription,
                    SubscriptionUpdateModel(
                        status=SubscriptionStatus.CANCELLED, cancelled_at=now
                    ),
                )
            except StaleVersionError:
                subscription = await self._get_subscription(subscription.id)

        raise ConsistencyError(
            f"Could not finalize cancellation of subscription {subscription.id}"
        )

    # Payment methods and usage

    @trace_span
    async def update_payment_method(
        self,
        subscription_id: int,
        payment_method_id: str,
        fallback_payment_method_id: Optional[str] = None,
    ) -> Subscription:
        """
        Attach a new payment method.

        A past-due subscription whose card expired becomes eligible for the
        next dunning sweep again.
        """
        for _ in range(_CAS_ATTEMPTS):
            subscription = await self._get_subscription(subscription_id)
            if subscription.status.is_terminal():
                raise ValidationError(
                    f"Cannot update payment method of a {subscription.status.value} subscription"
                )

            update = SubscriptionUpdateModel(payment_method_id=payment_method_id)
            if fallback_payment_method_id is not None:
                update.fallback_payment_method_id = fallback_payment_method_id

            try:
                updated = await self._apply(subscription, update)
            except StaleVersionError:
                continue

            logger.info(
                f"Payment method updated for subscription {subscription_id}",
                extra={"subscription_id": subscription_id},
            )
            return updated

        raise ConsistencyError(
            f"Could not update payment method of subscription {subscription_id}"
        )

    @trace_span
    async def record_usage(
        self,
        subscription_id: int,
        metric_id: int,
        value,
        timestamp: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> UsageRecord:
        subscription = await self._get_subscription(subscription_id)
        if subscription.status.is_terminal():
            raise ValidationError(
                f"Cannot record usage on a {subscription.status.value} subscription"
            )

        plan = await self._get_plan(subscription.plan_id)
        if metric_id not in plan.metric_ids:
            raise ValidationError(f"Metric {metric_id} is not billed on plan {plan.id}")

        return await self.metering.track_usage(
            subscription_id, metric_id, value, timestamp=timestamp, metadata=metadata
        )

    # Webhooks

    @trace_span
    async def handle_gateway_event(
        self, event: GatewayWebhookEvent, now: Optional[datetime] = None
    ) -> WebhookProcessingResult:
        """
        Apply a gateway webhook event exactly once.

        The event is recorded as processed only after it was applied, so a
        failed delivery is retried by the gateway.
        """
        now = ensure_utc(now or utcnow())

        if await self.store.is_webhook_event_processed(event.external_id):
            logger.info(
                f"Webhook event {event.external_id} already processed",
                extra={"event_type": event.raw_type},
            )
            return WebhookProcessingResult(
                external_id=event.external_id,
                event_type=event.event_type,
                duplicate=True,
            )

        handled = False
        if event.event_type in (
            GatewayEventType.CHARGE_SUCCEEDED,
            GatewayEventType.CHARGE_FAILED,
        ):
            handled = await self._handle_charge_event(event, now)
        elif event.event_type == GatewayEventType.INVOICE_PAID:
            handled = await self._handle_invoice_paid(event, now)

        first_delivery = await self.store.record_webhook_event(
            event.external_id, event.raw_type
        )
        return WebhookProcessingResult(
            external_id=event.external_id,
            event_type=event.event_type,
            duplicate=not first_delivery,
            handled=handled,
        )

    async def _handle_charge_event(self, event: GatewayWebhookEvent, now: datetime) -> bool:
        succeeded = event.event_type == GatewayEventType.CHARGE_SUCCEEDED

        transaction = None
        for external_id in (event.object_id, event.related_object_id):
            if external_id:
                transaction = await self.payments.apply_charge_event(
                    external_id, succeeded, event.failure_code
                )
            if transaction:
                break

        recorded_id = event.metadata.get("transaction_id", "")
        if transaction is None and recorded_id.isdigit():
            transaction = await self.payments.apply_charge_event(
                event.related_object_id or event.object_id,
                succeeded,
                event.failure_code,
                transaction_id=int(recorded_id),
            )

        if transaction is None or transaction.kind not in (
            TransactionKind.SUBSCRIPTION_CHARGE,
            TransactionKind.RETRY_ATTEMPT,
        ):
            return transaction is not None

        lock_key, token = await self._acquire_or_raise(transaction.subscription_id)
        try:
            subscription = await self._get_subscription(transaction.subscription_id)
            if subscription.period_key != transaction.period_key:
                return True

            invoice = await self.store.get_invoice_by_period_key(transaction.period_key)
            if succeeded:
                if subscription.status in (
                    SubscriptionStatus.CANCELLING,
                    SubscriptionStatus.CANCELLED,
                ) or subscription.status.can_transition_to(SubscriptionStatus.ACTIVE):
                    plan = await self._get_plan(subscription.plan_id)
                    await self._commit_payment(subscription, plan, invoice, transaction, now)
                elif transaction.status == TransactionStatus.COMPLETED:
                    logger.warning(
                        f"Late charge for {subscription.status.value} subscription "
                        f"{subscription.id}; refunding",
                        extra={"subscription_id": subscription.id, "transaction_id": transaction.id},
                    )
                    await self.payments.refund(
                        transaction, reason=f"subscription {subscription.status.value}"
                    )
            elif subscription.status in (
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.TRIALING,
                SubscriptionStatus.PAST_DUE,
            ):
                await self._commit_failure(
                    subscription, invoice, transaction.failure_reason, now
                )
            return True
        finally:
            await self.lock.release_lock(lock_key, token)

    async def _handle_invoice_paid(self, event: GatewayWebhookEvent, now: datetime) -> bool:
        if not event.object_id:
            return False

        invoice = await self.store.get_invoice_by_external_id(event.object_id)
        if invoice is None:
            logger.info(f"No invoice for gateway invoice {event.object_id}")
            return False
        if invoice.status != InvoiceStatus.OPEN:
            return True

        lock_key, token = await self._acquire_or_raise(invoice.subscription_id)
        try:
            subscription = await self._get_subscription(invoice.subscription_id)
            if (
                subscription.period_key == invoice.period_key
                and not subscription.status.is_terminal()
                and subscription.status != SubscriptionStatus.CANCELLING
            ):
                plan = await self._get_plan(subscription.plan_id)
                await self._commit_payment(subscription, plan, invoice, None, now)
            else:
                await self.invoices.mark_paid(invoice)
            return True
        finally:
            await self.lock.release_lock(lock_key, token)

    # Batches

    async def _run_batch(
        self,
        subscription_ids: list[int],
        operation: Callable[[int], Awaitable[RenewalOutcome]],
    ) -> BillingRunSummary:
        """
        Run operation per subscription as independent tasks, bounded by
        billing_max_concurrency. One subscription's failure never stops the
        others, and a subscription waiting out a retry backoff frees its slot.
        """
        summary = BillingRunSummary()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(subscription_id: int) -> None:
            async with semaphore:
                slot_token = _batch_slot.set(semaphore)
                try:
                    outcome = await operation(subscription_id)
                except Exception as e:
                    logger.error(
                        f"Billing operation failed for subscription {subscription_id}: {str(e)}",
                        extra={"subscription_id": subscription_id, "error": str(e)},
                        exc_info=True,
                    )
                    summary.record_error(subscription_id, e)
                    return
                finally:
                    _batch_slot.reset(slot_token)
                summary.record(outcome)

        await asyncio.gather(*(run_one(subscription_id) for subscription_id in subscription_ids))
        return summary

    # Outcomes

    def _skipped(self, subscription: Subscription, reason: str) -> RenewalOutcome:
        logger.debug(
            f"Skipping subscription {subscription.id}: {reason}",
            extra={"subscription_id": subscription.id},
        )
        return RenewalOutcome(
            subscription_id=subscription.id,
            outcome=RenewalOutcomeType.SKIPPED,
            status=subscription.status,
            reason=reason,
        )

    def _cancelled(
        self, subscription: Subscription, invoice_id: Optional[int] = None
    ) -> RenewalOutcome:
        return RenewalOutcome(
            subscription_id=subscription.id,
            outcome=RenewalOutcomeType.CANCELLED,
            status=subscription.status,
            invoice_id=invoice_id,
        )
