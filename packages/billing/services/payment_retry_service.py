"""
Payment collection with failure classification, backoff and fallback.

Every gateway attempt is recorded as a Transaction keyed by the same
idempotency key sent to the gateway, so a crashed or repeated collection
replays recorded attempts instead of charging again.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import annotate_span, trace_span, get_logger
from packages.billing.exceptions import CardError, GatewayError, ValidationError
from packages.billing.models.domain.enums import (
    ChargePurpose,
    FailureClass,
    SubscriptionStatus,
    TransactionKind,
    TransactionStatus,
)
from packages.billing.models.domain.payments import (
    ChargeResult,
    ChargeStatus,
    CollectionResult,
    RetryPolicy,
)
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.transaction import (
    Transaction,
    TransactionCreateModel,
    TransactionUpdateModel,
)
from packages.billing.providers.payment.factory import get_payment_gateway
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.store.factory import get_billing_store
from packages.billing.providers.store.interface import BillingStoreInterface

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Gateway decline codes, normalized to lower case
_INSUFFICIENT_FUNDS_CODES = {"insufficient_funds", "card_velocity_exceeded"}
_CARD_EXPIRED_CODES = {"expired_card", "card_expired"}
_NETWORK_CODES = {"network_error", "processing_error", "timeout"}


def classify_failure_code(code: Optional[str]) -> FailureClass:
    """Map a gateway decline/failure code onto the failure taxonomy."""
    normalized = (code or "").lower()
    if normalized in _INSUFFICIENT_FUNDS_CODES:
        return FailureClass.INSUFFICIENT_FUNDS
    if normalized in _CARD_EXPIRED_CODES:
        return FailureClass.CARD_EXPIRED
    if normalized in _NETWORK_CODES:
        return FailureClass.NETWORK_ERROR
    return FailureClass.GENERIC


def classify_failure(error: Exception) -> FailureClass:
    """Map a charge error onto the failure taxonomy."""
    if isinstance(error, CardError):
        return classify_failure_code(error.reason)
    if isinstance(error, GatewayError):
        return FailureClass.NETWORK_ERROR if error.retryable else FailureClass.GENERIC
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return FailureClass.NETWORK_ERROR
    return FailureClass.GENERIC


def default_policies() -> dict[FailureClass, RetryPolicy]:
    """Retry policy table built from settings, one entry per failure class."""
    return {
        FailureClass.INSUFFICIENT_FUNDS: RetryPolicy(
            name="insufficient_funds",
            max_attempts=settings.retry_insufficient_funds_max_attempts,
            base_delay_seconds=settings.retry_insufficient_funds_base_delay_seconds,
            backoff_multiplier=settings.retry_insufficient_funds_backoff_multiplier,
            fallback_enabled=settings.retry_insufficient_funds_fallback_enabled,
        ),
        FailureClass.NETWORK_ERROR: RetryPolicy(
            name="network_error",
            max_attempts=settings.retry_network_error_max_attempts,
            base_delay_seconds=settings.retry_network_error_base_delay_seconds,
            backoff_multiplier=settings.retry_network_error_backoff_multiplier,
            fallback_enabled=settings.retry_network_error_fallback_enabled,
        ),
        FailureClass.GENERIC: RetryPolicy(
            name="conservative",
            max_attempts=settings.retry_generic_max_attempts,
            base_delay_seconds=settings.retry_generic_base_delay_seconds,
            backoff_multiplier=settings.retry_generic_backoff_multiplier,
            fallback_enabled=settings.retry_generic_fallback_enabled,
        ),
        FailureClass.CARD_EXPIRED: RetryPolicy(
            name="card_expired",
            max_attempts=1,
            base_delay_seconds=0,
            backoff_multiplier=1,
            fallback_enabled=settings.retry_card_expired_fallback_enabled,
            auto_retry=False,
        ),
    }


def retry_delay(policy: RetryPolicy, attempt: int) -> float:
    """Seconds to wait before attempt number `attempt` (the first runs at once)."""
    if attempt < 2:
        return 0.0
    return policy.base_delay_seconds * policy.backoff_multiplier ** (attempt - 2)


def charge_idempotency_key(
    subscription_id: int,
    period_key: str,
    purpose: ChargePurpose,
    attempt: int,
    sequence: Optional[int] = None,
    fallback: bool = False,
) -> str:
    """
    Gateway idempotency key of one charge attempt.

    sequence separates repeated collections for the same period and purpose
    (dunning rounds, successive plan changes).
    """
    scope = purpose.value if sequence is None else f"{purpose.value}-{sequence}"
    key = f"{subscription_id}:{period_key}:{scope}:{attempt}"
    return f"{key}:fallback" if fallback else key


class PaymentRetryCoordinator:
    """Service driving charges through classification, backoff and fallback."""

    def __init__(
        self,
        store: Optional[BillingStoreInterface] = None,
        gateway: Optional[PaymentGatewayInterface] = None,
        policies: Optional[dict[FailureClass, RetryPolicy]] = None,
    ):
        self.store = store or get_billing_store()
        self.gateway = gateway or get_payment_gateway()
        self.policies = policies or default_policies()

        missing = set(FailureClass) - set(self.policies)
        if missing:
            raise ValidationError(
                f"No retry policy for failure classes: {sorted(m.value for m in missing)}"
            )

    def policy_for(self, failure_class: FailureClass) -> RetryPolicy:
        return self.policies[failure_class]

    async def _attempt(
        self,
        subscription: Subscription,
        amount: int,
        idempotency_key: str,
        payment_method_id: str,
        attempt_number: int,
        kind: TransactionKind,
        period_key: Optional[str],
        invoice_id: Optional[int],
    ) -> tuple[Transaction, Optional[ChargeResult], Optional[FailureClass]]:
        """
        Run one gateway attempt and record it.

        Returns (transaction, charge result or None, failure class or None).
        A previously recorded attempt with the same key is replayed as-is,
        except an unsettled one, which is sent again under its key.
        """
        existing = await self.store.get_transaction_by_idempotency_key(idempotency_key)
        if existing and not existing.unsettled:
            logger.info(
                f"Replaying recorded attempt {idempotency_key} ({existing.status.value})",
                extra={"subscription_id": subscription.id, "transaction_id": existing.id},
            )
            if existing.status == TransactionStatus.FAILED:
                return existing, None, existing.failure_reason or FailureClass.GENERIC
            if existing.status == TransactionStatus.COMPLETED:
                return existing, ChargeResult(
                    status=ChargeStatus.SUCCEEDED, external_id=existing.external_id or ""
                ), None
            return existing, ChargeResult(
                status=ChargeStatus.PENDING, external_id=existing.external_id or ""
            ), None

        transaction = existing or await self.store.create_transaction(
            TransactionCreateModel(
                subscription_id=subscription.id,
                amount=amount,
                status=TransactionStatus.PENDING,
                kind=kind,
                idempotency_key=idempotency_key,
                period_key=period_key,
                invoice_id=invoice_id,
                payment_method_id=payment_method_id,
                attempt_number=attempt_number,
            )
        )
        return await self._send(subscription, transaction)

    async def _send(
        self, subscription: Subscription, transaction: Transaction
    ) -> tuple[Transaction, Optional[ChargeResult], Optional[FailureClass]]:
        """
        Send a recorded attempt to the gateway and store what came back.

        A retryable gateway error leaves the charge's outcome unknown: the
        row stays pending without an external id so the next try reuses its
        idempotency key, and a webhook can still settle it.
        """
        try:
            result = await self.gateway.create_charge(
                idempotency_key=transaction.idempotency_key,
                amount=transaction.amount,
                payment_method_id=transaction.payment_method_id,
                customer_id=subscription.external_customer_id,
                metadata={
                    "subscription_id": str(subscription.id),
                    "period_key": transaction.period_key or "",
                    "transaction_id": str(transaction.id),
                },
            )
        except GatewayError as e:
            failure_class = classify_failure(e)
            logger.warning(
                f"Charge attempt {transaction.attempt_number} failed: {failure_class.value}",
                extra={
                    "subscription_id": subscription.id,
                    "idempotency_key": transaction.idempotency_key,
                    "outcome_unknown": e.retryable,
                    "error": str(e),
                },
            )
            transaction = await self.store.update_transaction(
                transaction.id,
                TransactionUpdateModel(
                    status=(
                        TransactionStatus.PENDING if e.retryable else TransactionStatus.FAILED
                    ),
                    failure_reason=failure_class,
                ),
            )
            return transaction, None, failure_class

        if result.succeeded:
            update = TransactionUpdateModel(
                status=TransactionStatus.COMPLETED,
                external_id=result.external_id,
                failure_reason=None,
            )
        else:
            update = TransactionUpdateModel(
                external_id=result.external_id, failure_reason=None
            )
        transaction = await self.store.update_transaction(transaction.id, update)

        logger.info(
            f"Charge attempt {transaction.attempt_number} {result.status}",
            extra={
                "subscription_id": subscription.id,
                "transaction_id": transaction.id,
                "external_id": result.external_id,
            },
        )
        return transaction, result, None

    @trace_span
    async def collect(
        self,
        subscription: Subscription,
        amount: int,
        period_key: str,
        purpose: ChargePurpose = ChargePurpose.RENEWAL,
        invoice_id: Optional[int] = None,
        sequence: Optional[int] = None,
        sleep: Optional[Sleep] = None,
    ) -> CollectionResult:
        """
        Collect amount, retrying per the policy of each failure's class.

        Only a definite decline moves on to a new attempt number; a try whose
        outcome is unknown is repeated under the same idempotency key. After
        the policy's tries run out (or it does not auto-retry), one fallback
        attempt is made when the policy allows it, a distinct fallback method
        exists and no primary charge is left unsettled. A pending charge ends
        the chain; its outcome arrives by webhook.
        """
        sleep = sleep or asyncio.sleep
        annotate_span(subscription_id=subscription.id, purpose=purpose.value, amount=amount)

        if amount <= 0:
            return CollectionResult(succeeded=True)

        attempts: list[Transaction] = []
        delays: list[float] = []
        failure_class: Optional[FailureClass] = None
        attempt_number = 1
        tries = 1

        primary = subscription.payment_method_id
        if primary:
            while True:
                kind = (
                    TransactionKind.SUBSCRIPTION_CHARGE
                    if attempt_number == 1 and purpose == ChargePurpose.RENEWAL
                    else TransactionKind.RETRY_ATTEMPT
                )
                transaction, result, failure_class = await self._attempt(
                    subscription,
                    amount,
                    charge_idempotency_key(
                        subscription.id, period_key, purpose, attempt_number, sequence
                    ),
                    primary,
                    attempt_number,
                    kind,
                    period_key,
                    invoice_id,
                )
                if attempts and attempts[-1].id == transaction.id:
                    attempts[-1] = transaction
                else:
                    attempts.append(transaction)

                if result is not None:
                    return CollectionResult(
                        succeeded=result.succeeded,
                        pending=result.pending,
                        transaction=transaction,
                        attempts=attempts,
                        delays=delays,
                    )

                policy = self.policy_for(failure_class)
                if not policy.auto_retry or tries >= policy.max_attempts:
                    break

                tries += 1
                if not transaction.unsettled:
                    attempt_number += 1
                delay = retry_delay(policy, tries)
                delays.append(delay)
                logger.info(
                    f"Retrying charge in {delay}s (try {tries}/{policy.max_attempts}, "
                    f"attempt {attempt_number}, policy {policy.name})",
                    extra={"subscription_id": subscription.id},
                )
                await sleep(delay)
        else:
            logger.warning(
                f"Subscription {subscription.id} has no payment method",
                extra={"subscription_id": subscription.id},
            )
            failure_class = FailureClass.GENERIC

        used_fallback = False
        fallback = subscription.fallback_payment_method_id
        policy = self.policy_for(failure_class)
        unsettled = bool(attempts) and attempts[-1].unsettled
        if unsettled:
            logger.warning(
                f"Charge {attempts[-1].idempotency_key} left unsettled; no fallback attempt",
                extra={"subscription_id": subscription.id, "transaction_id": attempts[-1].id},
            )
        elif policy.fallback_enabled and fallback and fallback != primary:
            used_fallback = True
            attempt_number = attempt_number + 1 if attempts else 1
            transaction, result, fallback_failure = await self._attempt(
                subscription,
                amount,
                charge_idempotency_key(
                    subscription.id,
                    period_key,
                    purpose,
                    attempt_number,
                    sequence,
                    fallback=True,
                ),
                fallback,
                attempt_number,
                TransactionKind.RETRY_ATTEMPT,
                period_key,
                invoice_id,
            )
            attempts.append(transaction)

            if result is not None:
                return CollectionResult(
                    succeeded=result.succeeded,
                    pending=result.pending,
                    transaction=transaction,
                    attempts=attempts,
                    used_fallback=True,
                    delays=delays,
                )
            logger.warning(
                f"Fallback payment method failed: {fallback_failure.value}",
                extra={"subscription_id": subscription.id},
            )

        logger.warning(
            f"Collection failed for subscription {subscription.id}: {failure_class.value}",
            extra={"subscription_id": subscription.id, "attempts": len(attempts)},
        )
        return CollectionResult(
            succeeded=False,
            transaction=attempts[-1] if attempts else None,
            attempts=attempts,
            failure_class=failure_class,
            used_fallback=used_fallback,
            delays=delays,
        )

    @trace_span
    async def resolve_unsettled(
        self, subscription: Subscription, period_key: str
    ) -> Optional[CollectionResult]:
        """
        Send every unsettled charge of a period again under its own key.

        Returns the first result that took money, is awaiting the gateway or
        is still unanswered; None when every resend was declined or nothing
        for the period was in doubt.
        """
        transactions = await self.store.list_transactions(subscription.id)
        for transaction in reversed(transactions):
            if transaction.period_key != period_key or not transaction.unsettled:
                continue

            logger.info(
                f"Resending unsettled charge {transaction.idempotency_key}",
                extra={"subscription_id": subscription.id, "transaction_id": transaction.id},
            )
            transaction, result, failure_class = await self._send(
                subscription, transaction
            )
            if result is not None:
                return CollectionResult(
                    succeeded=result.succeeded,
                    pending=result.pending,
                    transaction=transaction,
                    attempts=[transaction],
                )
            if transaction.unsettled:
                return CollectionResult(
                    succeeded=False,
                    transaction=transaction,
                    attempts=[transaction],
                    failure_class=failure_class,
                )
        return None

    @trace_span
    async def charge_once(
        self,
        subscription: Subscription,
        amount: int,
        period_key: str,
        purpose: ChargePurpose = ChargePurpose.PLAN_CHANGE,
        sequence: Optional[int] = None,
    ) -> CollectionResult:
        """Single attempt on the primary method, no backoff or fallback."""
        if amount <= 0:
            return CollectionResult(succeeded=True)
        if not subscription.payment_method_id:
            return CollectionResult(succeeded=False, failure_class=FailureClass.GENERIC)

        transaction, result, failure_class = await self._attempt(
            subscription,
            amount,
            charge_idempotency_key(subscription.id, period_key, purpose, 1, sequence),
            subscription.payment_method_id,
            1,
            TransactionKind.PRORATION_CHARGE,
            period_key,
            None,
        )
        if result is None:
            return CollectionResult(
                succeeded=False,
                transaction=transaction,
                attempts=[transaction],
                failure_class=failure_class,
            )
        return CollectionResult(
            succeeded=result.succeeded,
            pending=result.pending,
            transaction=transaction,
            attempts=[transaction],
        )

    @trace_span
    async def refund(
        self,
        transaction: Transaction,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Transaction:
        """
        Refund a completed charge and record a negative refund transaction.

        Raises:
            ValidationError: Transaction is not a refundable completed charge
            GatewayError: The gateway refund failed
        """
        if transaction.status != TransactionStatus.COMPLETED or not transaction.external_id:
            raise ValidationError(f"Transaction {transaction.id} is not refundable")
        if transaction.kind == TransactionKind.REFUND:
            raise ValidationError(f"Transaction {transaction.id} is itself a refund")

        refund_amount = transaction.amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > transaction.amount:
            raise ValidationError(
                f"Refund amount {refund_amount} outside (0, {transaction.amount}]"
            )

        idempotency_key = f"{transaction.idempotency_key}:refund"
        existing = await self.store.get_transaction_by_idempotency_key(idempotency_key)
        if existing:
            return existing

        refund_id = await self.gateway.refund(
            transaction.external_id, refund_amount, idempotency_key
        )
        refund = await self.store.create_transaction(
            TransactionCreateModel(
                subscription_id=transaction.subscription_id,
                amount=-refund_amount,
                status=TransactionStatus.COMPLETED,
                kind=TransactionKind.REFUND,
                idempotency_key=idempotency_key,
                period_key=transaction.period_key,
                related_transaction_id=transaction.id,
                invoice_id=transaction.invoice_id,
                external_id=refund_id,
            )
        )

        logger.info(
            f"Refunded {refund_amount} of transaction {transaction.id}",
            extra={
                "subscription_id": transaction.subscription_id,
                "refund_transaction_id": refund.id,
                "reason": reason,
            },
        )
        return refund

    def record_failure(
        self, subscription: Subscription, failure_class: FailureClass
    ) -> SubscriptionUpdateModel:
        return SubscriptionUpdateModel(
            status=SubscriptionStatus.PAST_DUE,
            failed_payment_count=subscription.failed_payment_count + 1,
            last_failure_reason=failure_class,
            failed_payment_method_id=subscription.payment_method_id,
        )

    def record_success(self, subscription: Subscription) -> SubscriptionUpdateModel:
        return SubscriptionUpdateModel(
            status=SubscriptionStatus.ACTIVE,
            failed_payment_count=0,
            last_failure_reason=None,
            failed_payment_method_id=None,
        )

    @trace_span
    async def apply_charge_event(
        self,
        external_id: str,
        succeeded: bool,
        failure_code: Optional[str] = None,
        transaction_id: Optional[int] = None,
    ) -> Optional[Transaction]:
        """
        Settle a pending transaction from a gateway webhook.

        transaction_id comes from the charge metadata and finds an unsettled
        attempt whose gateway id was never recorded. Already-settled
        transactions are returned unchanged.
        """
        transaction = await self.store.get_transaction_by_external_id(external_id)
        if transaction is None and transaction_id is not None:
            candidate = await self.store.get_transaction(transaction_id)
            if candidate is not None and candidate.unsettled:
                transaction = candidate
        if transaction is None:
            logger.info(f"No transaction for gateway charge {external_id}")
            return None

        if transaction.status != TransactionStatus.PENDING:
            return transaction

        if succeeded:
            update = TransactionUpdateModel(
                status=TransactionStatus.COMPLETED, failure_reason=None
            )
        else:
            update = TransactionUpdateModel(
                status=TransactionStatus.FAILED,
                failure_reason=classify_failure_code(failure_code),
            )
        if not transaction.external_id:
            update.external_id = external_id

        updated = await self.store.update_transaction(transaction.id, update)
        logger.info(
            f"Transaction {transaction.id} settled by webhook: {updated.status.value}",
            extra={"transaction_id": transaction.id, "external_id": external_id},
        )
        return updated
