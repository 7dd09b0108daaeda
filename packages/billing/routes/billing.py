"""
Billing API routes.

Internal endpoints used by the scheduler and operators to drive renewal,
dunning and subscription changes.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from common.core.exceptions import ConflictError, NotFoundError
from common.core.otel_axiom_exporter import get_logger
from packages.billing.exceptions import (
    BillingError,
    ConsistencyError,
    GatewayError,
    PaymentFailedError,
    SubscriptionBusyError,
    TaxComputationError,
    ValidationError,
)
from packages.billing.models.domain.results import BillingRunSummary, RenewalOutcome
from packages.billing.models.domain.subscription import (
    CancellationOptions,
    Subscription,
)
from packages.billing.models.domain.common import utcnow
from packages.billing.models.schemas.billing import (
    BillingRunResponse,
    CancelRequest,
    PaymentMethodRequest,
    PlanChangeRequest,
    PlanChangeResponse,
    RenewalOutcomeResponse,
    RunRequest,
    SubscriptionResponse,
    TransactionResponse,
    UsageRecordRequest,
    UsageRecordResponse,
)
from packages.billing.services.billing_cycle_service import BillingCycleOrchestrator

logger = get_logger(__name__)

router = APIRouter()


def get_billing_orchestrator() -> BillingCycleOrchestrator:
    return BillingCycleOrchestrator()


def _to_http_error(error: BillingError) -> HTTPException:
    """Map a billing error onto an HTTP status."""
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PaymentFailedError):
        code = status.HTTP_402_PAYMENT_REQUIRED
    elif isinstance(error, (SubscriptionBusyError, ConsistencyError, ConflictError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, (GatewayError, TaxComputationError)):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if code >= 500:
        logger.error(f"Billing request failed: {str(error)}")
    return HTTPException(status_code=code, detail=str(error))


def _subscription_response(subscription: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        owner_id=subscription.owner_id,
        plan_id=subscription.plan_id,
        status=subscription.status,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
        cancelled_at=subscription.cancelled_at,
        failed_payment_count=subscription.failed_payment_count,
        last_failure_reason=subscription.last_failure_reason,
        days_until_renewal=subscription.days_until_renewal(utcnow()),
        version=subscription.version,
    )


def _run_response(summary: BillingRunSummary) -> BillingRunResponse:
    return BillingRunResponse(**summary.model_dump())


def _outcome_response(outcome: RenewalOutcome) -> RenewalOutcomeResponse:
    return RenewalOutcomeResponse(
        **outcome.model_dump(exclude={"outcome"}), outcome=outcome.outcome.value
    )


# ============================================================================
# Runs
# ============================================================================


@router.post("/runs/renewals", response_model=BillingRunResponse)
async def run_renewals(
    request: RunRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    """Renew every subscription whose period ended before `now`."""
    summary = await orchestrator.renew_due(request.now)
    return _run_response(summary)


@router.post("/runs/dunning", response_model=BillingRunResponse)
async def run_dunning(
    request: RunRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    """Retry collection for every past-due subscription."""
    summary = await orchestrator.run_dunning_sweep(request.now)
    return _run_response(summary)


# ============================================================================
# Subscriptions
# ============================================================================


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: int,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    subscription = await orchestrator.store.get_subscription(subscription_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subscription {subscription_id} not found",
        )
    return _subscription_response(subscription)


@router.post(
    "/subscriptions/{subscription_id}/renew", response_model=RenewalOutcomeResponse
)
async def renew_subscription(
    subscription_id: int,
    request: RunRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    try:
        outcome = await orchestrator.renew(subscription_id, request.now)
    except BillingError as e:
        raise _to_http_error(e)
    return _outcome_response(outcome)


@router.post(
    "/subscriptions/{subscription_id}/plan", response_model=PlanChangeResponse
)
async def change_plan(
    subscription_id: int,
    request: PlanChangeRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    """
    Switch to another plan mid-period.

    The prorated difference is charged before the plan changes; a failed
    charge answers 402 and leaves the subscription untouched.
    """
    try:
        outcome = await orchestrator.apply_plan_change(
            subscription_id, request.new_plan_id, request.now
        )
    except BillingError as e:
        raise _to_http_error(e)

    return PlanChangeResponse(
        subscription=_subscription_response(outcome.subscription),
        credit=outcome.proration.credit,
        amount_due=outcome.proration.amount_due,
        over_credit=outcome.proration.over_credit,
        remaining_days=outcome.proration.remaining_days,
        days_in_period=outcome.proration.days_in_period,
        transaction_id=outcome.transaction_id,
        credit_charge_id=outcome.credit_charge_id,
    )


@router.post(
    "/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse
)
async def cancel_subscription(
    subscription_id: int,
    request: CancelRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    try:
        subscription = await orchestrator.cancel(
            subscription_id,
            CancellationOptions(immediate=request.immediate, reason=request.reason),
        )
    except BillingError as e:
        raise _to_http_error(e)
    return _subscription_response(subscription)


@router.put(
    "/subscriptions/{subscription_id}/payment-method",
    response_model=SubscriptionResponse,
)
async def update_payment_method(
    subscription_id: int,
    request: PaymentMethodRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    try:
        subscription = await orchestrator.update_payment_method(
            subscription_id,
            request.payment_method_id,
            request.fallback_payment_method_id,
        )
    except BillingError as e:
        raise _to_http_error(e)
    return _subscription_response(subscription)


@router.post(
    "/subscriptions/{subscription_id}/usage",
    response_model=UsageRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_usage(
    subscription_id: int,
    request: UsageRecordRequest,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    try:
        record = await orchestrator.record_usage(
            subscription_id,
            request.metric_id,
            request.value,
            timestamp=request.timestamp,
            metadata=request.metadata,
        )
    except BillingError as e:
        raise _to_http_error(e)

    return UsageRecordResponse(
        id=record.id,
        subscription_id=record.subscription_id,
        metric_id=record.metric_id,
        value=record.value,
        timestamp=record.timestamp,
    )


@router.get(
    "/subscriptions/{subscription_id}/transactions",
    response_model=list[TransactionResponse],
)
async def list_transactions(
    subscription_id: int,
    orchestrator: BillingCycleOrchestrator = Depends(get_billing_orchestrator),
):
    transactions = await orchestrator.store.list_transactions(subscription_id)
    return [
        TransactionResponse(
            **transaction.model_dump(exclude={"related_transaction_id", "updated_at"})
        )
        for transaction in transactions
    ]
