"""
Billing exceptions.

Pure computation errors abort an operation before any state is mutated;
gateway errors feed the retry state machine.
"""

from typing import Optional

from common.core.exceptions import AppException, ConflictError, NotFoundError
from common.core.exceptions import ValidationError as AppValidationError


class BillingError(AppException):
    """Base billing exception."""

    pass


class ValidationError(BillingError, AppValidationError):
    """Invalid input or configuration (tier tables, amounts, transitions)."""

    pass


class InvalidStateTransitionError(ValidationError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot transition subscription from {getattr(current, 'value', current)} "
            f"to {getattr(target, 'value', target)}"
        )


class PlanNotFoundError(BillingError, NotFoundError):
    pass


class SubscriptionNotFoundError(BillingError, NotFoundError):
    pass


class GatewayError(BillingError):
    """Payment gateway call failed."""

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class CardError(GatewayError):
    """The gateway declined the payment method."""

    def __init__(self, message: str, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message, retryable=False)


class ConsistencyError(BillingError, ConflictError):
    """Local state could not be reconciled with the gateway or a concurrent writer."""

    def __init__(
        self,
        message: str,
        period_key: Optional[str] = None,
        external_id: Optional[str] = None,
    ):
        self.period_key = period_key
        self.external_id = external_id
        super().__init__(message)


class StaleVersionError(ConsistencyError):
    """Subscription version changed since it was read."""

    def __init__(self, subscription_id: int, expected_version: int):
        self.subscription_id = subscription_id
        self.expected_version = expected_version
        super().__init__(
            f"Subscription {subscription_id} is no longer at version {expected_version}"
        )


class EmptyUsageError(BillingError):
    """No usage records to aggregate and no default supplied."""

    pass


class TaxComputationError(BillingError):
    pass


class PaymentFailedError(BillingError):
    """A charge reached terminal failure."""

    def __init__(self, message: str, failure_class=None):
        self.failure_class = failure_class
        super().__init__(message)


class SubscriptionBusyError(BillingError, ConflictError):
    """Another operation holds the subscription's lock."""

    pass
