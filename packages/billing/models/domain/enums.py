"""
Billing enums - strongly typed enumerations for subscription and billing states.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle.

    Flow: trialing -> active -> past_due -> unpaid/cancelled
          active/past_due -> cancelling -> cancelled
          unpaid -> active (late successful charge)
    """

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"  # Renewal charge failed, dunning in progress
    CANCELLING = "cancelling"  # Cancels at period end
    CANCELLED = "cancelled"  # Terminal
    UNPAID = "unpaid"  # Dunning exhausted
    INCOMPLETE = "incomplete"  # Signup payment never completed
    EXPIRED = "expired"  # Incomplete signup expired

    def can_transition_to(self, target: "SubscriptionStatus") -> bool:
        """Check the lifecycle allows moving from this status to target."""
        if self == SubscriptionStatus.CANCELLED:
            return False
        if target in (SubscriptionStatus.CANCELLING, SubscriptionStatus.CANCELLED):
            return True
        return target in _TRANSITIONS[self]

    def is_renewable(self) -> bool:
        """Check if the renewal tick should bill this status."""
        return self in (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE)

    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


_TRANSITIONS = {
    SubscriptionStatus.TRIALING: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
    },
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
    },
    SubscriptionStatus.PAST_DUE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.UNPAID,
    },
    SubscriptionStatus.CANCELLING: set(),
    SubscriptionStatus.UNPAID: {SubscriptionStatus.ACTIVE},
    SubscriptionStatus.INCOMPLETE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.EXPIRED,
    },
    SubscriptionStatus.EXPIRED: set(),
}


class BillingCycle(str, Enum):
    """Plan billing cycles."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {
            BillingCycle.MONTHLY: 1,
            BillingCycle.QUARTERLY: 3,
            BillingCycle.YEARLY: 12,
        }[self]

    @property
    def nominal_days(self) -> int:
        """Days used to pro-rate one cycle."""
        return {
            BillingCycle.MONTHLY: 30,
            BillingCycle.QUARTERLY: 90,
            BillingCycle.YEARLY: 365,
        }[self]


class AggregationType(str, Enum):
    """How a metric's usage records collapse into one billable quantity."""

    SUM = "sum"
    MAX = "max"
    AVERAGE = "average"
    LAST = "last"


class TierKind(str, Enum):
    """Pricing rule of a usage tier."""

    UNIT = "unit"  # usage * unit_price
    FLAT = "flat"  # flat_price for any non-zero occupancy
    PACKAGE = "package"  # ceil(usage / package_size) * package_price


class OverflowPolicy(str, Enum):
    """What to do with usage above the last tier's max."""

    EXTEND_LAST_TIER = "extend_last_tier"
    REJECT = "reject"


class InvoiceStatus(str, Enum):
    """Invoice payment status."""

    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"


class InvoiceItemKind(str, Enum):
    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    ONE_TIME = "one_time"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionKind(str, Enum):
    SUBSCRIPTION_CHARGE = "subscription_charge"
    RETRY_ATTEMPT = "retry_attempt"
    REFUND = "refund"
    PRORATION_CHARGE = "proration_charge"


class FailureClass(str, Enum):
    """Closed taxonomy of payment failures; each maps to one retry policy."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    CARD_EXPIRED = "card_expired"
    NETWORK_ERROR = "network_error"
    GENERIC = "generic"


class ChargePurpose(str, Enum):
    """Why a charge is attempted; part of every gateway idempotency key."""

    RENEWAL = "renewal"
    DUNNING = "dunning"
    PLAN_CHANGE = "plan_change"
