"""
Database entity for subscriptions.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Integer, Boolean
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SubscriptionEntity(Base):
    """
    Subscription database entity.

    Every write goes through a compare-and-swap on version.
    """

    __tablename__ = "billing_subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(BigIntegerType, nullable=False, index=True)
    plan_id = Column(
        BigIntegerType,
        ForeignKey("plans.id"),
        nullable=False,
        index=True,
    )

    status = Column(
        String(50), nullable=False, index=True
    )  # trialing, active, past_due, cancelling, cancelled, unpaid, incomplete, expired

    # Billing cycle
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)

    # Payment collection
    payment_method_id = Column(String(255), nullable=True)
    fallback_payment_method_id = Column(String(255), nullable=True)
    external_customer_id = Column(String(255), nullable=True, index=True)
    tax_jurisdiction = Column(String(50), nullable=True)
    failed_payment_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_failure_reason = Column(String(50), nullable=True)
    failed_payment_method_id = Column(String(255), nullable=True)

    # Cancellation
    cancel_at_period_end = Column(
        Boolean, nullable=False, default=False, server_default="0"
    )
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1, server_default="1")

    # Standard timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_billing_subscription_status_period_end", "status", "current_period_end"),
    )
