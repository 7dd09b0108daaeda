"""
Database entity for payment transactions.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Integer
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class TransactionEntity(Base):
    """
    Payment transaction database entity.

    idempotency_key is the key sent to the gateway, so a retried write
    can never record the same attempt twice.
    """

    __tablename__ = "billing_transactions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("billing_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)  # pending, completed, failed
    kind = Column(
        String(30), nullable=False
    )  # subscription_charge, retry_attempt, refund, proration_charge
    idempotency_key = Column(String(255), nullable=False, unique=True)
    period_key = Column(String(255), nullable=True)
    related_transaction_id = Column(
        BigIntegerType,
        ForeignKey("billing_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )
    invoice_id = Column(
        BigIntegerType, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )
    external_id = Column(String(255), nullable=True, index=True)
    payment_method_id = Column(String(255), nullable=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    failure_reason = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_transaction_sub_period_status", "subscription_id", "period_key", "status"),
    )
