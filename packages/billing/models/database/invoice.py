"""
Database entities for invoices and one-time charges.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Integer, JSON, text
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class InvoiceEntity(Base):
    """
    Invoice database entity.

    period_key is unique among non-void invoices.
    """

    __tablename__ = "invoices"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("billing_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period_key = Column(String(255), nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)

    items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Integer, nullable=False)
    tax = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)
    amount_due = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, index=True)  # draft, open, paid, void
    external_invoice_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_invoice_period_key_active",
            "period_key",
            unique=True,
            postgresql_where=text("status != 'void'"),
            sqlite_where=text("status != 'void'"),
        ),
    )


class OneTimeChargeEntity(Base):
    """Ad-hoc charge or credit, linked to an invoice once billed."""

    __tablename__ = "one_time_charges"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("billing_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)
    invoice_id = Column(
        BigIntegerType, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_one_time_charge_pending", "subscription_id", "invoice_id"),
    )
