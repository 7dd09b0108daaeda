"""
Database entities for usage metering.
"""

from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Integer,
    Numeric,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class UsageMetricEntity(Base):
    __tablename__ = "usage_metrics"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    aggregation_type = Column(String(20), nullable=False)  # sum, max, average, last

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UsageTierEntity(Base):
    """
    One band of a metric's pricing table.

    max_value NULL marks the open-ended last tier.
    """

    __tablename__ = "usage_tiers"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    metric_id = Column(
        BigIntegerType,
        ForeignKey("usage_metrics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    min = Column("min_value", Integer, nullable=False)
    max = Column("max_value", Integer, nullable=True)
    kind = Column(String(20), nullable=False)  # unit, flat, package
    unit_price = Column(Integer, nullable=True)
    flat_price = Column(Integer, nullable=True)
    package_size = Column(Integer, nullable=True)
    package_price = Column(Integer, nullable=True)

    __table_args__ = (Index("idx_usage_tier_metric_min", "metric_id", "min_value"),)


class UsageRecordEntity(Base):
    """
    Usage record database entity.

    Append-only. High volume table - partitioned by recorded_at in production.
    """

    __tablename__ = "usage_records"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    subscription_id = Column(
        BigIntegerType,
        ForeignKey("billing_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    metric_id = Column(
        BigIntegerType,
        ForeignKey("usage_metrics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    value = Column(Numeric(20, 6), nullable=False)
    timestamp = Column("recorded_at", DateTime(timezone=True), nullable=False)

    # Event-specific metadata (JSON for flexibility)
    record_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            "idx_usage_record_sub_metric_time",
            "subscription_id",
            "metric_id",
            "recorded_at",
        ),
    )
