"""
Database entity for plans.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, JSON
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class PlanEntity(Base):
    """
    Plan database entity.

    Prices are integer minor currency units per billing cycle.
    """

    __tablename__ = "plans"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)
    billing_cycle = Column(String(20), nullable=False)  # monthly, quarterly, yearly

    # Metric name -> included quantity
    usage_limits = Column(JSON, nullable=False, default=dict)
    # Metrics billed on this plan
    metric_ids = Column(JSON, nullable=False, default=list)

    active = Column(Boolean, nullable=False, default=True, server_default="1")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
