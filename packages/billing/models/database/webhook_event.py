"""
Database entity for processed gateway webhook events.
"""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class ProcessedWebhookEventEntity(Base):
    """Gateway events already applied; deliveries are at-least-once."""

    __tablename__ = "processed_webhook_events"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    external_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
