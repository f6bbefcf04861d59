"""
Database entity for the payment event ledger.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class PaymentEventEntity(Base):
    """
    Every payment notification handed to the ingester, applied or rejected.

    ``external_event_id`` is the gateway's idempotency key; its unique
    constraint is what makes replays no-ops.
    """

    __tablename__ = "payment_events"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    external_event_id = Column(String(255), nullable=False, unique=True)
    provider = Column(String(50), nullable=False)

    user_id = Column(BigIntegerType, nullable=False, index=True)
    tier_id = Column(BigIntegerType, nullable=False)
    billing_cycle = Column(String(20), nullable=False)
    payment_type = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    coupon_code = Column(String(50), nullable=True)
    external_subscription_id = Column(String(255), nullable=True)

    # Processing outcome
    status = Column(String(20), nullable=False)  # applied, rejected
    rejection_reason = Column(Text, nullable=True)
    subscription_id = Column(
        BigIntegerType, ForeignKey("subscriptions.id"), nullable=True
    )
    final_amount = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
