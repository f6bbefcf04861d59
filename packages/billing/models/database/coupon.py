"""
Database entities for coupon codes and their usages.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class CouponCodeEntity(Base):
    """Discount code. ``code`` is stored upper-case so lookups are case-insensitive."""

    __tablename__ = "coupon_codes"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    discount_percentage = Column(Integer, nullable=False)

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    max_uses = Column(Integer, nullable=True)  # NULL = unbounded
    current_uses = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")

    # Empty = applies to everything
    applicable_tier_ids = Column(JSON, nullable=False, default=list)
    applicable_billing_cycles = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "discount_percentage >= 1 AND discount_percentage <= 100",
            name="ck_coupon_discount_percentage",
        ),
    )


class CouponUsageEntity(Base):
    """One application of a coupon to one payment event."""

    __tablename__ = "coupon_usages"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    coupon_id = Column(
        BigIntegerType, ForeignKey("coupon_codes.id"), nullable=False, index=True
    )
    payment_event_id = Column(
        BigIntegerType, ForeignKey("payment_events.id"), nullable=False
    )
    user_id = Column(BigIntegerType, nullable=True)

    original_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "coupon_id", "payment_event_id", name="uq_coupon_usage_payment_event"
        ),
    )
