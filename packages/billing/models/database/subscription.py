"""
Database entity for subscriptions.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SubscriptionEntity(Base):
    """
    One contractual grant of a tier to a user.

    Rows are never deleted. A retired row keeps its terminal status
    (cancelled/expired) and is replaced by a fresh active row in the same
    transaction. The partial unique index below guarantees at most one active
    row per user at the storage level.
    """

    __tablename__ = "subscriptions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    # Weak reference - users live in the identity service
    user_id = Column(BigIntegerType, nullable=False, index=True)
    tier_id = Column(BigIntegerType, ForeignKey("tiers.id"), nullable=False)

    status = Column(String(20), nullable=False)  # active, cancelled, expired, suspended
    billing_cycle = Column(String(20), nullable=False)  # monthly, yearly
    payment_provider = Column(String(50), nullable=False)
    external_subscription_id = Column(String(255), nullable=True, index=True)
    payment_type = Column(
        String(20), nullable=False, default="recurring", server_default="recurring"
    )  # recurring, one_time

    is_recurring = Column(Boolean, nullable=False, default=False)
    cancel_at_period_end = Column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    cancellation_reason = Column(Text, nullable=True)
    cancellation_requested_at = Column(DateTime(timezone=True), nullable=True)

    # Quota period (always monthly-sized)
    period_start_date = Column(DateTime(timezone=True), nullable=False)
    period_end_date = Column(DateTime(timezone=True), nullable=False)
    # Contractual term, NULL = renews until cancelled
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)

    # Metered usage
    tokens_used_current_period = Column(
        BigIntegerType, nullable=False, default=0, server_default="0"
    )
    token_limit_override = Column(BigIntegerType, nullable=True)
    carryover_unlimited = Column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    resource_access_count_current_period = Column(
        Integer, nullable=False, default=0, server_default="0"
    )
    # Ordered least-recent first
    accessed_resource_ids = Column(JSON, nullable=False, default=list)

    selected_scope_ids = Column(JSON(none_as_null=True), nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1, server_default="1")

    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            "uq_subscriptions_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_subscription_status_period_end", "status", "period_end_date"),
        Index("idx_subscription_status_term_end", "status", "subscription_end_date"),
    )
