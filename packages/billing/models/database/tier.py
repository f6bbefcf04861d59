"""
Database entity for the tier catalog.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class TierEntity(Base):
    """
    Pricing tier catalog entry.

    Rows are seeded by migration and treated as immutable. ``display_order``
    is the rank that defines upgrade vs downgrade.
    """

    __tablename__ = "tiers"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    display_order = Column(Integer, nullable=False, unique=True)

    monthly_price = Column(Numeric(10, 2), nullable=False, default=0)
    yearly_price = Column(Numeric(10, 2), nullable=False, default=0)

    # NULL = unlimited
    token_limit = Column(BigIntegerType, nullable=True)
    # NULL = unlimited; a bound means "most recently accessed N" resources
    resource_access_limit = Column(Integer, nullable=True)

    # Grade/subject scoping
    requires_scope_selection = Column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    max_scope_selections = Column(Integer, nullable=True)

    referral_points_awarded = Column(
        Integer, nullable=False, default=0, server_default="0"
    )
    referral_points_cost = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
