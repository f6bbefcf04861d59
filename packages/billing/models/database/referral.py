"""
Database entities for the referral program.
"""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class ReferralCodeEntity(Base):
    """A user's shareable referral code and points balance."""

    __tablename__ = "referral_codes"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    user_id = Column(BigIntegerType, nullable=False, unique=True)
    code = Column(String(20), nullable=False, unique=True)

    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_earned = Column(
        Integer, nullable=False, default=0, server_default="0"
    )
    total_points_redeemed = Column(
        Integer, nullable=False, default=0, server_default="0"
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ReferralEntity(Base):
    """Referrer -> referred link. A user can be referred once."""

    __tablename__ = "referrals"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    referrer_user_id = Column(BigIntegerType, nullable=False, index=True)
    referred_user_id = Column(BigIntegerType, nullable=False, unique=True)
    referral_code = Column(String(20), nullable=False)

    times_awarded = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_awarded = Column(
        Integer, nullable=False, default=0, server_default="0"
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_awarded_at = Column(DateTime(timezone=True), nullable=True)
