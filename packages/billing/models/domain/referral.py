"""
Domain models for the referral program.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ReferralCode(BaseModel):
    id: int
    user_id: int
    code: str
    points_balance: int = 0
    total_points_earned: int = 0
    total_points_redeemed: int = 0

    class Config:
        from_attributes = True


class Referral(BaseModel):
    id: int
    referrer_user_id: int
    referred_user_id: int
    referral_code: str
    times_awarded: int = 0
    total_points_awarded: int = 0
    last_awarded_at: Optional[datetime] = None

    class Config:
        from_attributes = True
