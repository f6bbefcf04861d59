"""
Domain models for coupons.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from packages.billing.clock import as_utc


class CouponCode(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_percentage: int
    valid_from: datetime
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None
    current_uses: int = 0
    is_active: bool = True
    applicable_tier_ids: List[int] = Field(default_factory=list)
    applicable_billing_cycles: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @field_validator("valid_from", "valid_until", mode="after")
    @classmethod
    def ensure_utc(cls, v):
        return as_utc(v)

    @field_validator("applicable_tier_ids", "applicable_billing_cycles", mode="before")
    @classmethod
    def default_list(cls, v):
        return v or []


class CouponCodeCreateModel(BaseModel):
    """Operator-facing coupon definition."""

    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    discount_percentage: int = Field(..., ge=1, le=100)
    valid_from: datetime
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True
    applicable_tier_ids: List[int] = Field(default_factory=list)
    applicable_billing_cycles: List[str] = Field(default_factory=list)

    @field_validator("code", mode="after")
    @classmethod
    def normalise_code(cls, v: str) -> str:
        return v.strip().upper()


class CouponUsage(BaseModel):
    id: int
    coupon_id: int
    payment_event_id: int
    user_id: Optional[int] = None
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    currency: Optional[str] = None

    class Config:
        from_attributes = True


class CouponValidation(BaseModel):
    """Result of a coupon check. ``error_reason`` is set when ``valid`` is False."""

    valid: bool
    coupon_id: Optional[int] = None
    discount_percentage: int = 0
    error_reason: Optional[str] = None
