"""
API schemas for billing operations.

Request and response models for billing endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentEventStatus,
    PaymentProvider,
    SubscriptionStatus,
)
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.tier import Tier


# ============================================================================
# Subscription Schemas
# ============================================================================


class SubscriptionResponse(BaseModel):
    """Current subscription, period and term."""

    id: int
    tier_id: int
    tier_name: str
    status: SubscriptionStatus
    has_access: bool = Field(..., description="Whether the user has product access")
    billing_cycle: BillingCycle
    payment_provider: PaymentProvider
    is_recurring: bool
    cancel_at_period_end: bool
    cancellation_effective_date: Optional[datetime] = Field(
        default=None, description="When a scheduled cancellation takes effect"
    )
    period_start_date: datetime
    period_end_date: datetime
    subscription_end_date: Optional[datetime] = None
    selected_scope_ids: Optional[List[str]] = None

    @classmethod
    def from_domain(cls, subscription: Subscription, tier: Tier) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            tier_id=tier.id,
            tier_name=tier.name,
            status=subscription.status,
            has_access=subscription.has_access(),
            billing_cycle=subscription.billing_cycle,
            payment_provider=subscription.payment_provider,
            is_recurring=subscription.is_recurring,
            cancel_at_period_end=subscription.cancel_at_period_end,
            cancellation_effective_date=(
                subscription.cancellation_effective_date()
                if subscription.cancel_at_period_end
                else None
            ),
            period_start_date=subscription.period_start_date,
            period_end_date=subscription.period_end_date,
            subscription_end_date=subscription.subscription_end_date,
            selected_scope_ids=subscription.selected_scope_ids,
        )


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ScopeSelectionRequest(BaseModel):
    scope_ids: List[str] = Field(..., min_length=1)


# ============================================================================
# Quota & Access Schemas
# ============================================================================


class QuotaResponse(BaseModel):
    """Token quota for the current period. ``limit``/``remaining`` null = unlimited."""

    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    period_end_date: datetime


class AccessCheckResponse(BaseModel):
    resource_id: str
    allowed: bool


# ============================================================================
# Coupon Schemas
# ============================================================================


class CouponValidationRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    tier_id: int
    billing_cycle: BillingCycle


class CouponValidationResponse(BaseModel):
    valid: bool
    discount_percentage: int = 0
    error_reason: Optional[str] = None


# ============================================================================
# Plans Schemas
# ============================================================================


class PlanResponse(BaseModel):
    """Public view of a tier."""

    id: int
    name: str
    display_name: str
    display_order: int
    monthly_price: Decimal
    yearly_price: Decimal
    token_limit: Optional[int] = Field(default=None, description="null = unlimited")
    resource_access_limit: Optional[int] = Field(
        default=None, description="null = unlimited"
    )
    requires_scope_selection: bool
    max_scope_selections: Optional[int] = None
    referral_points_cost: Optional[int] = None

    class Config:
        from_attributes = True


class PlansResponse(BaseModel):
    plans: List[PlanResponse]


# ============================================================================
# Referral Schemas
# ============================================================================


class ReferralCodeResponse(BaseModel):
    code: str
    points_balance: int
    total_points_earned: int
    total_points_redeemed: int


class ApplyReferralRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)


class ApplyReferralResponse(BaseModel):
    referrer_user_id: int


class RedeemPointsRequest(BaseModel):
    tier_id: int


# ============================================================================
# Usage Schemas
# ============================================================================


class RecordUsageRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Tokens consumed by the request")


class RecordUsageResponse(BaseModel):
    """Quota left after the usage was recorded. ``limit``/``remaining`` null = unlimited."""

    subscription_id: int
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None


class RecordResourceAccessRequest(BaseModel):
    resource_id: str = Field(..., min_length=1, max_length=255)


class RecordResourceAccessResponse(BaseModel):
    subscription_id: int
    accessed_resource_ids: List[str]
    resource_access_count_current_period: int


# ============================================================================
# Ingest Schemas
# ============================================================================


class IngestResponse(BaseModel):
    """Outcome of a payment event ingest."""

    subscription_id: Optional[int] = None
    applied: bool
    status: PaymentEventStatus
    reason: Optional[str] = None
    final_amount: Optional[Decimal] = None


class LifecycleRunResponse(BaseModel):
    reset_count: int
    expired_count: int
    selections_cleared: int = 0
