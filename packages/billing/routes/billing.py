"""
Billing API routes.

Protected endpoints for the caller's own subscription, quota, coupons,
content access and referrals.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from common.providers.rate_limiter.limiter import limiter
from packages.auth.dependencies import get_current_active_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.schemas.billing import (
    AccessCheckResponse,
    ApplyReferralRequest,
    ApplyReferralResponse,
    CancelSubscriptionRequest,
    CouponValidationRequest,
    CouponValidationResponse,
    IngestResponse,
    QuotaResponse,
    RedeemPointsRequest,
    ReferralCodeResponse,
    ScopeSelectionRequest,
    SubscriptionResponse,
)
from packages.billing.repositories.tier_repository import TierRepository
from packages.billing.services.access_policy_service import AccessPolicyService
from packages.billing.services.coupon_service import CouponService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.referral_service import ReferralService
from packages.billing.services.subscription_service import SubscriptionService

router = APIRouter()


async def _to_response(subscription: Subscription) -> SubscriptionResponse:
    tier = await TierRepository().get(subscription.tier_id)
    return SubscriptionResponse.from_domain(subscription, tier)


# ============================================================================
# Subscription
# ============================================================================


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    """
    Current active subscription.

    Users without one (signed up before billing existed, or a missed
    signup hook) are granted the Free tier on first read.
    """
    subscription = await SubscriptionService().ensure_free_subscription(
        current_user.user_id
    )
    return await _to_response(subscription)


@router.post("/subscription/cancel", response_model=SubscriptionResponse)
@limiter.limit("10/minute")
async def cancel_subscription(
    request: Request,
    body: CancelSubscriptionRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    """Schedule cancellation at the end of the paid period or term."""
    subscription = await SubscriptionService().cancel_at_period_end(
        current_user.user_id, body.reason
    )
    return await _to_response(subscription)


@router.post("/subscription/reactivate", response_model=SubscriptionResponse)
@limiter.limit("10/minute")
async def reactivate_subscription(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    subscription = await SubscriptionService().reactivate(current_user.user_id)
    return await _to_response(subscription)


@router.put("/subscription/selection", response_model=SubscriptionResponse)
async def set_scope_selection(
    body: ScopeSelectionRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    """Pick the grades/subjects a scoped tier covers. Write-once per subscription."""
    subscription = await SubscriptionService().update_selection(
        current_user.user_id, body.scope_ids
    )
    return await _to_response(subscription)


# ============================================================================
# Quota & Access
# ============================================================================


@router.get("/quota", response_model=QuotaResponse)
async def get_quota(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    subscription_service = SubscriptionService()
    subscription = await subscription_service.ensure_free_subscription(
        current_user.user_id
    )
    quota = await QuotaService().get_effective_quota(current_user.user_id)
    return QuotaResponse(
        used=quota.used,
        limit=quota.limit,
        remaining=quota.remaining,
        period_end_date=subscription.period_end_date,
    )


@router.get("/access/{resource_id}", response_model=AccessCheckResponse)
async def check_access(
    resource_id: str,
    scope_ids: Optional[List[str]] = Query(default=None),
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    """Whether the caller may open a resource. ``scope_ids`` are the resource's scopes."""
    allowed = await AccessPolicyService().can_access_resource(
        current_user.user_id, resource_id, scope_ids
    )
    return AccessCheckResponse(resource_id=resource_id, allowed=allowed)


# ============================================================================
# Coupons
# ============================================================================


@router.post("/coupons/validate", response_model=CouponValidationResponse)
@limiter.limit("20/minute")
async def validate_coupon(
    request: Request,
    body: CouponValidationRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    """Check a coupon at checkout. Nothing is reserved."""
    validation = await CouponService().validate_coupon(
        body.code, body.tier_id, body.billing_cycle, current_user.user_id
    )
    return CouponValidationResponse(
        valid=validation.valid,
        discount_percentage=validation.discount_percentage,
        error_reason=validation.error_reason,
    )


# ============================================================================
# Referrals
# ============================================================================


@router.get("/referrals/code", response_model=ReferralCodeResponse)
async def get_referral_code(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    code = await ReferralService().get_or_create_code(current_user.user_id)
    return ReferralCodeResponse(
        code=code.code,
        points_balance=code.points_balance,
        total_points_earned=code.total_points_earned,
        total_points_redeemed=code.total_points_redeemed,
    )


@router.post("/referrals/apply", response_model=ApplyReferralResponse)
@limiter.limit("5/minute")
async def apply_referral_code(
    request: Request,
    body: ApplyReferralRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    referral = await ReferralService().apply_referral_code(
        current_user.user_id, body.code
    )
    return ApplyReferralResponse(referrer_user_id=referral.referrer_user_id)


@router.post("/referrals/redeem", response_model=IngestResponse)
@limiter.limit("5/minute")
async def redeem_points(
    request: Request,
    body: RedeemPointsRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
):
    """Spend referral points on a month of a tier."""
    result = await ReferralService().redeem_points(current_user.user_id, body.tier_id)
    return IngestResponse(**result.model_dump())
