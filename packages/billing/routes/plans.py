"""
Plans API routes.

Public endpoint for retrieving available subscription plans.
"""

from fastapi import APIRouter

from packages.billing.models.schemas.billing import PlanResponse, PlansResponse
from packages.billing.repositories.tier_repository import TierRepository

router = APIRouter()


@router.get("", response_model=PlansResponse)
async def get_plans():
    """
    Get all available subscription plans.

    Returns prices and limits for each active tier, in display order.
    This endpoint is public (no auth required) for pricing pages.
    """
    tiers = await TierRepository().list_active()
    return PlansResponse(plans=[PlanResponse.model_validate(tier) for tier in tiers])
