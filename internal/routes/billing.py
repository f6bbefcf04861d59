"""Internal billing operations.

Called by other backend services and the scheduler trigger, never by end
users: manual payment approvals and non-Stripe gateway adapters post
normalised payment events here, the identity service posts signups and
content services report token usage and opened resources.
"""

import secrets
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger
from packages.billing.models.domain.payment_event import PaymentEventCreateModel
from packages.billing.models.schemas.billing import (
    IngestResponse,
    LifecycleRunResponse,
    RecordResourceAccessRequest,
    RecordResourceAccessResponse,
    RecordUsageRequest,
    RecordUsageResponse,
    SubscriptionResponse,
)
from packages.billing.repositories.tier_repository import TierRepository
from packages.billing.services.lifecycle_service import LifecycleService
from packages.billing.services.payment_ingestion_service import PaymentIngestionService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


async def verify_internal_token(
    x_internal_token: Annotated[Optional[str], Header()] = None,
) -> None:
    if not settings.internal_api_token:
        return
    if not x_internal_token or not secrets.compare_digest(
        x_internal_token, settings.internal_api_token
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token"
        )


router = APIRouter(
    prefix="/internal/billing",
    tags=["internal"],
    dependencies=[Depends(verify_internal_token)],
)


@router.post("/payment-events", response_model=IngestResponse)
async def ingest_payment_event(event: PaymentEventCreateModel):
    """Ingest a completed payment. Safe to retry with the same external_event_id."""
    result = await PaymentIngestionService().ingest(event)
    return IngestResponse(**result.model_dump())


@router.post("/users/{user_id}/signup", response_model=SubscriptionResponse)
async def grant_signup_subscription(user_id: int):
    """Free-tier grant for a new user. Idempotent."""
    subscription = await SubscriptionService().ensure_free_subscription(user_id)
    tier = await TierRepository().get(subscription.tier_id)
    return SubscriptionResponse.from_domain(subscription, tier)


@router.post("/lifecycle/run", response_model=LifecycleRunResponse)
async def run_lifecycle():
    """Run the scheduler passes once, for cron triggers without a worker pod."""
    result = await LifecycleService().run_all()
    return LifecycleRunResponse(
        reset_count=result.reset_count,
        expired_count=result.expired_count,
        selections_cleared=result.selections_cleared,
    )


@router.post(
    "/subscriptions/{subscription_id}/usage", response_model=RecordUsageResponse
)
async def record_usage(subscription_id: int, request: RecordUsageRequest):
    """Add metered tokens to the current period. 429 once the limit would be passed."""
    quota = await QuotaService().record_usage(subscription_id, request.amount)
    return RecordUsageResponse(**quota.model_dump())


@router.post(
    "/subscriptions/{subscription_id}/resource-access",
    response_model=RecordResourceAccessResponse,
)
async def record_resource_access(
    subscription_id: int, request: RecordResourceAccessRequest
):
    """Mark a resource as opened, keeping the recent-access window current."""
    subscription = await QuotaService().record_resource_access(
        subscription_id, request.resource_id
    )
    return RecordResourceAccessResponse(
        subscription_id=subscription.id,
        accessed_resource_ids=subscription.accessed_resource_ids,
        resource_access_count_current_period=subscription.resource_access_count_current_period,
    )
