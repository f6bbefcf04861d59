"""
Service for user-facing subscription management: the Free-tier grant,
cancellation at period end, reactivation and scope selection.
"""

from datetime import datetime
from typing import List, Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.scoped import ensure_transaction
from packages.billing.calculations import ONE_MONTH, is_recurring_grant
from packages.billing.clock import utcnow
from packages.billing.exceptions import NotFoundError, ValidationError
from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentProvider,
    SubscriptionEvent,
    SubscriptionStatus,
)
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.models.domain.tier import Tier
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.tier_repository import TierRepository

logger = get_logger(__name__)


class SubscriptionService:
    """Service for subscription self-service."""

    def __init__(self):
        self.subscription_repo = SubscriptionRepository()
        self.tier_repo = TierRepository()

    async def get_free_tier(self) -> Tier:
        tier = await self.tier_repo.get_by_name(settings.free_tier_name)
        if tier is None:
            raise NotFoundError(
                f"Free tier {settings.free_tier_name!r} is not configured",
                reason="tier_not_found",
            )
        return tier

    async def _require_active(self, user_id: int) -> Subscription:
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            raise NotFoundError(
                f"No active subscription for user {user_id}",
                reason="subscription_not_found",
            )
        return subscription

    @trace_span
    async def grant_free_tier(
        self, user_id: int, now: Optional[datetime] = None
    ) -> Subscription:
        """
        Insert a fresh Free-tier row with zeroed quotas and a new monthly period.

        Free rows renew themselves: they are recurring with no term, so the
        scheduler refills them every period. Raises ``ConflictError`` when the
        user already has an active row.
        """
        now = now or utcnow()
        tier = await self.get_free_tier()
        subscription = await self.subscription_repo.create_active(
            SubscriptionCreateModel(
                user_id=user_id,
                tier_id=tier.id,
                billing_cycle=BillingCycle.MONTHLY,
                payment_provider=PaymentProvider.FREE,
                is_recurring=True,
                period_start_date=now,
                period_end_date=now + ONE_MONTH,
            )
        )
        logger.info(
            f"Granted free tier to user {user_id}",
            extra={"user_id": user_id, "subscription_id": subscription.id},
        )
        return subscription

    @trace_span
    async def ensure_free_subscription(self, user_id: int) -> Subscription:
        """The user's active subscription, granting Free if there is none. Idempotent."""
        async with ensure_transaction():
            await self.subscription_repo.acquire_user_lock(user_id)
            existing = await self.subscription_repo.get_active_by_user(user_id)
            if existing is not None:
                return existing
            return await self.grant_free_tier(user_id)

    @trace_span
    async def get_history(self, user_id: int) -> List[Subscription]:
        return await self.subscription_repo.list_by_user(user_id)

    @trace_span
    async def cancel_at_period_end(
        self, user_id: int, reason: Optional[str] = None
    ) -> Subscription:
        """
        Schedule cancellation. The row stays active until its effective end
        (term end for yearly, period end otherwise).

        Yearly rows stay recurring so the monthly refills continue through
        the prepaid term; other rows stop recurring.
        """
        async with ensure_transaction():
            await self.subscription_repo.acquire_user_lock(user_id)
            subscription = await self._require_active(user_id)

            if subscription.cancel_at_period_end:
                raise ValidationError(
                    "Subscription is already scheduled for cancellation",
                    reason="already_cancelling",
                )
            tier = await self.tier_repo.get(subscription.tier_id)
            if tier.name == settings.free_tier_name:
                raise ValidationError(
                    "The free tier cannot be cancelled",
                    reason="free_tier_not_cancellable",
                )

            updated = await self.subscription_repo.transition(
                subscription.id,
                SubscriptionEvent.REQUEST_CANCELLATION,
                subscription.version,
                cancel_at_period_end=True,
                cancellation_reason=reason,
                cancellation_requested_at=utcnow(),
                is_recurring=subscription.billing_cycle == BillingCycle.YEARLY,
            )

        logger.info(
            f"Subscription {updated.id} scheduled for cancellation",
            extra={
                "user_id": user_id,
                "subscription_id": updated.id,
                "effective_date": updated.cancellation_effective_date().isoformat(),
            },
        )
        return updated

    @trace_span
    async def cancel_external(
        self, external_subscription_id: str, reason: str
    ) -> Optional[Subscription]:
        """Cancellation initiated at the gateway for a provider-native subscription."""
        subscription = await self.subscription_repo.get_active_by_external_id(
            external_subscription_id
        )
        if subscription is None:
            return None
        if subscription.cancel_at_period_end:
            return subscription
        return await self.cancel_at_period_end(subscription.user_id, reason)

    @trace_span
    async def reactivate(self, user_id: int) -> Subscription:
        """
        Undo a scheduled cancellation.

        Also revives a cancelled row that has not reached its effective end
        yet, as long as no other row has taken its place.
        """
        now = utcnow()
        async with ensure_transaction():
            await self.subscription_repo.acquire_user_lock(user_id)
            subscription = await self.subscription_repo.get_active_by_user(user_id)

            if subscription is None:
                latest = await self.subscription_repo.get_latest_by_user(user_id)
                if (
                    latest is None
                    or latest.status != SubscriptionStatus.CANCELLED
                    or latest.cancellation_effective_date() <= now
                ):
                    raise NotFoundError(
                        f"No subscription to reactivate for user {user_id}",
                        reason="subscription_not_found",
                    )
                subscription = latest
            elif not subscription.cancel_at_period_end:
                raise ValidationError(
                    "Subscription is not scheduled for cancellation",
                    reason="not_scheduled_for_cancellation",
                )

            is_recurring = is_recurring_grant(
                subscription.billing_cycle, subscription.payment_type
            )
            updated = await self.subscription_repo.transition(
                subscription.id,
                SubscriptionEvent.REACTIVATE,
                subscription.version,
                cancel_at_period_end=False,
                cancellation_reason=None,
                cancellation_requested_at=None,
                is_recurring=is_recurring,
            )

        logger.info(
            f"Subscription {updated.id} reactivated",
            extra={"user_id": user_id, "subscription_id": updated.id},
        )
        return updated

    @trace_span
    async def update_selection(self, user_id: int, scope_ids: List[str]) -> Subscription:
        """
        Set the grade/subject scopes for a tier that requires them.

        The selection is write-once for the life of the row; only a tier
        change opens it again.
        """
        unique_scope_ids = list(dict.fromkeys(scope_ids))
        async with ensure_transaction():
            await self.subscription_repo.acquire_user_lock(user_id)
            subscription = await self._require_active(user_id)
            tier = await self.tier_repo.get(subscription.tier_id)

            if not tier.requires_scope_selection:
                raise ValidationError(
                    f"Tier {tier.name} does not use scope selection",
                    reason="selection_not_required",
                )
            if subscription.selected_scope_ids:
                raise ValidationError(
                    "Scope selection is already set for this subscription",
                    reason="selection_locked",
                )
            if not unique_scope_ids:
                raise ValidationError(
                    "At least one scope must be selected", reason="selection_required"
                )
            if (
                tier.max_scope_selections is not None
                and len(unique_scope_ids) > tier.max_scope_selections
            ):
                raise ValidationError(
                    f"Tier {tier.name} allows at most {tier.max_scope_selections} selections",
                    reason="too_many_selections",
                )

            return await self.subscription_repo.transition(
                subscription.id,
                SubscriptionEvent.UPDATE_SELECTION,
                subscription.version,
                selected_scope_ids=unique_scope_ids,
            )
