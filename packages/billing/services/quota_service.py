"""
QuotaManager: metered token usage, the recent-resource window and the
monthly period reset.
"""

from datetime import datetime
from typing import Optional

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.context import readonly
from common.db.scoped import ensure_transaction
from packages.billing.calculations import (
    effective_limit,
    next_period,
    remaining_tokens,
    touch_recent,
)
from packages.billing.clock import utcnow
from packages.billing.exceptions import (
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from packages.billing.models.domain.enums import SubscriptionEvent
from packages.billing.models.domain.quota import EffectiveQuota, RemainingQuota
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.tier import Tier
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.tier_repository import TierRepository

logger = get_logger(__name__)


def quota_for(subscription: Subscription, tier: Tier) -> EffectiveQuota:
    """Effective token quota of a subscription on its tier."""
    limit = effective_limit(
        tier.token_limit,
        subscription.token_limit_override,
        subscription.carryover_unlimited,
    )
    used = subscription.tokens_used_current_period
    return EffectiveQuota(used=used, limit=limit, remaining=remaining_tokens(limit, used))


class QuotaService:
    """Usage recording and period resets for active subscriptions."""

    def __init__(self):
        self.subscription_repo = SubscriptionRepository()
        self.tier_repo = TierRepository()

    async def _load(self, subscription_id: int) -> tuple[Subscription, Tier]:
        subscription = await self.subscription_repo.get(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                reason="subscription_not_found",
            )
        tier = await self.tier_repo.get(subscription.tier_id)
        if tier is None:
            raise NotFoundError(
                f"Tier {subscription.tier_id} not found", reason="tier_not_found"
            )
        return subscription, tier

    @trace_span
    async def record_usage(self, subscription_id: int, amount: int) -> RemainingQuota:
        """
        Add ``amount`` tokens to the current period.

        The limit check and the increment are one guarded UPDATE, so two
        concurrent calls can never both squeeze past the limit.
        """
        if amount <= 0:
            raise ValidationError(
                f"Usage amount must be positive, got {amount}", reason="invalid_amount"
            )

        async with ensure_transaction():
            recorded = await self.subscription_repo.increment_tokens_guarded(
                subscription_id, amount
            )
            subscription, tier = await self._load(subscription_id)

        if not recorded:
            if not subscription.has_access():
                raise ValidationError(
                    f"Subscription {subscription_id} is {subscription.status.value}",
                    reason="subscription_inactive",
                )
            quota = quota_for(subscription, tier)
            logger.info(
                f"Token limit reached for subscription {subscription_id}",
                extra={
                    "subscription_id": subscription_id,
                    "user_id": subscription.user_id,
                    "requested": amount,
                    "used": quota.used,
                    "limit": quota.limit,
                },
            )
            raise QuotaExceededError(
                f"Recording {amount} tokens would exceed the limit of {quota.limit}",
                reason="token_limit_reached",
            )

        quota = quota_for(subscription, tier)
        return RemainingQuota(subscription_id=subscription_id, **quota.model_dump())

    @trace_span
    async def record_resource_access(
        self, subscription_id: int, resource_id: str
    ) -> Subscription:
        """
        Mark a resource as accessed.

        On tiers with a recent-access window the list is an LRU of size
        ``resource_access_limit``: re-access moves the entry to most recent,
        a new resource evicts the least recent one once the window is full.
        """
        async with ensure_transaction():
            subscription, tier = await self._load(subscription_id)
            if not subscription.has_access():
                raise ValidationError(
                    f"Subscription {subscription_id} is {subscription.status.value}",
                    reason="subscription_inactive",
                )
            if not tier.uses_recent_access_window():
                return subscription

            window, is_new = touch_recent(
                subscription.accessed_resource_ids,
                resource_id,
                tier.resource_access_limit,
            )
            if window == subscription.accessed_resource_ids:
                return subscription

            changes = {"accessed_resource_ids": window}
            if is_new:
                changes["resource_access_count_current_period"] = (
                    subscription.resource_access_count_current_period + 1
                )
            return await self.subscription_repo.transition(
                subscription_id,
                SubscriptionEvent.RECORD_ACCESS,
                subscription.version,
                **changes,
            )

    @trace_span
    async def reset_period(
        self, subscription_id: int, now: Optional[datetime] = None
    ) -> Subscription:
        """
        Zero the period's usage and open the next quota period.

        The new period is advanced from the previous period end, not from
        ``now``, and clamped to the term. A row whose period has not ended is
        returned unchanged, so repeated calls are harmless.
        """
        now = now or utcnow()
        async with ensure_transaction():
            subscription, _ = await self._load(subscription_id)
            if subscription.period_end_date >= now:
                return subscription

            start, end = next_period(
                subscription.period_end_date, now, subscription.subscription_end_date
            )
            updated = await self.subscription_repo.transition(
                subscription_id,
                SubscriptionEvent.RESET_PERIOD,
                subscription.version,
                tokens_used_current_period=0,
                token_limit_override=None,
                carryover_unlimited=False,
                resource_access_count_current_period=0,
                accessed_resource_ids=[],
                period_start_date=start,
                period_end_date=end,
            )

        logger.info(
            f"Reset quota period for subscription {subscription_id}",
            extra={
                "subscription_id": subscription_id,
                "user_id": updated.user_id,
                "period_start_date": start.isoformat(),
                "period_end_date": end.isoformat(),
            },
        )
        return updated

    @trace_span
    @readonly
    async def get_effective_quota(self, user_id: int) -> EffectiveQuota:
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            raise NotFoundError(
                f"No active subscription for user {user_id}",
                reason="subscription_not_found",
            )
        tier = await self.tier_repo.get(subscription.tier_id)
        return quota_for(subscription, tier)
