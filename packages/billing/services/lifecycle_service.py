"""
LifecycleScheduler: time-driven transitions.

Three passes, each idempotent and safe to overlap with another run:

1. reset - refill quota for recurring rows whose period has ended
2. expire - retire rows whose grant is over and hand each user a Free row
3. selection reset - clear scope selections on tiers that do not use them

Rows are claimed in batches with ``FOR UPDATE SKIP LOCKED``; a row another
run holds is simply left for the next run.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger, log_span_event, trace_span
from common.db.scoped import transaction
from packages.billing.clock import utcnow
from packages.billing.exceptions import ConflictError, ValidationError
from packages.billing.models.domain.enums import SubscriptionEvent
from packages.billing.models.domain.subscription import Subscription
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


@dataclass
class LifecycleRunResult:
    reset_count: int = 0
    expired_count: int = 0
    selections_cleared: int = 0


class LifecycleService:
    """Runs the scheduler passes."""

    def __init__(self, batch_size: Optional[int] = None):
        self.subscription_repo = SubscriptionRepository()
        self.quota_service = QuotaService()
        self.subscription_service = SubscriptionService()
        self.batch_size = batch_size or settings.scheduler_batch_size

    @trace_span
    async def run_all(self, now: Optional[datetime] = None) -> LifecycleRunResult:
        now = now or utcnow()
        result = LifecycleRunResult()

        result.reset_count = await self.run_reset_pass(now)
        result.expired_count = await self.run_expiration_pass(now)
        result.selections_cleared = await self.run_selection_reset_pass()

        logger.info(
            f"Lifecycle run complete: {result.reset_count} reset, {result.expired_count} expired",
            extra={
                "reset_count": result.reset_count,
                "expired_count": result.expired_count,
                "selections_cleared": result.selections_cleared,
                "run_at": now.isoformat(),
            },
        )
        return result

    @trace_span
    async def run_reset_pass(self, now: datetime) -> int:
        count = 0
        after_id = 0
        while True:
            async with transaction():
                batch = await self.subscription_repo.list_due_for_reset(
                    now, self.batch_size, after_id
                )
                for subscription in batch:
                    if await self._reset_one(subscription, now):
                        count += 1
            log_span_event("reset_batch", {"size": len(batch), "after_id": after_id})
            if len(batch) < self.batch_size:
                return count
            after_id = batch[-1].id

    async def _reset_one(self, subscription: Subscription, now: datetime) -> bool:
        try:
            await self.quota_service.reset_period(subscription.id, now)
        except (ConflictError, ValidationError) as e:
            logger.warning(
                f"Skipped reset of subscription {subscription.id}: {e.reason}",
                extra={"subscription_id": subscription.id, "reason": e.reason},
            )
            return False
        return True

    @trace_span
    async def run_expiration_pass(self, now: datetime) -> int:
        count = 0
        after_id = 0
        while True:
            async with transaction():
                batch = await self.subscription_repo.list_due_for_expiry(
                    now, self.batch_size, after_id
                )
                retired_users = []
                for subscription in batch:
                    if await self._retire_one(subscription):
                        count += 1
                        retired_users.append(subscription.user_id)

                # One Free row per user, however many rows were retired for them
                for user_id in dict.fromkeys(retired_users):
                    await self._grant_free(user_id, now)

            log_span_event("expiry_batch", {"size": len(batch), "after_id": after_id})
            if len(batch) < self.batch_size:
                return count
            after_id = batch[-1].id

    async def _retire_one(self, subscription: Subscription) -> bool:
        event = (
            SubscriptionEvent.FINALIZE_CANCELLATION
            if subscription.cancel_at_period_end
            else SubscriptionEvent.EXPIRE
        )
        try:
            await self.subscription_repo.transition(
                subscription.id, event, subscription.version
            )
        except (ConflictError, ValidationError) as e:
            logger.warning(
                f"Skipped retiring subscription {subscription.id}: {e.reason}",
                extra={"subscription_id": subscription.id, "reason": e.reason},
            )
            return False

        logger.info(
            f"Subscription {subscription.id} {event.value}",
            extra={
                "subscription_id": subscription.id,
                "user_id": subscription.user_id,
                "event": event.value,
            },
        )
        return True

    async def _grant_free(self, user_id: int, now: datetime) -> None:
        if await self.subscription_repo.get_active_by_user(user_id) is not None:
            return
        try:
            await self.subscription_service.grant_free_tier(user_id, now)
        except ConflictError:
            logger.info(
                f"User {user_id} already has an active subscription, no free grant",
                extra={"user_id": user_id},
            )

    @trace_span
    async def run_selection_reset_pass(self) -> int:
        async with transaction():
            cleared = await self.subscription_repo.clear_selections_not_required()
        if cleared:
            logger.info(
                f"Cleared {cleared} stale scope selections",
                extra={"selections_cleared": cleared},
            )
        return cleared
