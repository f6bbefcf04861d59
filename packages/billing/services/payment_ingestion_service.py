"""
PaymentEventIngester: turns a completed payment reported by a gateway adapter
into a subscription transition.

Flow per event, in one transaction serialised on the user:

1. Ledger lookup on ``external_event_id`` (replays return the recorded outcome)
2. Ledger insert, tier lookup, downgrade check
3. Coupon reservation and application
4. New row, upgrade (supersede + new row with carried quota) or same-tier renewal
5. Referral points for the user's referrer

Business rejections (unknown tier, downgrade, bad coupon) are committed on the
ledger row as ``rejected`` with a reason; they never mutate the subscription.
"""

from datetime import datetime
from typing import Optional

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.scoped import ensure_transaction
from packages.billing.calculations import compute_payment_terms, compute_upgrade_capacity
from packages.billing.clock import utcnow
from packages.billing.exceptions import (
    DowngradeNotAllowedError,
    InvalidCouponError,
    NotFoundError,
)
from packages.billing.models.domain.enums import SubscriptionEvent
from packages.billing.models.domain.payment_event import (
    IngestResult,
    PaymentEvent,
    PaymentEventCreateModel,
)
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.models.domain.tier import Tier
from packages.billing.repositories.payment_event_repository import PaymentEventRepository
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.tier_repository import TierRepository
from packages.billing.services.coupon_service import CouponService
from packages.billing.services.quota_service import quota_for
from packages.billing.services.referral_service import ReferralService

logger = get_logger(__name__)


class PaymentIngestionService:
    """Idempotent entry point for completed payments."""

    def __init__(self):
        self.ledger_repo = PaymentEventRepository()
        self.subscription_repo = SubscriptionRepository()
        self.tier_repo = TierRepository()
        self.coupon_service = CouponService()
        self.referral_service = ReferralService()

    @trace_span
    async def ingest(
        self, event: PaymentEventCreateModel, now: Optional[datetime] = None
    ) -> IngestResult:
        now = now or utcnow()
        log_extra = {
            "external_event_id": event.external_event_id,
            "user_id": event.user_id,
            "tier_id": event.tier_id,
            "provider": event.provider.value,
        }

        prior = await self.ledger_repo.get_by_external_id(event.external_event_id)
        if prior is not None:
            logger.info(
                f"Payment event {event.external_event_id} already processed, replaying result",
                extra=log_extra,
            )
            return IngestResult.from_ledger(prior, applied=False)

        async with ensure_transaction():
            await self.subscription_repo.acquire_user_lock(event.user_id)

            ledger_row = await self.ledger_repo.record(event)
            if ledger_row is None:
                prior = await self.ledger_repo.get_by_external_id(event.external_event_id)
                return IngestResult.from_ledger(prior, applied=False)

            try:
                result = await self._apply(ledger_row, event, now)
            except (DowngradeNotAllowedError, InvalidCouponError, NotFoundError) as e:
                rejected = await self.ledger_repo.mark_rejected(ledger_row.id, e.reason)
                logger.warning(
                    f"Payment event {event.external_event_id} rejected: {e.reason}",
                    extra={**log_extra, "reason": e.reason},
                )
                return IngestResult.from_ledger(rejected, applied=False)

        logger.info(
            f"Payment event {event.external_event_id} applied to subscription {result.subscription_id}",
            extra={**log_extra, "subscription_id": result.subscription_id},
        )
        return result

    async def _apply(
        self, ledger_row: PaymentEvent, event: PaymentEventCreateModel, now: datetime
    ) -> IngestResult:
        tier = await self.tier_repo.get(event.tier_id)
        if tier is None or not tier.is_active:
            raise NotFoundError(f"Tier {event.tier_id} not found", reason="tier_not_found")

        active = await self.subscription_repo.get_active_by_user(event.user_id)
        current_tier = (
            await self.tier_repo.get(active.tier_id) if active is not None else None
        )
        if current_tier is not None and tier.is_downgrade_from(current_tier):
            raise DowngradeNotAllowedError(
                f"Cannot move from {current_tier.name} to {tier.name} while subscribed",
                reason="downgrade_not_allowed",
            )

        final_amount = event.amount
        if event.coupon_code:
            reservation = await self.coupon_service.validate_and_reserve(
                event.coupon_code, tier.id, event.billing_cycle, event.user_id
            )
            final_amount = await self.coupon_service.apply(
                reservation.coupon_id,
                ledger_row.id,
                event.amount,
                user_id=event.user_id,
                currency=event.currency,
            )

        if active is None:
            subscription = await self._create(event, tier, now)
        elif active.tier_id == tier.id:
            subscription = await self._renew(active, event, now)
        else:
            subscription = await self._upgrade(active, current_tier, event, tier, now)

        if event.provider.is_paid() and event.amount > 0:
            await self.referral_service.award_for_payment(event.user_id, tier)

        applied = await self.ledger_repo.mark_applied(
            ledger_row.id, subscription.id, final_amount
        )
        return IngestResult.from_ledger(applied, applied=True)

    def _new_row(
        self,
        event: PaymentEventCreateModel,
        tier: Tier,
        now: datetime,
        **carried,
    ) -> SubscriptionCreateModel:
        terms = compute_payment_terms(now, event.billing_cycle, event.payment_type)
        return SubscriptionCreateModel(
            user_id=event.user_id,
            tier_id=tier.id,
            billing_cycle=event.billing_cycle,
            payment_provider=event.provider,
            external_subscription_id=event.external_subscription_id,
            payment_type=event.payment_type,
            is_recurring=terms.is_recurring,
            period_start_date=terms.period_start_date,
            period_end_date=terms.period_end_date,
            subscription_end_date=terms.subscription_end_date,
            **carried,
        )

    async def _create(
        self, event: PaymentEventCreateModel, tier: Tier, now: datetime
    ) -> Subscription:
        return await self.subscription_repo.create_active(self._new_row(event, tier, now))

    async def _renew(
        self, active: Subscription, event: PaymentEventCreateModel, now: datetime
    ) -> Subscription:
        """
        Same-tier payment: the row is extended in place and a new quota
        period starts now. Any pending cancellation is withdrawn.
        """
        terms = compute_payment_terms(now, event.billing_cycle, event.payment_type)
        return await self.subscription_repo.transition(
            active.id,
            SubscriptionEvent.RENEW,
            active.version,
            billing_cycle=event.billing_cycle.value,
            payment_provider=event.provider.value,
            external_subscription_id=(
                event.external_subscription_id or active.external_subscription_id
            ),
            payment_type=event.payment_type.value,
            is_recurring=terms.is_recurring,
            period_start_date=terms.period_start_date,
            period_end_date=terms.period_end_date,
            subscription_end_date=terms.subscription_end_date,
            tokens_used_current_period=0,
            token_limit_override=None,
            carryover_unlimited=False,
            resource_access_count_current_period=0,
            accessed_resource_ids=[],
            cancel_at_period_end=False,
            cancellation_reason=None,
            cancellation_requested_at=None,
        )

    async def _upgrade(
        self,
        active: Subscription,
        current_tier: Tier,
        event: PaymentEventCreateModel,
        tier: Tier,
        now: datetime,
    ) -> Subscription:
        """
        Retire the current row and open one on the higher tier.

        Usage carries over unchanged and the remaining tokens are added on
        top of the new tier's allowance. The scope selection starts over.
        """
        remaining_before = quota_for(active, current_tier).remaining
        capacity = compute_upgrade_capacity(
            active.tokens_used_current_period, remaining_before, tier.token_limit
        )

        await self.subscription_repo.transition(
            active.id,
            SubscriptionEvent.SUPERSEDE,
            active.version,
            cancellation_reason="upgraded",
        )
        subscription = await self.subscription_repo.create_active(
            self._new_row(
                event,
                tier,
                now,
                tokens_used_current_period=active.tokens_used_current_period,
                token_limit_override=capacity.token_limit_override,
                carryover_unlimited=capacity.carryover_unlimited,
                resource_access_count_current_period=active.resource_access_count_current_period,
                accessed_resource_ids=active.accessed_resource_ids,
            )
        )

        logger.info(
            f"Upgraded user {event.user_id} from {current_tier.name} to {tier.name}",
            extra={
                "user_id": event.user_id,
                "previous_subscription_id": active.id,
                "subscription_id": subscription.id,
                "tokens_used": active.tokens_used_current_period,
                "remaining_before": remaining_before,
                "token_limit_override": capacity.token_limit_override,
            },
        )
        return subscription

