"""
Tests for the scheduler passes in LifecycleService.
"""

from datetime import datetime, timedelta, timezone

from packages.billing.models.domain.enums import BillingCycle, SubscriptionStatus
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.lifecycle_service import LifecycleService
from packages.billing.services.subscription_service import SubscriptionService


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TestResetPass:
    async def test_recurring_rows_are_refilled(self, make_subscription):
        now = now_utc()
        due = await make_subscription(
            user_id=1,
            tier="student",
            period_start_date=now - timedelta(days=32),
            period_end_date=now - timedelta(days=1),
            tokens_used_current_period=123_000,
        )

        result = await LifecycleService().run_all(now)

        assert result.reset_count == 1
        assert result.expired_count == 0
        refilled = await SubscriptionRepository().get(due.id)
        assert refilled.tokens_used_current_period == 0
        assert refilled.period_end_date > now

    async def test_batches_cover_every_row(self, make_subscription):
        now = now_utc()
        for user_id in range(1, 6):
            await make_subscription(
                user_id=user_id,
                period_start_date=now - timedelta(days=32),
                period_end_date=now - timedelta(days=1),
            )

        result = await LifecycleService(batch_size=2).run_all(now)

        assert result.reset_count == 5

    async def test_second_run_is_a_noop(self, make_subscription):
        now = now_utc()
        await make_subscription(
            period_start_date=now - timedelta(days=32),
            period_end_date=now - timedelta(days=1),
        )
        service = LifecycleService()

        await service.run_all(now)
        second = await service.run_all(now)

        assert (second.reset_count, second.expired_count) == (0, 0)


class TestExpirationPass:
    async def test_expired_one_time_grant_falls_back_to_free(
        self, tiers, make_subscription
    ):
        now = now_utc()
        grant = await make_subscription(
            tier="student",
            is_recurring=False,
            period_start_date=now - timedelta(days=31),
            period_end_date=now - timedelta(minutes=5),
            subscription_end_date=now - timedelta(minutes=5),
        )

        result = await LifecycleService().run_all(now)

        assert result.expired_count == 1
        repo = SubscriptionRepository()
        assert (await repo.get(grant.id)).status == SubscriptionStatus.EXPIRED
        active = await repo.get_active_by_user(grant.user_id)
        assert active.tier_id == tiers["free"].id
        assert active.tokens_used_current_period == 0

    async def test_cancel_at_period_end_is_finalised(self, tiers, make_subscription):
        now = now_utc()
        cancelling = await make_subscription(
            tier="pro",
            is_recurring=False,
            cancel_at_period_end=True,
            cancellation_reason="moving on",
            period_start_date=now - timedelta(days=31),
            period_end_date=now - timedelta(minutes=1),
        )

        await LifecycleService().run_all(now)

        retired = await SubscriptionRepository().get(cancelling.id)
        assert retired.status == SubscriptionStatus.CANCELLED
        assert retired.cancellation_reason == "moving on"
        assert retired.ended_at is not None

    async def test_yearly_cancelled_mid_term(self, tiers, make_subscription):
        start = now_utc() - timedelta(days=40)
        term_end = start + timedelta(days=60)
        yearly = await make_subscription(
            tier="student",
            billing_cycle=BillingCycle.YEARLY,
            cancel_at_period_end=True,
            period_start_date=start,
            period_end_date=start + timedelta(days=30),
            subscription_end_date=term_end,
            tokens_used_current_period=500_000,
        )
        service = LifecycleService()
        repo = SubscriptionRepository()

        # Inside the prepaid term: refilled, not retired
        mid_term = start + timedelta(days=31)
        first = await service.run_all(mid_term)
        assert (first.reset_count, first.expired_count) == (1, 0)
        refilled = await repo.get(yearly.id)
        assert refilled.status == SubscriptionStatus.ACTIVE
        assert refilled.tokens_used_current_period == 0

        # Past the term: retired and replaced by exactly one Free row
        after_term = term_end + timedelta(hours=1)
        second = await service.run_all(after_term)
        third = await service.run_all(after_term)

        assert second.expired_count == 1
        assert third.expired_count == 0
        assert (await repo.get(yearly.id)).status == SubscriptionStatus.CANCELLED
        history = await repo.list_by_user(yearly.user_id)
        free_rows = [s for s in history if s.tier_id == tiers["free"].id]
        assert len(free_rows) == 1
        assert free_rows[0].status == SubscriptionStatus.ACTIVE

    async def test_free_rows_never_expire(self, make_subscription):
        now = now_utc()
        free = await make_subscription(
            period_start_date=now - timedelta(days=400),
            period_end_date=now - timedelta(days=370),
        )

        result = await LifecycleService().run_all(now)

        assert result.expired_count == 0
        refreshed = await SubscriptionRepository().get(free.id)
        assert refreshed.status == SubscriptionStatus.ACTIVE
        assert refreshed.period_start_date <= now < refreshed.period_end_date

    async def test_free_grant_skipped_when_user_already_active(
        self, tiers, make_subscription
    ):
        now = now_utc()
        await make_subscription(
            tier="student",
            is_recurring=False,
            period_start_date=now - timedelta(days=31),
            period_end_date=now - timedelta(minutes=5),
        )
        service = LifecycleService()

        await service.run_expiration_pass(now)
        await service.run_expiration_pass(now)

        assert await SubscriptionRepository().count_active_by_user(1001) == 1

    async def test_signup_after_expiry_keeps_single_active_row(
        self, tiers, make_subscription
    ):
        now = now_utc()
        await make_subscription(
            tier="student",
            is_recurring=False,
            period_start_date=now - timedelta(days=31),
            period_end_date=now - timedelta(minutes=5),
        )

        await LifecycleService().run_all(now)
        ensured = await SubscriptionService().ensure_free_subscription(1001)

        assert ensured.tier_id == tiers["free"].id
        assert await SubscriptionRepository().count_active_by_user(1001) == 1


class TestSelectionResetPass:
    async def test_clears_selections_on_tiers_without_scopes(self, make_subscription):
        stale = await make_subscription(user_id=1, tier="pro", selected_scope_ids=["g9"])
        kept = await make_subscription(
            user_id=2, tier="student_lite", selected_scope_ids=["g10"]
        )

        cleared = await LifecycleService().run_selection_reset_pass()

        assert cleared == 1
        repo = SubscriptionRepository()
        assert (await repo.get(stale.id)).selected_scope_ids is None
        assert (await repo.get(kept.id)).selected_scope_ids == ["g10"]
