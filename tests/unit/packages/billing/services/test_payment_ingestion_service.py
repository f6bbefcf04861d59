"""
Tests for PaymentIngestionService.

Every scenario goes through ``ingest`` exactly like a gateway adapter would,
against a real (SQLite) database.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentEventStatus,
    PaymentProvider,
    PaymentType,
    SubscriptionStatus,
)
from packages.billing.models.domain.payment_event import PaymentEventCreateModel
from packages.billing.repositories.coupon_repository import CouponCodeRepository
from packages.billing.repositories.payment_event_repository import PaymentEventRepository
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.services.payment_ingestion_service import PaymentIngestionService
from packages.billing.services.quota_service import QuotaService

USER_ID = 1001


def payment(
    external_event_id: str,
    tier_id: int,
    amount: str = "15.00",
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    payment_type: PaymentType = PaymentType.RECURRING,
    **kwargs,
) -> PaymentEventCreateModel:
    return PaymentEventCreateModel(
        external_event_id=external_event_id,
        provider=kwargs.pop("provider", PaymentProvider.STRIPE),
        user_id=kwargs.pop("user_id", USER_ID),
        tier_id=tier_id,
        billing_cycle=billing_cycle,
        payment_type=payment_type,
        amount=Decimal(amount),
        **kwargs,
    )


class TestNewSubscription:
    async def test_first_payment_creates_active_row(self, tiers):
        result = await PaymentIngestionService().ingest(
            payment("evt_1", tiers["student"].id)
        )

        assert result.applied is True
        assert result.status == PaymentEventStatus.APPLIED
        assert result.final_amount == Decimal("15.00")
        subscription = await SubscriptionRepository().get_active_by_user(USER_ID)
        assert subscription.id == result.subscription_id
        assert subscription.tier_id == tiers["student"].id
        assert subscription.is_recurring is True
        assert subscription.subscription_end_date is None

    async def test_yearly_payment_sets_term(self, tiers):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)

        result = await PaymentIngestionService().ingest(
            payment(
                "evt_yearly",
                tiers["pro"].id,
                amount="250.00",
                billing_cycle=BillingCycle.YEARLY,
            ),
            now=now,
        )

        subscription = await SubscriptionRepository().get(result.subscription_id)
        assert subscription.subscription_end_date == datetime(
            2027, 3, 1, tzinfo=timezone.utc
        )
        assert subscription.period_end_date == datetime(2026, 4, 1, tzinfo=timezone.utc)

    async def test_one_time_monthly_does_not_recur(self, tiers):
        result = await PaymentIngestionService().ingest(
            payment("evt_once", tiers["student"].id, payment_type=PaymentType.ONE_TIME)
        )

        subscription = await SubscriptionRepository().get(result.subscription_id)
        assert subscription.is_recurring is False
        assert subscription.subscription_end_date == subscription.period_end_date


class TestIdempotency:
    async def test_replay_returns_recorded_outcome(self, tiers):
        service = PaymentIngestionService()
        event = payment("evt_dup", tiers["student"].id)

        first = await service.ingest(event)
        second = await service.ingest(event)

        assert first.applied is True
        assert second.applied is False
        assert second.status == PaymentEventStatus.APPLIED
        assert second.subscription_id == first.subscription_id
        assert await SubscriptionRepository().count_active_by_user(USER_ID) == 1
        assert len(await PaymentEventRepository().list_by_user(USER_ID)) == 1

    async def test_replay_of_rejection_stays_rejected(self, tiers, make_subscription):
        await make_subscription(tier="pro")
        service = PaymentIngestionService()
        event = payment("evt_down", tiers["student"].id)

        await service.ingest(event)
        replay = await service.ingest(event)

        assert replay.status == PaymentEventStatus.REJECTED
        assert replay.reason == "downgrade_not_allowed"

    async def test_distinct_same_tier_events_keep_one_active_row(self, tiers):
        service = PaymentIngestionService()

        for i in range(3):
            await service.ingest(payment(f"evt_renew_{i}", tiers["student"].id))

        history = await SubscriptionRepository().list_by_user(USER_ID)
        assert len(history) == 1
        assert history[0].status == SubscriptionStatus.ACTIVE


class TestConcurrentIngest:
    """Each ingest runs in its own session; SQLite serialises the writers."""

    async def test_concurrent_same_tier_events_keep_one_active_row(
        self, concurrent_db
    ):
        service = PaymentIngestionService()
        events = [payment(f"evt_race_{i}", concurrent_db["student"].id) for i in range(4)]

        results = await asyncio.gather(*(service.ingest(e) for e in events))

        assert all(r.applied for r in results)
        assert len({r.subscription_id for r in results}) == 1
        history = await SubscriptionRepository().list_by_user(USER_ID)
        assert len(history) == 1
        assert history[0].status == SubscriptionStatus.ACTIVE
        assert len(await PaymentEventRepository().list_by_user(USER_ID)) == 4

    async def test_concurrent_upgrade_and_renewal(self, concurrent_db):
        service = PaymentIngestionService()
        await service.ingest(payment("evt_start", concurrent_db["student"].id))

        renewal, upgrade = await asyncio.gather(
            service.ingest(payment("evt_renew", concurrent_db["student"].id)),
            service.ingest(payment("evt_pro", concurrent_db["pro"].id, amount="25.00")),
        )

        # Renewal first: both apply. Upgrade first: the renewal is a downgrade.
        assert upgrade.applied is True
        assert renewal.applied is True or renewal.reason == "downgrade_not_allowed"
        repo = SubscriptionRepository()
        assert await repo.count_active_by_user(USER_ID) == 1
        active = await repo.get_active_by_user(USER_ID)
        assert active.tier_id == concurrent_db["pro"].id
        assert active.id == upgrade.subscription_id

    async def test_concurrent_redelivery_applies_once(self, concurrent_db):
        service = PaymentIngestionService()
        event = payment("evt_dup", concurrent_db["student"].id)

        results = await asyncio.gather(service.ingest(event), service.ingest(event))

        assert sorted(r.applied for r in results) == [False, True]
        assert len(await PaymentEventRepository().list_by_user(USER_ID)) == 1
        assert await SubscriptionRepository().count_active_by_user(USER_ID) == 1


class TestRenewal:
    async def test_same_tier_renewal_refills_and_withdraws_cancellation(
        self, tiers, make_subscription
    ):
        existing = await make_subscription(
            tier="student",
            tokens_used_current_period=400_000,
            cancel_at_period_end=True,
            cancellation_reason="too expensive",
        )

        result = await PaymentIngestionService().ingest(
            payment("evt_renew", tiers["student"].id)
        )

        assert result.subscription_id == existing.id
        renewed = await SubscriptionRepository().get(existing.id)
        assert renewed.tokens_used_current_period == 0
        assert renewed.cancel_at_period_end is False
        assert renewed.cancellation_reason is None
        assert renewed.version == existing.version + 1


class TestUpgrade:
    async def test_student_to_pro(self, tiers, make_subscription):
        student = await make_subscription(
            tier="student",
            tokens_used_current_period=300_000,
            selected_scope_ids=["grade-10"],
        )

        result = await PaymentIngestionService().ingest(
            payment("evt_pro", tiers["pro"].id, amount="25.00")
        )

        repo = SubscriptionRepository()
        old = await repo.get(student.id)
        new = await repo.get(result.subscription_id)
        assert old.status == SubscriptionStatus.CANCELLED
        assert old.cancellation_reason == "upgraded"
        assert old.ended_at is not None
        assert new.status == SubscriptionStatus.ACTIVE
        assert new.tier_id == tiers["pro"].id
        assert new.tokens_used_current_period == 300_000
        assert new.selected_scope_ids is None
        quota = await QuotaService().get_effective_quota(USER_ID)
        assert quota.limit is None
        assert await repo.count_active_by_user(USER_ID) == 1

    async def test_free_to_student_carries_remaining_tokens(
        self, tiers, make_subscription
    ):
        await make_subscription(
            tier="free",
            tokens_used_current_period=10_000,
            accessed_resource_ids=["A", "B"],
            resource_access_count_current_period=2,
        )

        await PaymentIngestionService().ingest(payment("evt_up", tiers["student"].id))

        new = await SubscriptionRepository().get_active_by_user(USER_ID)
        assert new.tokens_used_current_period == 10_000
        assert new.token_limit_override == 540_000
        assert new.accessed_resource_ids == ["A", "B"]
        quota = await QuotaService().get_effective_quota(USER_ID)
        assert quota.remaining == 530_000

    @pytest.mark.parametrize(
        "from_tier,used,override,to_tier,expected_limit,expected_unlimited",
        [
            ("free", 0, None, "student_lite", 300_000, False),
            ("student_lite", 250_000, None, "student", 500_000, False),
            ("student_lite", 100_000, None, "pro", None, False),
            ("student_lite", 0, 500_000, "student", 1_000_000, False),
        ],
    )
    async def test_carryover(
        self,
        tiers,
        make_subscription,
        from_tier,
        used,
        override,
        to_tier,
        expected_limit,
        expected_unlimited,
    ):
        await make_subscription(
            tier=from_tier,
            tokens_used_current_period=used,
            token_limit_override=override,
        )

        await PaymentIngestionService().ingest(payment("evt_carry", tiers[to_tier].id))

        new = await SubscriptionRepository().get_active_by_user(USER_ID)
        assert new.token_limit_override == expected_limit
        assert new.carryover_unlimited is expected_unlimited

    async def test_unlimited_remaining_survives_upgrade(self, tiers, make_subscription):
        await make_subscription(tier="student_lite", carryover_unlimited=True)

        await PaymentIngestionService().ingest(payment("evt_cu", tiers["student"].id))

        new = await SubscriptionRepository().get_active_by_user(USER_ID)
        assert new.carryover_unlimited is True
        assert (await QuotaService().get_effective_quota(USER_ID)).limit is None


class TestRejections:
    async def test_downgrade_is_rejected(self, tiers, make_subscription):
        pro = await make_subscription(tier="pro")

        result = await PaymentIngestionService().ingest(
            payment("evt_down", tiers["student"].id)
        )

        assert result.applied is False
        assert result.status == PaymentEventStatus.REJECTED
        assert result.reason == "downgrade_not_allowed"
        unchanged = await SubscriptionRepository().get(pro.id)
        assert unchanged.version == pro.version
        assert unchanged.status == SubscriptionStatus.ACTIVE

    async def test_unknown_tier_is_rejected(self, tiers):
        result = await PaymentIngestionService().ingest(payment("evt_x", 99))

        assert result.status == PaymentEventStatus.REJECTED
        assert result.reason == "tier_not_found"
        assert await SubscriptionRepository().get_active_by_user(USER_ID) is None

    async def test_invalid_coupon_rejects_event(self, tiers, make_coupon):
        await make_coupon("OLD", valid_until=datetime.now(timezone.utc) - timedelta(days=1))

        result = await PaymentIngestionService().ingest(
            payment("evt_cpn", tiers["student"].id, coupon_code="old")
        )

        assert result.status == PaymentEventStatus.REJECTED
        assert result.reason == "coupon_expired"
        assert await SubscriptionRepository().get_active_by_user(USER_ID) is None


class TestCoupons:
    async def test_coupon_discount_recorded_on_ledger(self, tiers, make_coupon):
        coupon = await make_coupon("WELCOME10", discount_percentage=10, max_uses=5)

        result = await PaymentIngestionService().ingest(
            payment("evt_c1", tiers["student"].id, amount="15.00", coupon_code="welcome10")
        )

        assert result.applied is True
        assert result.final_amount == Decimal("13.50")
        assert (await CouponCodeRepository().get(coupon.id)).current_uses == 1

    async def test_single_use_coupon_second_payment_rejected(self, tiers, make_coupon):
        await make_coupon("ONCE", max_uses=1)
        service = PaymentIngestionService()

        first = await service.ingest(
            payment("evt_c1", tiers["student_lite"].id, amount="8.00", coupon_code="ONCE")
        )
        second = await service.ingest(
            payment(
                "evt_c2",
                tiers["student"].id,
                amount="15.00",
                coupon_code="ONCE",
                user_id=2002,
            )
        )

        assert first.applied is True
        assert second.status == PaymentEventStatus.REJECTED
        assert second.reason == "coupon_max_uses_reached"

    async def test_replay_does_not_consume_coupon_twice(self, tiers, make_coupon):
        coupon = await make_coupon("TWICE", max_uses=2)
        service = PaymentIngestionService()
        event = payment("evt_c1", tiers["student"].id, coupon_code="TWICE")

        await service.ingest(event)
        await service.ingest(event)

        assert (await CouponCodeRepository().get(coupon.id)).current_uses == 1
