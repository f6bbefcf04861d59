import pytest

from packages.billing.models.domain.enums import SubscriptionStatus
from packages.billing.services.access_policy_service import AccessPolicyService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService


@pytest.fixture
def policy():
    return AccessPolicyService()


class TestCanAccessResource:
    async def test_no_subscription(self, policy, tiers):
        assert await policy.can_access_resource(404, "A") is False

    async def test_inactive_subscription(self, policy, make_subscription):
        await make_subscription(tier="pro", status=SubscriptionStatus.EXPIRED)

        assert await policy.can_access_resource(1001, "A") is False

    async def test_unrestricted_tier(self, policy, make_subscription):
        await make_subscription(tier="pro")

        assert await policy.can_access_resource(1001, "anything") is True

    async def test_new_free_user_can_open_a_resource(self, policy, tiers):
        await SubscriptionService().ensure_free_subscription(7)

        assert await policy.can_access_resource(7, "A") is True

    async def test_free_tier_window_after_cap(self, policy, make_subscription):
        subscription = await make_subscription(tier="free")
        quota = QuotaService()

        for resource_id in ("A", "B"):
            assert await policy.can_access_resource(1001, resource_id) is True
            await quota.record_resource_access(subscription.id, resource_id)

        # Cap of two reached: only the window stays open
        assert await policy.can_access_resource(1001, "C") is False
        assert await policy.can_access_resource(1001, "A") is True
        assert await policy.can_access_resource(1001, "B") is True

    async def test_free_tier_window_follows_most_recent(
        self, policy, make_subscription
    ):
        subscription = await make_subscription(tier="free")
        quota = QuotaService()

        for resource_id in ("A", "B", "C"):
            await quota.record_resource_access(subscription.id, resource_id)

        assert await policy.can_access_resource(1001, "A") is False
        assert await policy.can_access_resource(1001, "B") is True
        assert await policy.can_access_resource(1001, "C") is True

    @pytest.mark.parametrize(
        "selection,resource_scopes,expected",
        [
            (["grade-9"], ["grade-9"], True),
            (["grade-9", "grade-10"], ["grade-10"], True),
            (["grade-9"], ["grade-9", "grade-10"], False),
            (["grade-9"], ["grade-11"], False),
            (["grade-9"], None, False),
            (["grade-9"], [], False),
            (None, ["grade-9"], False),
        ],
    )
    async def test_scope_restricted_tier(
        self, policy, make_subscription, selection, resource_scopes, expected
    ):
        await make_subscription(tier="student", selected_scope_ids=selection)

        allowed = await policy.can_access_resource(
            1001, "R1", resource_scope_ids=resource_scopes
        )

        assert allowed is expected


class TestCanUseMeteredFeature:
    async def test_remaining_tokens(self, policy, make_subscription):
        await make_subscription(tier="free", tokens_used_current_period=49_999)

        assert await policy.can_use_metered_feature(1001) is True

    async def test_exhausted(self, policy, make_subscription):
        await make_subscription(tier="free", tokens_used_current_period=50_000)

        assert await policy.can_use_metered_feature(1001) is False

    async def test_unlimited(self, policy, make_subscription):
        await make_subscription(tier="pro", tokens_used_current_period=10**9)

        assert await policy.can_use_metered_feature(1001) is True

    async def test_no_subscription(self, policy, tiers):
        assert await policy.can_use_metered_feature(404) is False
