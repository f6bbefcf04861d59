"""
Unit tests for billing API routes.

Requests go through the real services against the test database; only
authentication is overridden (see ``client`` in conftest).
"""

from packages.billing.repositories.referral_repository import ReferralCodeRepository
from packages.billing.services.referral_service import ReferralService


class TestSubscriptionRoutes:
    async def test_first_read_grants_free_tier(self, client, tiers):
        response = await client.get("/api/v1/billing/subscription")

        assert response.status_code == 200
        data = response.json()
        assert data["tier_name"] == "free"
        assert data["status"] == "active"
        assert data["has_access"] is True
        assert data["cancel_at_period_end"] is False
        assert data["cancellation_effective_date"] is None

    async def test_cancel_and_reactivate(self, client, make_subscription):
        await make_subscription(tier="student")

        cancelled = await client.post(
            "/api/v1/billing/subscription/cancel", json={"reason": "exams over"}
        )
        reactivated = await client.post("/api/v1/billing/subscription/reactivate")

        assert cancelled.status_code == 200
        assert cancelled.json()["cancel_at_period_end"] is True
        assert cancelled.json()["cancellation_effective_date"] is not None
        assert reactivated.status_code == 200
        assert reactivated.json()["cancel_at_period_end"] is False

    async def test_cancel_free_tier_is_unprocessable(self, client, make_subscription):
        await make_subscription(tier="free")

        response = await client.post("/api/v1/billing/subscription/cancel", json={})

        assert response.status_code == 422
        assert response.json()["reason"] == "free_tier_not_cancellable"

    async def test_reactivate_without_subscription(self, client, tiers):
        response = await client.post("/api/v1/billing/subscription/reactivate")

        assert response.status_code == 404
        assert response.json()["reason"] == "subscription_not_found"

    async def test_scope_selection(self, client, make_subscription):
        await make_subscription(tier="student")

        response = await client.put(
            "/api/v1/billing/subscription/selection",
            json={"scope_ids": ["grade-9", "grade-10"]},
        )
        locked = await client.put(
            "/api/v1/billing/subscription/selection", json={"scope_ids": ["grade-11"]}
        )

        assert response.status_code == 200
        assert response.json()["selected_scope_ids"] == ["grade-9", "grade-10"]
        assert locked.status_code == 422
        assert locked.json()["reason"] == "selection_locked"

    async def test_empty_selection_fails_validation(self, client, make_subscription):
        await make_subscription(tier="student")

        response = await client.put(
            "/api/v1/billing/subscription/selection", json={"scope_ids": []}
        )

        assert response.status_code == 422


class TestQuotaAndAccessRoutes:
    async def test_quota(self, client, make_subscription):
        await make_subscription(tier="free", tokens_used_current_period=1_500)

        response = await client.get("/api/v1/billing/quota")

        assert response.status_code == 200
        data = response.json()
        assert data["used"] == 1_500
        assert data["limit"] == 50_000
        assert data["remaining"] == 48_500

    async def test_quota_unlimited(self, client, make_subscription):
        await make_subscription(tier="pro")

        data = (await client.get("/api/v1/billing/quota")).json()

        assert data["limit"] is None
        assert data["remaining"] is None

    async def test_access_check(self, client, make_subscription):
        await make_subscription(tier="student", selected_scope_ids=["grade-9"])

        allowed = await client.get(
            "/api/v1/billing/access/R1", params={"scope_ids": ["grade-9"]}
        )
        denied = await client.get(
            "/api/v1/billing/access/R2", params={"scope_ids": ["grade-12"]}
        )

        assert allowed.json() == {"resource_id": "R1", "allowed": True}
        assert denied.json() == {"resource_id": "R2", "allowed": False}


class TestCouponRoutes:
    async def test_validate_coupon(self, client, tiers, make_coupon):
        await make_coupon("SPRING", discount_percentage=25)

        response = await client.post(
            "/api/v1/billing/coupons/validate",
            json={"code": "spring", "tier_id": tiers["student"].id, "billing_cycle": "monthly"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "valid": True,
            "discount_percentage": 25,
            "error_reason": None,
        }

    async def test_invalid_coupon_is_not_an_error(self, client, tiers):
        response = await client.post(
            "/api/v1/billing/coupons/validate",
            json={"code": "NOPE", "tier_id": tiers["student"].id, "billing_cycle": "monthly"},
        )

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["error_reason"] == "coupon_not_found"


class TestReferralRoutes:
    async def test_get_code(self, client, tiers):
        response = await client.get("/api/v1/billing/referrals/code")

        assert response.status_code == 200
        assert len(response.json()["code"]) == 8
        assert response.json()["points_balance"] == 0

    async def test_apply_code(self, client, tiers):
        other = await ReferralService().get_or_create_code(7)

        response = await client.post(
            "/api/v1/billing/referrals/apply", json={"code": other.code}
        )

        assert response.status_code == 200
        assert response.json() == {"referrer_user_id": 7}

    async def test_redeem_insufficient_points(self, client, tiers):
        response = await client.post(
            "/api/v1/billing/referrals/redeem", json={"tier_id": tiers["student"].id}
        )

        assert response.status_code == 422
        assert response.json()["reason"] == "insufficient_points"

    async def test_redeem(self, client, tiers, test_user):
        await ReferralService().get_or_create_code(test_user.user_id)
        await ReferralCodeRepository().add_points(test_user.user_id, 1_000)

        response = await client.post(
            "/api/v1/billing/referrals/redeem", json={"tier_id": tiers["student_lite"].id}
        )

        assert response.status_code == 200
        assert response.json()["applied"] is True
        assert response.json()["status"] == "applied"


class TestPlansRoute:
    async def test_plans_in_display_order(self, client, tiers):
        response = await client.get("/api/v1/billing/plans")

        assert response.status_code == 200
        plans = response.json()["plans"]
        assert [p["name"] for p in plans] == ["free", "student_lite", "student", "pro"]
        assert plans[-1]["token_limit"] is None
