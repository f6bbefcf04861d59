"""
Referral program: shareable codes, referrer points on paid ingests and
points redemption for a tier.
"""

import secrets
import string
import uuid
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.scoped import ensure_transaction
from packages.billing.clock import utcnow
from packages.billing.exceptions import ConflictError, NotFoundError, ValidationError
from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentProvider,
    PaymentType,
)
from packages.billing.models.domain.payment_event import (
    IngestResult,
    PaymentEventCreateModel,
)
from packages.billing.models.domain.referral import Referral, ReferralCode
from packages.billing.models.domain.tier import Tier
from packages.billing.repositories.referral_repository import (
    ReferralCodeRepository,
    ReferralRepository,
)
from packages.billing.repositories.tier_repository import TierRepository

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5


def generate_referral_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class ReferralService:
    def __init__(self):
        self.code_repo = ReferralCodeRepository()
        self.referral_repo = ReferralRepository()
        self.tier_repo = TierRepository()

    @trace_span
    async def get_or_create_code(self, user_id: int) -> ReferralCode:
        existing = await self.code_repo.get_by_user(user_id)
        if existing is not None:
            return existing

        async with ensure_transaction():
            for _ in range(MAX_CODE_ATTEMPTS):
                created = await self.code_repo.create_code(
                    user_id, generate_referral_code(settings.referral_code_length)
                )
                if created is not None:
                    return created
                # Either the code collided or another request created ours
                existing = await self.code_repo.get_by_user(user_id)
                if existing is not None:
                    return existing

        raise ConflictError(
            f"Could not allocate a referral code for user {user_id}",
            reason="referral_code_collision",
        )

    @trace_span
    async def apply_referral_code(self, user_id: int, code: str) -> Referral:
        """Link ``user_id`` to the owner of ``code``. A user is referred at most once."""
        async with ensure_transaction():
            owner = await self.code_repo.get_by_code(code)
            if owner is None:
                raise NotFoundError(
                    f"Referral code {code!r} not found", reason="referral_code_not_found"
                )
            if owner.user_id == user_id:
                raise ValidationError(
                    "Users cannot refer themselves", reason="self_referral"
                )
            referral = await self.referral_repo.create_referral(
                owner.user_id, user_id, owner.code
            )
            if referral is None:
                raise ValidationError(
                    f"User {user_id} has already been referred", reason="already_referred"
                )

        logger.info(
            f"User {user_id} referred by user {owner.user_id}",
            extra={"user_id": user_id, "referrer_user_id": owner.user_id},
        )
        return referral

    @trace_span
    async def award_for_payment(self, user_id: int, tier: Tier) -> Optional[int]:
        """Credit the referrer of ``user_id`` with the tier's award. Returns points awarded."""
        if tier.referral_points_awarded <= 0:
            return None

        async with ensure_transaction():
            referral = await self.referral_repo.get_by_referred_user(user_id)
            if referral is None:
                return None
            await self.get_or_create_code(referral.referrer_user_id)
            await self.code_repo.add_points(
                referral.referrer_user_id, tier.referral_points_awarded
            )
            await self.referral_repo.record_award(
                referral.id, tier.referral_points_awarded, utcnow()
            )

        logger.info(
            f"Awarded {tier.referral_points_awarded} referral points to user {referral.referrer_user_id}",
            extra={
                "user_id": user_id,
                "referrer_user_id": referral.referrer_user_id,
                "tier": tier.name,
                "points": tier.referral_points_awarded,
            },
        )
        return tier.referral_points_awarded

    @trace_span
    async def redeem_points(self, user_id: int, tier_id: int) -> IngestResult:
        """
        Spend points on one month of ``tier_id``.

        The grant goes through the payment ingester as a zero-amount,
        one-time monthly event, so it follows the same upgrade and renewal
        rules as a paid event. A rejected grant refunds the points.
        """
        from packages.billing.services.payment_ingestion_service import (  # noqa: PLC0415
            PaymentIngestionService,
        )

        tier = await self.tier_repo.get(tier_id)
        if tier is None:
            raise NotFoundError(f"Tier {tier_id} not found", reason="tier_not_found")
        if not tier.referral_points_cost:
            raise ValidationError(
                f"Tier {tier.name} cannot be bought with points",
                reason="tier_not_redeemable",
            )

        async with ensure_transaction():
            if not await self.code_repo.deduct_points(user_id, tier.referral_points_cost):
                raise ValidationError(
                    f"Redeeming {tier.name} costs {tier.referral_points_cost} points",
                    reason="insufficient_points",
                )

            result = await PaymentIngestionService().ingest(
                PaymentEventCreateModel(
                    external_event_id=f"points:{user_id}:{uuid.uuid4().hex}",
                    provider=PaymentProvider.POINTS,
                    user_id=user_id,
                    tier_id=tier.id,
                    billing_cycle=BillingCycle.MONTHLY,
                    payment_type=PaymentType.ONE_TIME,
                    amount=0,
                )
            )
            if not result.applied:
                raise ValidationError(
                    f"Points redemption for {tier.name} was rejected: {result.reason}",
                    reason=result.reason,
                )

        logger.info(
            f"User {user_id} redeemed {tier.referral_points_cost} points for {tier.name}",
            extra={
                "user_id": user_id,
                "tier": tier.name,
                "subscription_id": result.subscription_id,
            },
        )
        return result
