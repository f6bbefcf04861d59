"""
CouponEngine: coupon validation and idempotent application to payment events.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.scoped import ensure_transaction
from packages.billing.calculations import apply_discount
from packages.billing.clock import utcnow
from packages.billing.exceptions import InvalidCouponError, NotFoundError
from packages.billing.models.domain.coupon import CouponCode, CouponValidation
from packages.billing.models.domain.enums import BillingCycle
from packages.billing.repositories.coupon_repository import (
    CouponCodeRepository,
    CouponUsageRepository,
)

logger = get_logger(__name__)


def check_coupon(
    coupon: Optional[CouponCode],
    tier_id: int,
    billing_cycle: BillingCycle,
    now: datetime,
) -> Optional[str]:
    """First failing rule as a reason code, or None when the coupon applies."""
    if coupon is None:
        return "coupon_not_found"
    if not coupon.is_active:
        return "coupon_inactive"
    if coupon.valid_from > now:
        return "coupon_not_yet_valid"
    if coupon.valid_until is not None and coupon.valid_until < now:
        return "coupon_expired"
    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        return "coupon_max_uses_reached"
    if coupon.applicable_tier_ids and tier_id not in coupon.applicable_tier_ids:
        return "tier_mismatch"
    if (
        coupon.applicable_billing_cycles
        and billing_cycle.value not in coupon.applicable_billing_cycles
    ):
        return "billing_cycle_mismatch"
    return None


class CouponService:
    """Coupon checks and application."""

    def __init__(self):
        self.coupon_repo = CouponCodeRepository()
        self.usage_repo = CouponUsageRepository()

    @trace_span
    async def validate_coupon(
        self,
        code: str,
        tier_id: int,
        billing_cycle: BillingCycle,
        user_id: Optional[int] = None,
    ) -> CouponValidation:
        """Check a code without reserving anything. Never raises for a bad coupon."""
        coupon = await self.coupon_repo.get_by_code(code)
        reason = check_coupon(coupon, tier_id, billing_cycle, utcnow())
        if reason is not None:
            logger.info(
                f"Coupon {code!r} rejected: {reason}",
                extra={"coupon_code": code, "user_id": user_id, "reason": reason},
            )
            return CouponValidation(valid=False, error_reason=reason)
        return CouponValidation(
            valid=True,
            coupon_id=coupon.id,
            discount_percentage=coupon.discount_percentage,
        )

    @trace_span
    async def validate_and_reserve(
        self,
        code: str,
        tier_id: int,
        billing_cycle: BillingCycle,
        user_id: int,
    ) -> CouponValidation:
        """
        Same checks as ``validate_coupon`` on the coupon row locked for the
        rest of the transaction, so the check and the use cannot interleave
        with another payment consuming the last use.
        """
        async with ensure_transaction():
            coupon = await self.coupon_repo.get_by_code(code, for_update=True)
            reason = check_coupon(coupon, tier_id, billing_cycle, utcnow())
        if reason is not None:
            raise InvalidCouponError(f"Coupon {code!r} is not valid: {reason}", reason=reason)
        return CouponValidation(
            valid=True,
            coupon_id=coupon.id,
            discount_percentage=coupon.discount_percentage,
        )

    @trace_span
    async def apply(
        self,
        coupon_id: int,
        payment_event_id: int,
        original_amount: Decimal,
        user_id: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Decimal:
        """
        Apply a coupon to a payment event and return the final amount.

        Idempotent per (coupon, payment event): a repeat returns the stored
        final amount and does not consume another use.
        """
        async with ensure_transaction():
            existing = await self.usage_repo.get_for_payment_event(
                coupon_id, payment_event_id
            )
            if existing is not None:
                return existing.final_amount

            coupon = await self.coupon_repo.get(coupon_id)
            if coupon is None:
                raise NotFoundError(
                    f"Coupon {coupon_id} not found", reason="coupon_not_found"
                )

            discount, final = apply_discount(
                Decimal(original_amount), coupon.discount_percentage
            )
            usage = await self.usage_repo.record_application(
                coupon_id=coupon_id,
                payment_event_id=payment_event_id,
                original_amount=Decimal(original_amount),
                discount_amount=discount,
                final_amount=final,
                user_id=user_id,
                currency=currency,
            )
            if usage is None:
                # A concurrent application of the same pair won
                existing = await self.usage_repo.get_for_payment_event(
                    coupon_id, payment_event_id
                )
                return existing.final_amount

        logger.info(
            f"Applied coupon {coupon.code} to payment event {payment_event_id}",
            extra={
                "coupon_id": coupon_id,
                "payment_event_id": payment_event_id,
                "user_id": user_id,
                "discount_amount": str(discount),
                "final_amount": str(final),
            },
        )
        return final
