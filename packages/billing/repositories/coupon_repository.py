"""
Repositories for coupon codes and coupon usages.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from common.core.otel_axiom_exporter import trace_span
from common.repositories.base import BaseRepository
from packages.billing.models.database.coupon import CouponCodeEntity, CouponUsageEntity
from packages.billing.exceptions import InvalidCouponError
from packages.billing.models.domain.coupon import CouponCode, CouponUsage


class CouponCodeRepository(BaseRepository[CouponCodeEntity, CouponCode]):
    """Coupon codes, looked up case-insensitively."""

    def __init__(self):
        super().__init__(CouponCodeEntity, CouponCode)

    @trace_span
    async def get_by_code(self, code: str, for_update: bool = False) -> Optional[CouponCode]:
        """Fetch by code. ``for_update`` locks the row until the transaction ends."""
        query = (
            select(CouponCodeEntity)
            .where(CouponCodeEntity.code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        async with self._get_session() as session:
            result = await session.execute(query)
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None


class CouponUsageRepository(BaseRepository[CouponUsageEntity, CouponUsage]):
    """One row per (coupon, payment event) application."""

    def __init__(self):
        super().__init__(CouponUsageEntity, CouponUsage)

    @trace_span
    async def get_for_payment_event(
        self, coupon_id: int, payment_event_id: int
    ) -> Optional[CouponUsage]:
        async with self._get_session() as session:
            result = await session.execute(
                select(CouponUsageEntity).where(
                    CouponUsageEntity.coupon_id == coupon_id,
                    CouponUsageEntity.payment_event_id == payment_event_id,
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def record_application(
        self,
        coupon_id: int,
        payment_event_id: int,
        original_amount: Decimal,
        discount_amount: Decimal,
        final_amount: Decimal,
        user_id: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Optional[CouponUsage]:
        """
        Insert the usage row and consume one coupon use, in one savepoint.

        Returns None if this (coupon, payment event) pair was already recorded,
        in which case no use is consumed. Raises ``InvalidCouponError`` when
        the coupon has no uses left; nothing is written.
        """
        entity = CouponUsageEntity(
            coupon_id=coupon_id,
            payment_event_id=payment_event_id,
            user_id=user_id,
            original_amount=original_amount,
            discount_amount=discount_amount,
            final_amount=final_amount,
            currency=currency,
        )
        consume = (
            update(CouponCodeEntity)
            .where(
                CouponCodeEntity.id == coupon_id,
                or_(
                    CouponCodeEntity.max_uses.is_(None),
                    CouponCodeEntity.current_uses < CouponCodeEntity.max_uses,
                ),
            )
            .values(current_uses=CouponCodeEntity.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        async with self._get_session() as session:
            try:
                async with session.begin_nested():
                    session.add(entity)
                    await session.flush()
                    result = await session.execute(consume)
                    if result.rowcount == 0:
                        raise InvalidCouponError(
                            f"Coupon {coupon_id} has no uses left",
                            reason="coupon_max_uses_reached",
                        )
            except IntegrityError:
                return None
            await session.refresh(entity)
            return self._entity_to_domain(entity)
