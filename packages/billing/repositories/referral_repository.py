"""
Repositories for referral codes and referral links.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from common.core.otel_axiom_exporter import trace_span
from common.repositories.base import BaseRepository
from packages.billing.models.database.referral import ReferralCodeEntity, ReferralEntity
from packages.billing.models.domain.referral import Referral, ReferralCode


class ReferralCodeRepository(BaseRepository[ReferralCodeEntity, ReferralCode]):
    def __init__(self):
        super().__init__(ReferralCodeEntity, ReferralCode)

    @trace_span
    async def get_by_user(self, user_id: int) -> Optional[ReferralCode]:
        async with self._get_session() as session:
            result = await session.execute(
                select(ReferralCodeEntity)
                .where(ReferralCodeEntity.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def get_by_code(self, code: str) -> Optional[ReferralCode]:
        async with self._get_session() as session:
            result = await session.execute(
                select(ReferralCodeEntity).where(
                    ReferralCodeEntity.code == code.strip().upper()
                )
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def create_code(self, user_id: int, code: str) -> Optional[ReferralCode]:
        """Insert a code for the user. None on a code or user collision."""
        entity = ReferralCodeEntity(user_id=user_id, code=code)
        async with self._get_session() as session:
            try:
                async with session.begin_nested():
                    session.add(entity)
                    await session.flush()
            except IntegrityError:
                return None
            await session.refresh(entity)
            return self._entity_to_domain(entity)

    @trace_span
    async def add_points(self, user_id: int, points: int) -> None:
        async with self._get_session() as session:
            await session.execute(
                update(ReferralCodeEntity)
                .where(ReferralCodeEntity.user_id == user_id)
                .values(
                    points_balance=ReferralCodeEntity.points_balance + points,
                    total_points_earned=ReferralCodeEntity.total_points_earned + points,
                )
                .execution_options(synchronize_session=False)
            )

    @trace_span
    async def deduct_points(self, user_id: int, points: int) -> bool:
        """Spend points if the balance covers them. False otherwise."""
        async with self._get_session() as session:
            result = await session.execute(
                update(ReferralCodeEntity)
                .where(
                    ReferralCodeEntity.user_id == user_id,
                    ReferralCodeEntity.points_balance >= points,
                )
                .values(
                    points_balance=ReferralCodeEntity.points_balance - points,
                    total_points_redeemed=ReferralCodeEntity.total_points_redeemed
                    + points,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0


class ReferralRepository(BaseRepository[ReferralEntity, Referral]):
    def __init__(self):
        super().__init__(ReferralEntity, Referral)

    @trace_span
    async def get_by_referred_user(self, referred_user_id: int) -> Optional[Referral]:
        async with self._get_session() as session:
            result = await session.execute(
                select(ReferralEntity)
                .where(ReferralEntity.referred_user_id == referred_user_id)
                .execution_options(populate_existing=True)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def create_referral(
        self, referrer_user_id: int, referred_user_id: int, referral_code: str
    ) -> Optional[Referral]:
        """None when the referred user already has a referrer."""
        entity = ReferralEntity(
            referrer_user_id=referrer_user_id,
            referred_user_id=referred_user_id,
            referral_code=referral_code,
        )
        async with self._get_session() as session:
            try:
                async with session.begin_nested():
                    session.add(entity)
                    await session.flush()
            except IntegrityError:
                return None
            await session.refresh(entity)
            return self._entity_to_domain(entity)

    @trace_span
    async def record_award(self, referral_id: int, points: int, now: datetime) -> None:
        async with self._get_session() as session:
            await session.execute(
                update(ReferralEntity)
                .where(ReferralEntity.id == referral_id)
                .values(
                    times_awarded=ReferralEntity.times_awarded + 1,
                    total_points_awarded=ReferralEntity.total_points_awarded + points,
                    last_awarded_at=now,
                )
                .execution_options(synchronize_session=False)
            )
