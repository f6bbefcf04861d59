"""
Repository for the payment event ledger.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.repositories.base import BaseRepository
from packages.billing.models.database.payment_event import PaymentEventEntity
from packages.billing.models.domain.enums import PaymentEventStatus
from packages.billing.models.domain.payment_event import (
    PaymentEvent,
    PaymentEventCreateModel,
)

logger = get_logger(__name__)


class PaymentEventRepository(BaseRepository[PaymentEventEntity, PaymentEvent]):
    """Idempotency ledger keyed on ``external_event_id``."""

    def __init__(self):
        super().__init__(PaymentEventEntity, PaymentEvent)

    @trace_span
    async def get_by_external_id(self, external_event_id: str) -> Optional[PaymentEvent]:
        async with self._get_session() as session:
            result = await session.execute(
                select(PaymentEventEntity)
                .where(PaymentEventEntity.external_event_id == external_event_id)
                .execution_options(populate_existing=True)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def record(self, event: PaymentEventCreateModel) -> Optional[PaymentEvent]:
        """
        Insert the ledger row, provisionally ``applied``.

        Returns None when a row with the same ``external_event_id`` already
        exists (a concurrent duplicate delivery won the insert).
        """
        entity = PaymentEventEntity(
            external_event_id=event.external_event_id,
            provider=event.provider.value,
            user_id=event.user_id,
            tier_id=event.tier_id,
            billing_cycle=event.billing_cycle.value,
            payment_type=event.payment_type.value,
            amount=event.amount,
            currency=event.currency,
            coupon_code=event.coupon_code,
            external_subscription_id=event.external_subscription_id,
            status=PaymentEventStatus.APPLIED.value,
            final_amount=event.amount,
        )
        async with self._get_session() as session:
            try:
                async with session.begin_nested():
                    session.add(entity)
                    await session.flush()
            except IntegrityError:
                logger.info(
                    f"Duplicate payment event {event.external_event_id}",
                    extra={"external_event_id": event.external_event_id},
                )
                return None
            await session.refresh(entity)
            return self._entity_to_domain(entity)

    @trace_span
    async def mark_applied(
        self,
        payment_event_id: int,
        subscription_id: int,
        final_amount: Decimal,
    ) -> PaymentEvent:
        return await self._set_outcome(
            payment_event_id,
            status=PaymentEventStatus.APPLIED.value,
            subscription_id=subscription_id,
            final_amount=final_amount,
            rejection_reason=None,
        )

    @trace_span
    async def mark_rejected(
        self,
        payment_event_id: int,
        reason: str,
        subscription_id: Optional[int] = None,
    ) -> PaymentEvent:
        return await self._set_outcome(
            payment_event_id,
            status=PaymentEventStatus.REJECTED.value,
            rejection_reason=reason,
            subscription_id=subscription_id,
            final_amount=None,
        )

    async def _set_outcome(self, payment_event_id: int, **values) -> PaymentEvent:
        async with self._get_session() as session:
            await session.execute(
                update(PaymentEventEntity)
                .where(PaymentEventEntity.id == payment_event_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return await self.get(payment_event_id)

    @trace_span
    async def list_by_user(self, user_id: int, limit: int = 50) -> List[PaymentEvent]:
        async with self._get_session() as session:
            result = await session.execute(
                select(PaymentEventEntity)
                .where(PaymentEventEntity.user_id == user_id)
                .order_by(PaymentEventEntity.id.desc())
                .limit(limit)
            )
            return self._entities_to_domain(result.scalars().all())
