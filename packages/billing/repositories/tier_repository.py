"""
Repository for the tier catalog.
"""

from typing import List, Optional
from sqlalchemy import select

from common.repositories.base import BaseRepository
from packages.billing.models.database.tier import TierEntity
from packages.billing.models.domain.tier import Tier
from common.core.otel_axiom_exporter import trace_span


class TierRepository(BaseRepository[TierEntity, Tier]):
    """Read access to the seeded tier catalog."""

    def __init__(self):
        super().__init__(TierEntity, Tier)

    @trace_span
    async def get_by_name(self, name: str) -> Optional[Tier]:
        async with self._get_session() as session:
            result = await session.execute(
                select(TierEntity).where(TierEntity.name == name)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def list_active(self) -> List[Tier]:
        """Active tiers in display order."""
        async with self._get_session() as session:
            result = await session.execute(
                select(TierEntity)
                .where(TierEntity.is_active.is_(True))
                .order_by(TierEntity.display_order)
            )
            return self._entities_to_domain(result.scalars().all())
