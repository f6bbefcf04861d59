"""
AccessPolicyEvaluator: read-only "can this user do X" decisions.

Called on every content-serving request. Never writes; all reads go through
readonly sessions.
"""

from typing import Iterable, Optional

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.context import readonly
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.tier_repository import TierRepository
from packages.billing.services.quota_service import quota_for

logger = get_logger(__name__)


class AccessPolicyService:
    def __init__(self):
        self.subscription_repo = SubscriptionRepository()
        self.tier_repo = TierRepository()

    @trace_span
    @readonly
    async def can_access_resource(
        self,
        user_id: int,
        resource_id: str,
        resource_scope_ids: Optional[Iterable[str]] = None,
    ) -> bool:
        """
        Decide whether ``user_id`` may open ``resource_id``.

        - scope-restricted tiers: every scope of the resource must be in the
          user's selection; no selection or unknown scopes deny
        - entry tiers with a recent-access window: any resource while fewer
          than ``resource_access_limit`` were opened this period, after that
          only resources still in the window
        - everything else: allowed while the subscription is active
        """
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            return False

        tier = await self.tier_repo.get(subscription.tier_id)

        if tier.requires_scope_selection:
            if not subscription.selected_scope_ids or not resource_scope_ids:
                return False
            scopes = set(resource_scope_ids)
            return bool(scopes) and scopes.issubset(subscription.selected_scope_ids)

        if tier.uses_recent_access_window():
            if (
                subscription.resource_access_count_current_period
                < tier.resource_access_limit
            ):
                return True
            return resource_id in subscription.accessed_resource_ids

        return True

    @trace_span
    @readonly
    async def can_use_metered_feature(self, user_id: int) -> bool:
        subscription = await self.subscription_repo.get_active_by_user(user_id)
        if subscription is None:
            return False
        tier = await self.tier_repo.get(subscription.tier_id)
        return quota_for(subscription, tier).has_remaining()
