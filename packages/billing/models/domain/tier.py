"""
Domain model for pricing tiers.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from packages.billing.models.domain.enums import BillingCycle


class Tier(BaseModel):
    """Immutable catalog entry. ``token_limit``/``resource_access_limit`` None = unlimited."""

    id: int
    name: str
    display_name: str
    display_order: int
    monthly_price: Decimal
    yearly_price: Decimal
    token_limit: Optional[int] = None
    resource_access_limit: Optional[int] = None
    requires_scope_selection: bool = False
    max_scope_selections: Optional[int] = None
    referral_points_awarded: int = 0
    referral_points_cost: Optional[int] = None
    is_active: bool = True

    class Config:
        from_attributes = True

    def is_upgrade_from(self, other: "Tier") -> bool:
        return self.display_order > other.display_order

    def is_downgrade_from(self, other: "Tier") -> bool:
        return self.display_order < other.display_order

    def has_unlimited_tokens(self) -> bool:
        return self.token_limit is None

    def uses_recent_access_window(self) -> bool:
        """Entry-level tiers keep only the most recently accessed N resources."""
        return (
            self.resource_access_limit is not None and not self.requires_scope_selection
        )

    def price_for(self, billing_cycle: BillingCycle) -> Decimal:
        if billing_cycle == BillingCycle.YEARLY:
            return self.yearly_price
        return self.monthly_price
