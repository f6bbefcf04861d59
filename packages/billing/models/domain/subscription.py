"""
Domain models for subscriptions.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from packages.billing.clock import as_utc
from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentProvider,
    PaymentType,
    SubscriptionStatus,
)

_DATETIME_FIELDS = (
    "period_start_date",
    "period_end_date",
    "subscription_end_date",
    "cancellation_requested_at",
    "ended_at",
    "created_at",
    "updated_at",
)


class Subscription(BaseModel):
    """
    A user's grant of a tier.

    Two nested clocks:
    - quota period (``period_start_date``/``period_end_date``), always a month
    - contractual term (``subscription_end_date``), None = until cancelled
    """

    id: int
    user_id: int
    tier_id: int

    status: SubscriptionStatus
    billing_cycle: BillingCycle
    payment_provider: PaymentProvider
    external_subscription_id: Optional[str] = None
    payment_type: PaymentType = PaymentType.RECURRING

    is_recurring: bool
    cancel_at_period_end: bool = False
    cancellation_reason: Optional[str] = None
    cancellation_requested_at: Optional[datetime] = None

    period_start_date: datetime
    period_end_date: datetime
    subscription_end_date: Optional[datetime] = None

    tokens_used_current_period: int = 0
    token_limit_override: Optional[int] = None
    carryover_unlimited: bool = False
    resource_access_count_current_period: int = 0
    accessed_resource_ids: List[str] = Field(default_factory=list)

    selected_scope_ids: Optional[List[str]] = None

    version: int

    ended_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator(*_DATETIME_FIELDS, mode="after")
    @classmethod
    def ensure_utc(cls, v):
        return as_utc(v)

    @field_validator("accessed_resource_ids", mode="before")
    @classmethod
    def default_access_list(cls, v):
        return v or []

    def has_access(self) -> bool:
        return self.status.has_access()

    def cancellation_effective_date(self) -> datetime:
        """Yearly grants run to the end of the prepaid term, others to the period end."""
        if (
            self.billing_cycle == BillingCycle.YEARLY
            and self.subscription_end_date is not None
        ):
            return self.subscription_end_date
        return self.period_end_date


class SubscriptionCreateModel(BaseModel):
    """Model for creating a new active subscription row."""

    user_id: int
    tier_id: int
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    payment_provider: PaymentProvider
    external_subscription_id: Optional[str] = None
    payment_type: PaymentType = PaymentType.RECURRING
    is_recurring: bool
    period_start_date: datetime
    period_end_date: datetime
    subscription_end_date: Optional[datetime] = None
    tokens_used_current_period: int = 0
    token_limit_override: Optional[int] = None
    carryover_unlimited: bool = False
    resource_access_count_current_period: int = 0
    accessed_resource_ids: List[str] = Field(default_factory=list)
    selected_scope_ids: Optional[List[str]] = None

    class Config:
        # Entities store plain strings
        use_enum_values = True
        validate_default = True
