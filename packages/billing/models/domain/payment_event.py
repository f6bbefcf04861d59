"""
Domain models for payment events.

``PaymentEventCreateModel`` is the normalised notification every gateway
adapter produces; ``PaymentEvent`` is the ledger row recording what the
ingester did with it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentEventStatus,
    PaymentProvider,
    PaymentType,
)


class PaymentEventCreateModel(BaseModel):
    """A completed payment as reported by a gateway adapter."""

    external_event_id: str = Field(..., min_length=1, max_length=255)
    provider: PaymentProvider
    user_id: int
    tier_id: int
    billing_cycle: BillingCycle
    payment_type: PaymentType
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    coupon_code: Optional[str] = None
    external_subscription_id: Optional[str] = None

    @field_validator("currency", mode="after")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("coupon_code", mode="after")
    @classmethod
    def blank_coupon_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class PaymentEvent(BaseModel):
    """Ledger row for an ingested payment event."""

    id: int
    external_event_id: str
    provider: PaymentProvider
    user_id: int
    tier_id: int
    billing_cycle: BillingCycle
    payment_type: PaymentType
    amount: Decimal
    currency: str
    coupon_code: Optional[str] = None
    external_subscription_id: Optional[str] = None
    status: PaymentEventStatus
    rejection_reason: Optional[str] = None
    subscription_id: Optional[int] = None
    final_amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IngestResult(BaseModel):
    """Outcome of ``ingest``. ``applied`` is False for replays and rejections."""

    subscription_id: Optional[int] = None
    applied: bool
    status: PaymentEventStatus
    reason: Optional[str] = None
    final_amount: Optional[Decimal] = None

    @classmethod
    def from_ledger(cls, event: PaymentEvent, applied: bool) -> "IngestResult":
        return cls(
            subscription_id=event.subscription_id,
            applied=applied,
            status=event.status,
            reason=event.rejection_reason,
            final_amount=event.final_amount,
        )
