"""
Domain models for Stripe webhook payloads.

Only the fields the gateway adapter reads. Checkout sessions and Stripe
subscriptions carry our ``user_id``/``tier_id``/``billing_cycle`` in metadata.
"""

from decimal import Decimal
from typing import Any, Optional
from enum import Enum
from pydantic import BaseModel, Field


class StripeWebhookType(str, Enum):
    """Stripe webhook event types we act on."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class StripeMetadata(BaseModel):
    """Billing metadata attached when the checkout is created."""

    user_id: Optional[str] = None
    tier_id: Optional[str] = None
    billing_cycle: Optional[str] = None
    coupon_code: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.user_id and self.tier_id and self.billing_cycle)


class StripeCheckoutSessionData(BaseModel):
    """Stripe checkout session object."""

    id: str
    mode: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    payment_status: str
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)


class StripeSubscriptionDetails(BaseModel):
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)


class StripeInvoiceData(BaseModel):
    """Stripe invoice object."""

    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    subscription_details: Optional[StripeSubscriptionDetails] = None
    billing_reason: Optional[str] = None
    amount_paid: int
    currency: str


class StripeSubscriptionData(BaseModel):
    """Stripe subscription object."""

    id: str
    customer: Optional[str] = None
    status: str
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)


class StripeEventData(BaseModel):
    """Stripe event data wrapper."""

    object: dict[str, Any]


class StripeWebhookPayload(BaseModel):
    """Complete Stripe webhook payload. ``type`` stays a string so unknown types are acknowledged."""

    id: str
    type: str
    data: StripeEventData
    created: int
    livemode: bool


def cents_to_amount(cents: Optional[int]) -> Decimal:
    """Stripe amounts are in the currency's minor unit."""
    return (Decimal(cents or 0) / Decimal(100)).quantize(Decimal("0.01"))
