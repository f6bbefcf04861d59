"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentEventStatus,
    PaymentProvider,
    PaymentType,
    SubscriptionEvent,
    SubscriptionStatus,
)
from packages.billing.models.domain.tier import Tier
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.models.domain.payment_event import (
    IngestResult,
    PaymentEvent,
    PaymentEventCreateModel,
)
from packages.billing.models.domain.coupon import (
    CouponCode,
    CouponCodeCreateModel,
    CouponUsage,
    CouponValidation,
)
from packages.billing.models.domain.quota import EffectiveQuota, RemainingQuota
from packages.billing.models.domain.referral import Referral, ReferralCode

__all__ = [
    # Enums
    "BillingCycle",
    "PaymentEventStatus",
    "PaymentProvider",
    "PaymentType",
    "SubscriptionEvent",
    "SubscriptionStatus",
    # Catalog
    "Tier",
    # Subscription
    "Subscription",
    "SubscriptionCreateModel",
    # Payments
    "IngestResult",
    "PaymentEvent",
    "PaymentEventCreateModel",
    # Coupons
    "CouponCode",
    "CouponCodeCreateModel",
    "CouponUsage",
    "CouponValidation",
    # Quota
    "EffectiveQuota",
    "RemainingQuota",
    # Referrals
    "Referral",
    "ReferralCode",
]
