"""Billing repositories."""

from packages.billing.repositories.coupon_repository import (
    CouponCodeRepository,
    CouponUsageRepository,
)
from packages.billing.repositories.payment_event_repository import (
    PaymentEventRepository,
)
from packages.billing.repositories.referral_repository import (
    ReferralCodeRepository,
    ReferralRepository,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.tier_repository import TierRepository

__all__ = [
    "CouponCodeRepository",
    "CouponUsageRepository",
    "PaymentEventRepository",
    "ReferralCodeRepository",
    "ReferralRepository",
    "SubscriptionRepository",
    "TierRepository",
]
