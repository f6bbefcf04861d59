"""Database models for billing."""

from packages.billing.models.database.tier import TierEntity
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.database.payment_event import PaymentEventEntity
from packages.billing.models.database.coupon import CouponCodeEntity, CouponUsageEntity
from packages.billing.models.database.referral import ReferralCodeEntity, ReferralEntity

__all__ = [
    "TierEntity",
    "SubscriptionEntity",
    "PaymentEventEntity",
    "CouponCodeEntity",
    "CouponUsageEntity",
    "ReferralCodeEntity",
    "ReferralEntity",
]
