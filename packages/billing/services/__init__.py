"""Billing services."""

from packages.billing.services.access_policy_service import AccessPolicyService
from packages.billing.services.coupon_service import CouponService
from packages.billing.services.lifecycle_service import LifecycleRunResult, LifecycleService
from packages.billing.services.payment_ingestion_service import PaymentIngestionService
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.referral_service import ReferralService
from packages.billing.services.subscription_service import SubscriptionService

__all__ = [
    "AccessPolicyService",
    "CouponService",
    "LifecycleRunResult",
    "LifecycleService",
    "PaymentIngestionService",
    "QuotaService",
    "ReferralService",
    "SubscriptionService",
]
