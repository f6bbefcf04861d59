"""
Billing enums - strongly typed enumerations for subscription and billing states.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """
    Subscription status lifecycle.

    Flow: active -> cancelled | expired (terminal, replaced by a fresh active
    row), active -> suspended (reserved for payment failure).
    """

    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SUSPENDED = "suspended"

    def has_access(self) -> bool:
        """Check if this status allows product access."""
        return self == SubscriptionStatus.ACTIVE

    def is_terminal(self) -> bool:
        """Terminal rows are historical records."""
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


class SubscriptionEvent(str, Enum):
    """Named state-machine transitions applied through SubscriptionRepository.transition."""

    REQUEST_CANCELLATION = "request_cancellation"
    REACTIVATE = "reactivate"
    RENEW = "renew"
    RESET_PERIOD = "reset_period"
    RECORD_ACCESS = "record_access"
    UPDATE_SELECTION = "update_selection"
    SUPERSEDE = "supersede"
    FINALIZE_CANCELLATION = "finalize_cancellation"
    EXPIRE = "expire"
    SUSPEND = "suspend"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PaymentType(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"


class PaymentProvider(str, Enum):
    """Where a subscription grant came from."""

    FREE = "free"  # signup / expiration fallback grant
    STRIPE = "stripe"
    PAYPAL = "paypal"
    MANUAL = "manual"  # operator-approved bank transfer
    POINTS = "points"  # referral points redemption

    def is_paid(self) -> bool:
        return self not in (PaymentProvider.FREE, PaymentProvider.POINTS)


class PaymentEventStatus(str, Enum):
    """Processing outcome recorded in the payment event ledger."""

    APPLIED = "applied"
    REJECTED = "rejected"
