"""
Billing error taxonomy.

Every error carries a machine-readable ``reason`` (``tier_mismatch``,
``token_limit_reached``, ``coupon_expired``, ``already_active``, ...) which the
API renders next to the message.
"""

from common.core.exceptions import (
    AppException,
    ConflictError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppException",
    "ConflictError",
    "NotFoundError",
    "ValidationError",
    "InvalidCouponError",
    "DowngradeNotAllowedError",
    "QuotaExceededError",
    "ExternalGatewayError",
    "InvariantViolation",
]


class InvalidCouponError(ValidationError):
    """Coupon missing, inactive, outside its window, exhausted or not applicable."""

    default_reason = "coupon_invalid"


class DowngradeNotAllowedError(AppException):
    """Moving to a lower-ranked tier while a subscription is active."""

    status_code = 409
    default_reason = "downgrade_not_allowed"


class QuotaExceededError(AppException):
    """Usage recording rejected. A business outcome, not a system fault."""

    status_code = 429
    default_reason = "token_limit_reached"


class ExternalGatewayError(AppException):
    """Transient failure talking to a payment gateway. The gateway retries the delivery."""

    status_code = 503
    default_reason = "gateway_unavailable"


class InvariantViolation(AppException):
    """State that must never exist, e.g. two active rows for one user.

    The offending write is rolled back and an operator alert is logged, the
    ambiguity is never auto-resolved.
    """

    status_code = 500
    default_reason = "invariant_violation"
