"""
Pure billing arithmetic: quota periods, contractual terms, upgrade carryover,
coupon discounts and the most-recently-accessed resource window.

Nothing here touches the database, so the rules are unit-testable on their own.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from packages.billing.models.domain.enums import BillingCycle, PaymentType

ONE_MONTH = relativedelta(months=1)
ONE_YEAR = relativedelta(years=1)
CENT = Decimal("0.01")


@dataclass(frozen=True)
class PaymentTerms:
    """Period, term and recurrence granted by one successful payment."""

    period_start_date: datetime
    period_end_date: datetime
    subscription_end_date: Optional[datetime]
    is_recurring: bool


def compute_payment_terms(
    now: datetime, billing_cycle: BillingCycle, payment_type: PaymentType
) -> PaymentTerms:
    """
    The quota period is always one month. The term is one year for yearly
    payments, one month for one-time monthly payments, open-ended otherwise.

    Yearly grants are recurring so monthly refills continue inside the
    prepaid term, whether or not the gateway will charge again.
    """
    if billing_cycle == BillingCycle.YEARLY:
        term_end = now + ONE_YEAR
    elif payment_type == PaymentType.ONE_TIME:
        term_end = now + ONE_MONTH
    else:
        term_end = None

    return PaymentTerms(
        period_start_date=now,
        period_end_date=clamp_to_term(now + ONE_MONTH, term_end),
        subscription_end_date=term_end,
        is_recurring=is_recurring_grant(billing_cycle, payment_type),
    )


def is_recurring_grant(billing_cycle: BillingCycle, payment_type: PaymentType) -> bool:
    """Whether a grant paid this way refills every period until its term or cancellation."""
    return billing_cycle == BillingCycle.YEARLY or payment_type == PaymentType.RECURRING


def clamp_to_term(period_end: datetime, term_end: Optional[datetime]) -> datetime:
    """A quota period never outlives the contractual term."""
    if term_end is not None and period_end > term_end:
        return term_end
    return period_end


def next_period(
    previous_end: datetime, now: datetime, term_end: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """
    Advance a quota period from the previous period end, never from ``now``.

    A scheduler that was down for several months skips the missed periods
    instead of drifting, and the new period always contains ``now``.
    """
    start = previous_end
    months = 1
    end = previous_end + relativedelta(months=months)
    while end <= now:
        months += 1
        start = end
        end = previous_end + relativedelta(months=months)
    return start, clamp_to_term(end, term_end)


@dataclass(frozen=True)
class Capacity:
    """Token capacity after a tier change. ``token_limit_override`` is None when unlimited."""

    token_limit_override: Optional[int]
    carryover_unlimited: bool


def effective_limit(
    tier_token_limit: Optional[int],
    token_limit_override: Optional[int],
    carryover_unlimited: bool = False,
) -> Optional[int]:
    """Limit in force for a subscription, None meaning unlimited."""
    if carryover_unlimited:
        return None
    if token_limit_override is not None:
        return token_limit_override
    return tier_token_limit


def remaining_tokens(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return max(limit - used, 0)


def compute_upgrade_capacity(
    used: int, remaining_before: Optional[int], new_tier_token_limit: Optional[int]
) -> Capacity:
    """
    Additive carryover on upgrade.

    The override is ``remaining_before + new_tier_token_limit`` and the usage
    counter is carried over unchanged. Unlimited on either side stays
    unlimited. When carried-over usage exceeds the new tier's own allowance
    (only possible after chained upgrades) the allowance is raised to
    ``used`` so the upgrade never leaves the user with less than they had.
    """
    if new_tier_token_limit is None:
        # The tier itself is unlimited
        return Capacity(token_limit_override=None, carryover_unlimited=False)
    if remaining_before is None:
        return Capacity(token_limit_override=None, carryover_unlimited=True)
    return Capacity(
        token_limit_override=remaining_before + max(new_tier_token_limit, used),
        carryover_unlimited=False,
    )


def apply_discount(
    original_amount: Decimal, discount_percentage: int
) -> Tuple[Decimal, Decimal]:
    """Return ``(discount_amount, final_amount)``, rounded to cents."""
    discount = (original_amount * Decimal(discount_percentage) / Decimal(100)).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    if discount > original_amount:
        discount = original_amount
    return discount, (original_amount - discount).quantize(CENT)


def touch_recent(
    accessed: List[str], resource_id: str, capacity: Optional[int]
) -> Tuple[List[str], bool]:
    """
    Mark ``resource_id`` most recently used in an LRU window of ``capacity``.

    ``accessed`` is ordered least-recent first. Returns the new window and
    whether the resource was new to it. Unbounded windows (capacity None)
    keep everything.
    """
    window = [r for r in accessed if r != resource_id]
    is_new = len(window) == len(accessed)
    window.append(resource_id)
    if capacity is not None and len(window) > capacity:
        window = window[len(window) - capacity :]
    return window, is_new
