import warnings
from datetime import datetime, timezone

from packages.billing.calculations import ONE_MONTH
from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentProvider,
    PaymentType,
)
from packages.billing.models.domain.subscription import SubscriptionCreateModel


def test_create_model_dumps_plain_strings():
    start = datetime(2026, 5, 1, tzinfo=timezone.utc)
    model = SubscriptionCreateModel(
        user_id=1,
        tier_id=3,
        billing_cycle=BillingCycle.YEARLY,
        payment_provider=PaymentProvider.MANUAL,
        payment_type=PaymentType.ONE_TIME,
        is_recurring=True,
        period_start_date=start,
        period_end_date=start + ONE_MONTH,
    )

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        dumped = model.model_dump(exclude_none=True)

    assert dumped["billing_cycle"] == "yearly"
    assert dumped["payment_provider"] == "manual"
    assert dumped["payment_type"] == "one_time"
    # Defaults are validated too
    assert dumped["status"] == "active"


def test_create_model_accepts_raw_values():
    start = datetime(2026, 5, 1, tzinfo=timezone.utc)
    model = SubscriptionCreateModel(
        user_id=1,
        tier_id=1,
        payment_provider="free",
        is_recurring=True,
        period_start_date=start,
        period_end_date=start + ONE_MONTH,
    )

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        dumped = model.model_dump()

    assert dumped["payment_provider"] == "free"
    assert dumped["billing_cycle"] == "monthly"
    assert dumped["payment_type"] == "recurring"
