import pytest

from packages.billing.models.domain.enums import SubscriptionEvent, SubscriptionStatus
from packages.billing.state_machine import TRANSITIONS, can_fire, resulting_status

ACTIVE = SubscriptionStatus.ACTIVE
CANCELLED = SubscriptionStatus.CANCELLED
EXPIRED = SubscriptionStatus.EXPIRED
SUSPENDED = SubscriptionStatus.SUSPENDED


def test_every_event_has_a_rule():
    assert set(TRANSITIONS) == set(SubscriptionEvent)


@pytest.mark.parametrize(
    "event,current,expected",
    [
        (SubscriptionEvent.SUPERSEDE, ACTIVE, CANCELLED),
        (SubscriptionEvent.FINALIZE_CANCELLATION, ACTIVE, CANCELLED),
        (SubscriptionEvent.EXPIRE, ACTIVE, EXPIRED),
        (SubscriptionEvent.EXPIRE, SUSPENDED, EXPIRED),
        (SubscriptionEvent.REACTIVATE, CANCELLED, ACTIVE),
        (SubscriptionEvent.RESET_PERIOD, ACTIVE, ACTIVE),
        (SubscriptionEvent.REQUEST_CANCELLATION, ACTIVE, ACTIVE),
    ],
)
def test_resulting_status(event, current, expected):
    assert can_fire(event, current)
    assert resulting_status(event, current) == expected


@pytest.mark.parametrize(
    "event,current",
    [
        (SubscriptionEvent.RESET_PERIOD, CANCELLED),
        (SubscriptionEvent.RECORD_ACCESS, EXPIRED),
        (SubscriptionEvent.REACTIVATE, EXPIRED),
        (SubscriptionEvent.SUPERSEDE, CANCELLED),
        (SubscriptionEvent.REQUEST_CANCELLATION, SUSPENDED),
    ],
)
def test_terminal_and_suspended_rows_reject_events(event, current):
    assert not can_fire(event, current)


def test_expired_rows_never_come_back():
    assert not any(can_fire(event, EXPIRED) for event in SubscriptionEvent)
