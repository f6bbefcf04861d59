"""
Subscription state machine.

Each ``SubscriptionEvent`` names the statuses it may fire from and the status
it leaves the row in (None = unchanged). ``SubscriptionRepository.transition``
enforces the table inside its guarded UPDATE.
"""

from typing import Dict, FrozenSet, NamedTuple, Optional

from packages.billing.models.domain.enums import SubscriptionEvent, SubscriptionStatus

ACTIVE = SubscriptionStatus.ACTIVE
CANCELLED = SubscriptionStatus.CANCELLED
EXPIRED = SubscriptionStatus.EXPIRED
SUSPENDED = SubscriptionStatus.SUSPENDED


class TransitionRule(NamedTuple):
    allowed_from: FrozenSet[SubscriptionStatus]
    target: Optional[SubscriptionStatus]


TRANSITIONS: Dict[SubscriptionEvent, TransitionRule] = {
    SubscriptionEvent.REQUEST_CANCELLATION: TransitionRule(frozenset({ACTIVE}), None),
    # cancelled -> active only before the term ends; the active-row index
    # rejects it once a replacement row exists
    SubscriptionEvent.REACTIVATE: TransitionRule(frozenset({ACTIVE, CANCELLED}), ACTIVE),
    SubscriptionEvent.RENEW: TransitionRule(frozenset({ACTIVE}), None),
    SubscriptionEvent.RESET_PERIOD: TransitionRule(frozenset({ACTIVE}), None),
    SubscriptionEvent.RECORD_ACCESS: TransitionRule(frozenset({ACTIVE}), None),
    SubscriptionEvent.UPDATE_SELECTION: TransitionRule(frozenset({ACTIVE}), None),
    SubscriptionEvent.SUPERSEDE: TransitionRule(frozenset({ACTIVE}), CANCELLED),
    SubscriptionEvent.FINALIZE_CANCELLATION: TransitionRule(
        frozenset({ACTIVE}), CANCELLED
    ),
    SubscriptionEvent.EXPIRE: TransitionRule(frozenset({ACTIVE, SUSPENDED}), EXPIRED),
    SubscriptionEvent.SUSPEND: TransitionRule(frozenset({ACTIVE}), SUSPENDED),
}


def rule_for(event: SubscriptionEvent) -> TransitionRule:
    return TRANSITIONS[event]


def can_fire(event: SubscriptionEvent, current: SubscriptionStatus) -> bool:
    return current in TRANSITIONS[event].allowed_from


def resulting_status(
    event: SubscriptionEvent, current: SubscriptionStatus
) -> SubscriptionStatus:
    target = TRANSITIONS[event].target
    return current if target is None else target
