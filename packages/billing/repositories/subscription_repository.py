"""
Repository for subscriptions - the SubscriptionStateStore.

All status changes go through ``transition``, a single UPDATE guarded on
row id, expected version and the statuses the event may fire from.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import and_, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.repositories.base import BaseRepository
from packages.billing.clock import utcnow
from packages.billing.exceptions import (
    ConflictError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.database.tier import TierEntity
from packages.billing.models.domain.enums import (
    BillingCycle,
    SubscriptionEvent,
    SubscriptionStatus,
)
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
)
from packages.billing.state_machine import rule_for

logger = get_logger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for user subscriptions."""

    def __init__(self):
        super().__init__(SubscriptionEntity, Subscription)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @trace_span
    async def acquire_user_lock(self, user_id: int) -> None:
        """
        Serialize billing mutations for one user.

        Uses pg_advisory_xact_lock, released when the transaction commits or
        rolls back. Other dialects rely on the version guard and the
        active-row unique index alone.
        """
        async with self._get_session() as session:
            if session.get_bind().dialect.name != "postgresql":
                return
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:user_id)"),
                {"user_id": user_id},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @trace_span
    async def get_active_by_user(
        self, user_id: int, for_update: bool = False
    ) -> Optional[Subscription]:
        """The user's active subscription, if any."""
        query = (
            select(SubscriptionEntity)
            .where(
                SubscriptionEntity.user_id == user_id,
                SubscriptionEntity.status == ACTIVE,
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        async with self._get_session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()

        if len(rows) > 1:
            logger.error(
                f"Invariant violation: {len(rows)} active subscriptions for user {user_id}",
                extra={
                    "user_id": user_id,
                    "subscription_ids": [row.id for row in rows],
                    "operator_alert": True,
                },
            )
            raise InvariantViolation(
                f"User {user_id} has {len(rows)} active subscriptions"
            )
        return self._entity_to_domain(rows[0]) if rows else None

    @trace_span
    async def get_latest_by_user(self, user_id: int) -> Optional[Subscription]:
        """Most recently created row for the user, whatever its status."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.user_id == user_id)
                .order_by(SubscriptionEntity.id.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def list_by_user(self, user_id: int) -> List[Subscription]:
        """Full history for a user, oldest first."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(SubscriptionEntity.user_id == user_id)
                .order_by(SubscriptionEntity.id)
                .execution_options(populate_existing=True)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get_active_by_external_id(
        self, external_subscription_id: str
    ) -> Optional[Subscription]:
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionEntity)
                .where(
                    SubscriptionEntity.external_subscription_id
                    == external_subscription_id,
                    SubscriptionEntity.status == ACTIVE,
                )
                .execution_options(populate_existing=True)
            )
            entity = result.scalars().first()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def count_active_by_user(self, user_id: int) -> int:
        async with self._get_session() as session:
            result = await session.execute(
                select(func.count(SubscriptionEntity.id)).where(
                    SubscriptionEntity.user_id == user_id,
                    SubscriptionEntity.status == ACTIVE,
                )
            )
            return result.scalar_one()

    # ------------------------------------------------------------------
    # Scheduler selections (row-locked, skip on contention)
    # ------------------------------------------------------------------

    @trace_span
    async def list_due_for_reset(
        self, now: datetime, limit: int, after_id: int = 0
    ) -> List[Subscription]:
        """
        Active, recurring rows whose quota period has ended and whose term
        (if any) is still running. Monthly rows never wait on the term.
        """
        query = (
            select(SubscriptionEntity)
            .where(
                SubscriptionEntity.status == ACTIVE,
                SubscriptionEntity.period_end_date < now,
                SubscriptionEntity.is_recurring.is_(True),
                or_(
                    SubscriptionEntity.billing_cycle == BillingCycle.MONTHLY.value,
                    SubscriptionEntity.subscription_end_date.is_(None),
                    SubscriptionEntity.subscription_end_date > now,
                ),
                SubscriptionEntity.id > after_id,
            )
            .order_by(SubscriptionEntity.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        async with self._get_session() as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def list_due_for_expiry(
        self, now: datetime, limit: int, after_id: int = 0
    ) -> List[Subscription]:
        """
        Active rows whose grant is over:
        - yearly rows past their term
        - non-recurring rows past their period
        - rows cancelled at period end whose effective end has passed
          (term for yearly, period for everything else)

        Ordered by id so batches can resume from a cursor.
        """
        yearly = SubscriptionEntity.billing_cycle == BillingCycle.YEARLY.value
        query = (
            select(SubscriptionEntity)
            .where(
                SubscriptionEntity.status == ACTIVE,
                SubscriptionEntity.id > after_id,
                or_(
                    and_(
                        yearly,
                        SubscriptionEntity.subscription_end_date.is_not(None),
                        SubscriptionEntity.subscription_end_date < now,
                    ),
                    and_(
                        SubscriptionEntity.is_recurring.is_(False),
                        SubscriptionEntity.period_end_date < now,
                    ),
                    and_(
                        SubscriptionEntity.cancel_at_period_end.is_(True),
                        or_(
                            and_(
                                yearly,
                                SubscriptionEntity.subscription_end_date.is_not(None),
                                SubscriptionEntity.subscription_end_date < now,
                            ),
                            and_(
                                or_(
                                    ~yearly,
                                    SubscriptionEntity.subscription_end_date.is_(None),
                                ),
                                SubscriptionEntity.period_end_date < now,
                            ),
                        ),
                    ),
                ),
            )
            .order_by(SubscriptionEntity.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        async with self._get_session() as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @trace_span
    async def create_active(self, create_model: SubscriptionCreateModel) -> Subscription:
        """
        Insert a new active row.

        Runs in a savepoint so a collision with an existing active row
        surfaces as ``ConflictError(already_active)`` without poisoning the
        caller's transaction.
        """
        data = create_model.model_dump(exclude_none=True)
        entity = SubscriptionEntity(**data)
        async with self._get_session() as session:
            try:
                async with session.begin_nested():
                    session.add(entity)
                    await session.flush()
            except IntegrityError as e:
                logger.warning(
                    f"Active subscription already exists for user {create_model.user_id}",
                    extra={"user_id": create_model.user_id, "error": str(e.orig)},
                )
                raise ConflictError(
                    f"User {create_model.user_id} already has an active subscription",
                    reason="already_active",
                ) from e
            await session.refresh(entity)
            return self._entity_to_domain(entity)

    @trace_span
    async def transition(
        self,
        subscription_id: int,
        event: SubscriptionEvent,
        expected_version: int,
        **changes: Any,
    ) -> Subscription:
        """
        Apply a state-machine event with optimistic concurrency.

        One UPDATE guarded on id, ``expected_version`` and the statuses the
        event may fire from; bumps ``version``. Zero rows means the row moved
        underneath the caller (``ConflictError``) or the event is not allowed
        from its current status (``ValidationError(invalid_transition)``).
        """
        rule = rule_for(event)
        now = utcnow()
        values = dict(changes)
        values["version"] = SubscriptionEntity.version + 1
        values["updated_at"] = now
        if rule.target is not None:
            values["status"] = rule.target.value
            if rule.target.is_terminal():
                values.setdefault("ended_at", now)
            elif rule.target == SubscriptionStatus.ACTIVE:
                values.setdefault("ended_at", None)

        statement = (
            update(SubscriptionEntity)
            .where(
                SubscriptionEntity.id == subscription_id,
                SubscriptionEntity.version == expected_version,
                SubscriptionEntity.status.in_([s.value for s in rule.allowed_from]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self._get_session() as session:
            try:
                async with session.begin_nested():
                    result = await session.execute(statement)
            except IntegrityError as e:
                raise ConflictError(
                    f"Subscription {subscription_id} cannot become active, user already has an active subscription",
                    reason="already_active",
                ) from e

        if result.rowcount == 0:
            await self._raise_for_failed_transition(
                subscription_id, event, expected_version
            )

        updated = await self.get(subscription_id)
        logger.info(
            f"Subscription {subscription_id} {event.value}: v{expected_version} -> v{updated.version}",
            extra={
                "subscription_id": subscription_id,
                "user_id": updated.user_id,
                "event": event.value,
                "status": updated.status.value,
            },
        )
        return updated

    async def _raise_for_failed_transition(
        self, subscription_id: int, event: SubscriptionEvent, expected_version: int
    ) -> None:
        current = await self.get(subscription_id)
        if current is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                reason="subscription_not_found",
            )
        if current.version != expected_version:
            raise ConflictError(
                f"Subscription {subscription_id} was modified concurrently "
                f"(expected v{expected_version}, found v{current.version})",
                reason="version_conflict",
            )
        raise ValidationError(
            f"Cannot {event.value} a {current.status.value} subscription",
            reason="invalid_transition",
        )

    @trace_span
    async def increment_tokens_guarded(self, subscription_id: int, amount: int) -> bool:
        """
        Add ``amount`` to the period's token usage if it fits the effective limit.

        Single UPDATE with the limit check in its WHERE clause, never
        read-then-write. Usage increments commute, so they do not bump
        ``version`` and never conflict with lifecycle transitions.
        """
        tier_limit = (
            select(TierEntity.token_limit)
            .where(TierEntity.id == SubscriptionEntity.tier_id)
            .scalar_subquery()
        )
        effective_limit = func.coalesce(SubscriptionEntity.token_limit_override, tier_limit)

        statement = (
            update(SubscriptionEntity)
            .where(
                SubscriptionEntity.id == subscription_id,
                SubscriptionEntity.status == ACTIVE,
                or_(
                    SubscriptionEntity.carryover_unlimited.is_(True),
                    effective_limit.is_(None),
                    SubscriptionEntity.tokens_used_current_period + amount
                    <= effective_limit,
                ),
            )
            .values(
                tokens_used_current_period=SubscriptionEntity.tokens_used_current_period
                + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._get_session() as session:
            result = await session.execute(statement)
            return result.rowcount > 0

    @trace_span
    async def clear_selections_not_required(self) -> int:
        """Null out selections on active rows whose tier does not use them."""
        tiers_without_selection = select(TierEntity.id).where(
            TierEntity.requires_scope_selection.is_(False)
        )
        statement = (
            update(SubscriptionEntity)
            .where(
                SubscriptionEntity.status == ACTIVE,
                SubscriptionEntity.selected_scope_ids.is_not(None),
                SubscriptionEntity.tier_id.in_(tiers_without_selection),
            )
            .values(
                selected_scope_ids=None,
                version=SubscriptionEntity.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._get_session() as session:
            result = await session.execute(statement)
            return result.rowcount
