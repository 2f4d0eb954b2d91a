"""
Subscription lifecycle management.

Owns the active / expired / suspended state machine, admin transitions and
the lazy, read-triggered corrections: a record whose end date has passed is
flipped to expired, the monthly browse window is restarted once it is 30
days old, and an expiring-soon warning is raised once per period. These
corrections are applied whenever a record is read through this manager and
persisted with a compare-and-swap, so concurrent readers never double-apply
them.
"""
import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from entitlements.core import config
from entitlements.core.errors import ConcurrencyConflict, InvalidTransition, NotFound
from entitlements.core.plan_catalog import DEFAULT_FREE_PLAN, SubscriptionPlan
from entitlements.core.timeutils import Clock, ensure_utc, utcnow
from entitlements.services.entitlement_store import EntitlementStore, retry_on_conflict
from entitlements.services.notification_service import (
    LoggingNotificationTrigger,
    NotificationDispatcher,
    NotificationEvent,
    NotificationType,
)
from entitlements.services.types import (
    Page,
    SubscriptionFilters,
    SubscriptionStats,
    SubscriptionStatus,
    SweepReport,
    UserSubscription,
)

logger = logging.getLogger(__name__)

# Fallback subscriptions never lapse on their own
FREE_PLAN_PERIOD = timedelta(days=36500)

Change = Callable[[UserSubscription, datetime], Tuple[UserSubscription, List[NotificationEvent]]]


def get_days_remaining(end_date: datetime, now: datetime) -> int:
    """Whole days until ``end_date``, rounded up; negative once it has passed."""
    seconds = (ensure_utc(end_date) - ensure_utc(now)).total_seconds()
    return math.ceil(seconds / 86400)


def is_expiring_soon(end_date: datetime, now: datetime, window_days: int = config.EXPIRING_SOON_DAYS) -> bool:
    days = get_days_remaining(end_date, now)
    return 0 < days <= window_days


def append_note(notes: Optional[str], now: datetime, action: str, text: Optional[str]) -> str:
    line = f"[{now.isoformat()}] {action.upper()}"
    if text:
        line = f"{line}: {text.strip()}"
    return f"{notes}\n{line}" if notes else line


def synthesize_free_subscription(user_id: str, now: datetime) -> UserSubscription:
    """Non-persisted fallback record for a user with no assigned subscription."""
    return UserSubscription(
        id=None,
        user_id=user_id,
        subscription_plan_id=DEFAULT_FREE_PLAN.id,
        start_date=now,
        end_date=now + FREE_PLAN_PERIOD,
        status=SubscriptionStatus.ACTIVE,
        last_browse_reset_at=now,
        assigned_by="system",
        created_at=now,
        updated_at=now,
    )


class LifecycleManager:
    """State transitions, lazy corrections and the admin surface for subscriptions."""

    def __init__(
        self,
        store: EntitlementStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Clock = utcnow,
        *,
        browse_reset_days: int = config.BROWSE_RESET_DAYS,
        expiring_soon_days: int = config.EXPIRING_SOON_DAYS,
        max_retries: int = config.MAX_CONCURRENCY_RETRIES,
    ):
        self.store = store
        self.dispatcher = dispatcher or NotificationDispatcher(LoggingNotificationTrigger())
        self.clock = clock
        self.browse_reset_period = timedelta(days=browse_reset_days)
        self.expiring_soon_days = expiring_soon_days
        self.max_retries = max_retries

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    # ------------------------------------------------------------------
    # Resolution and lazy corrections
    # ------------------------------------------------------------------

    def load(self, user_id: str) -> UserSubscription:
        """The user's stored record, or the synthesized free-plan fallback."""
        try:
            return self.store.get_by_user_id(user_id)
        except NotFound:
            return synthesize_free_subscription(user_id, self.now())

    def resolve_plan(self, plan_id: str) -> SubscriptionPlan:
        try:
            return self.store.get_plan(plan_id)
        except NotFound:
            logger.warning(f"Subscription references unknown plan {plan_id}, using {DEFAULT_FREE_PLAN.id}")
            return DEFAULT_FREE_PLAN

    def evaluate(
        self,
        subscription: UserSubscription,
        now: datetime,
        *,
        reset_browse: bool = False,
    ) -> Tuple[UserSubscription, List[NotificationEvent]]:
        """
        Apply due lazy corrections to a record without persisting it.

        Returns the same object when nothing changed, so callers can use an
        identity check to decide whether a write is needed.
        """
        events: List[NotificationEvent] = []
        current = subscription

        if current.status == SubscriptionStatus.ACTIVE and now > current.end_date:
            current = replace(current, status=SubscriptionStatus.EXPIRED)
            events.append(NotificationEvent(
                user_id=current.user_id,
                type=NotificationType.SUBSCRIPTION_EXPIRED,
                payload={
                    "subscription_id": current.id,
                    "plan_id": current.subscription_plan_id,
                    "end_date": current.end_date.isoformat(),
                    "reason": "period_ended",
                },
            ))

        if current.status != SubscriptionStatus.ACTIVE:
            return current, events

        if (
            current.is_persisted
            and current.expiry_warning_sent_at is None
            and is_expiring_soon(current.end_date, now, self.expiring_soon_days)
        ):
            current = replace(current, expiry_warning_sent_at=now)
            events.append(NotificationEvent(
                user_id=current.user_id,
                type=NotificationType.SUBSCRIPTION_EXPIRING_SOON,
                payload={
                    "subscription_id": current.id,
                    "plan_id": current.subscription_plan_id,
                    "end_date": current.end_date.isoformat(),
                    "days_remaining": get_days_remaining(current.end_date, now),
                },
            ))

        if reset_browse and now - current.last_browse_reset_at >= self.browse_reset_period:
            current = replace(current, browse_count_used=0, last_browse_reset_at=now)

        return current, events

    def refresh(self, user_id: str, *, reset_browse: bool = False) -> UserSubscription:
        """
        Read a user's record with lazy corrections applied and persisted.

        The synthesized fallback is returned as-is and never written.
        """
        def operation():
            now = self.now()
            current = self.load(user_id)
            candidate, events = self.evaluate(current, now, reset_browse=reset_browse)
            if candidate is not current and candidate.is_persisted:
                candidate = self.store.save(replace(candidate, updated_at=now))
                logger.info(
                    f"Lazy correction applied: user_id={user_id}, status={candidate.status.value}, "
                    f"browse_used={candidate.browse_count_used}"
                )
            return candidate, events

        subscription, events = retry_on_conflict(
            operation, retries=self.max_retries, description=f"refresh user_id={user_id}"
        )
        self.dispatcher.emit(events)
        return subscription

    def get(self, subscription_id: int) -> UserSubscription:
        return self._transition(subscription_id, None, lambda sub, now: (sub, []))

    def get_for_user(self, user_id: str) -> UserSubscription:
        """Stored record for a user (lazily corrected). Raises NotFound if none is assigned."""
        self.store.get_by_user_id(user_id)
        return self.refresh(user_id)

    def get_days_remaining(self, end_date: datetime) -> int:
        return get_days_remaining(end_date, self.now())

    def is_expiring_soon(self, end_date: datetime) -> bool:
        return is_expiring_soon(end_date, self.now(), self.expiring_soon_days)

    # ------------------------------------------------------------------
    # Admin surface
    # ------------------------------------------------------------------

    def assign(
        self,
        user_id: str,
        plan_id: str,
        start_date: datetime,
        end_date: datetime,
        *,
        assigned_by: str = "admin",
        notes: Optional[str] = None,
    ) -> UserSubscription:
        """
        Place a user on a plan for a period.

        Replaces the user's existing record in place (one row per user):
        counters start from zero and any cancellation is cleared.
        """
        start_date = ensure_utc(start_date)
        end_date = ensure_utc(end_date)
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")
        plan = self.store.get_plan(plan_id)
        if not plan.is_active:
            raise InvalidTransition(f"Plan {plan_id} is not active and cannot be assigned")

        def operation():
            now = self.now()
            note = append_note(None, now, "assigned", f"{plan.display_name} by {assigned_by}" + (f" ({notes})" if notes else ""))
            try:
                existing = self.store.get_by_user_id(user_id)
            except NotFound:
                existing = None

            if existing is None:
                candidate = UserSubscription(
                    id=None,
                    user_id=user_id,
                    subscription_plan_id=plan.id,
                    start_date=start_date,
                    end_date=end_date,
                    status=SubscriptionStatus.ACTIVE,
                    last_browse_reset_at=now,
                    assigned_by=assigned_by,
                    notes=note,
                    created_at=now,
                    updated_at=now,
                )
            else:
                candidate = replace(
                    existing,
                    subscription_plan_id=plan.id,
                    start_date=start_date,
                    end_date=end_date,
                    status=SubscriptionStatus.ACTIVE,
                    browse_count_used=0,
                    last_browse_reset_at=now,
                    listing_count_used=0,
                    job_posts_used=0,
                    assigned_by=assigned_by,
                    notes=f"{existing.notes}\n{note}" if existing.notes else note,
                    updated_at=now,
                    cancelled_at=None,
                    expiry_warning_sent_at=None,
                )
            candidate, events = self.evaluate(candidate, now)
            return self.store.save(candidate), events

        subscription, events = retry_on_conflict(
            operation, retries=self.max_retries, description=f"assign user_id={user_id}"
        )
        self.dispatcher.emit(events)
        logger.info(
            f"Subscription assigned: user_id={user_id}, plan={plan.id}, "
            f"end_date={end_date.isoformat()}, by={assigned_by}"
        )
        return subscription

    def extend(self, subscription_id: int, additional_time: timedelta, notes: Optional[str] = None) -> UserSubscription:
        if additional_time <= timedelta(0):
            raise ValueError("additional_time must be positive")

        def change(sub: UserSubscription, now: datetime):
            if sub.is_cancelled:
                raise InvalidTransition("Cancelled subscriptions cannot be extended; assign a new subscription", sub.status)
            status = SubscriptionStatus.ACTIVE if sub.status == SubscriptionStatus.EXPIRED else sub.status
            new_end = sub.end_date + additional_time
            return replace(
                sub,
                end_date=new_end,
                status=status,
                expiry_warning_sent_at=None,
                notes=append_note(sub.notes, now, "extended", f"until {new_end.isoformat()}" + (f" ({notes})" if notes else "")),
            ), []

        return self._transition(subscription_id, "extend", change)

    def suspend(self, subscription_id: int, reason: str) -> UserSubscription:
        if not reason or not reason.strip():
            raise ValueError("A reason is required to suspend a subscription")

        def change(sub: UserSubscription, now: datetime):
            if sub.status != SubscriptionStatus.ACTIVE:
                raise InvalidTransition(f"Cannot suspend a subscription that is {sub.status.value}", sub.status)
            return replace(
                sub,
                status=SubscriptionStatus.SUSPENDED,
                notes=append_note(sub.notes, now, "suspended", reason),
            ), []

        return self._transition(subscription_id, "suspend", change)

    def reactivate(self, subscription_id: int, notes: Optional[str] = None) -> UserSubscription:
        def change(sub: UserSubscription, now: datetime):
            if sub.status != SubscriptionStatus.SUSPENDED:
                raise InvalidTransition(f"Cannot reactivate a subscription that is {sub.status.value}", sub.status)
            return replace(
                sub,
                status=SubscriptionStatus.ACTIVE,
                notes=append_note(sub.notes, now, "reactivated", notes),
            ), []

        return self._transition(subscription_id, "reactivate", change)

    def change_plan(self, subscription_id: int, new_plan_id: str, notes: Optional[str] = None) -> UserSubscription:
        """
        Switch to another plan.

        Listing and job-post counters are plan-scoped and restart at zero; the
        browse counter keeps following its monthly window.
        """
        plan = self.store.get_plan(new_plan_id)
        if not plan.is_active:
            raise InvalidTransition(f"Plan {new_plan_id} is not active")

        def change(sub: UserSubscription, now: datetime):
            if sub.is_cancelled:
                raise InvalidTransition("Cannot change the plan of a cancelled subscription", sub.status)
            if sub.subscription_plan_id == plan.id:
                raise InvalidTransition(f"Subscription is already on plan {plan.id}", sub.status)
            return replace(
                sub,
                subscription_plan_id=plan.id,
                listing_count_used=0,
                job_posts_used=0,
                notes=append_note(
                    sub.notes, now, "plan_changed",
                    f"{sub.subscription_plan_id} -> {plan.id}" + (f" ({notes})" if notes else ""),
                ),
            ), []

        return self._transition(subscription_id, "change_plan", change)

    def cancel(self, subscription_id: int, reason: str) -> UserSubscription:
        if not reason or not reason.strip():
            raise ValueError("A reason is required to cancel a subscription")

        def change(sub: UserSubscription, now: datetime):
            if sub.is_cancelled:
                raise InvalidTransition("Subscription is already cancelled", sub.status)
            events = []
            if sub.status != SubscriptionStatus.EXPIRED:
                events.append(NotificationEvent(
                    user_id=sub.user_id,
                    type=NotificationType.SUBSCRIPTION_EXPIRED,
                    payload={
                        "subscription_id": sub.id,
                        "plan_id": sub.subscription_plan_id,
                        "end_date": sub.end_date.isoformat(),
                        "reason": "cancelled",
                    },
                ))
            return replace(
                sub,
                status=SubscriptionStatus.EXPIRED,
                cancelled_at=now,
                notes=append_note(sub.notes, now, "cancelled", reason),
            ), events

        return self._transition(subscription_id, "cancel", change)

    def reset_browse_count(self, subscription_id: int, reason: Optional[str] = None) -> UserSubscription:
        def change(sub: UserSubscription, now: datetime):
            return replace(
                sub,
                browse_count_used=0,
                last_browse_reset_at=now,
                notes=append_note(sub.notes, now, "browse_reset", reason),
            ), []

        return self._transition(subscription_id, "reset_browse_count", change)

    def _transition(self, subscription_id: int, action: Optional[str], change: Change) -> UserSubscription:
        """
        Read-correct-change-save a record by id with conflict retries.

        Lazy corrections are applied before ``change`` (so guards see the
        true state) and again after it.
        """
        def operation():
            now = self.now()
            current = self.store.get_by_id(subscription_id)
            candidate, events = self.evaluate(current, now)
            candidate, change_events = change(candidate, now)
            events.extend(change_events)
            candidate, post_events = self.evaluate(candidate, now)
            events.extend(post_events)
            if candidate == current:
                return current, events
            return self.store.save(replace(candidate, updated_at=now)), events

        subscription, events = retry_on_conflict(
            operation,
            retries=self.max_retries,
            description=f"{action or 'read'} subscription_id={subscription_id}",
        )
        self.dispatcher.emit(events)
        if action:
            logger.info(
                f"Subscription {action}: subscription_id={subscription_id}, user_id={subscription.user_id}, "
                f"status={subscription.status.value}, plan={subscription.subscription_plan_id}"
            )
        return subscription

    # ------------------------------------------------------------------
    # Admin read side
    # ------------------------------------------------------------------

    def list_subscriptions(self, filters: SubscriptionFilters) -> Page:
        return self.store.query_subscriptions(filters, self.now())

    def get_subscription_stats(self) -> SubscriptionStats:
        """Dashboard counters computed on effective (lazily corrected) status."""
        now = self.now()
        plans: Dict[str, SubscriptionPlan] = {plan.id: plan for plan in self.store.list_plans()}
        counts = {status: 0 for status in SubscriptionStatus}
        expiring_soon = 0
        revenue = Decimal("0")
        total = 0

        for stored in self.store.iter_subscriptions():
            total += 1
            subscription, _ = self.evaluate(stored, now)
            counts[subscription.status] += 1
            if subscription.status != SubscriptionStatus.ACTIVE:
                continue
            if is_expiring_soon(subscription.end_date, now, self.expiring_soon_days):
                expiring_soon += 1
            plan = plans.get(subscription.subscription_plan_id) or self.resolve_plan(subscription.subscription_plan_id)
            revenue += plan.price

        return SubscriptionStats(
            total_subscriptions=total,
            active_subscriptions=counts[SubscriptionStatus.ACTIVE],
            expired_subscriptions=counts[SubscriptionStatus.EXPIRED],
            suspended_subscriptions=counts[SubscriptionStatus.SUSPENDED],
            expiring_soon=expiring_soon,
            total_plans=len(plans),
            active_plans=sum(1 for plan in plans.values() if plan.is_active),
            revenue_projection=revenue,
        )

    def sweep(self) -> SweepReport:
        """
        Apply due lazy corrections (expiry, browse window reset) to every record.

        Optional companion to the read-triggered corrections for users who
        stop making requests. Records that keep conflicting are skipped and
        picked up by the next read or sweep.
        """
        examined = expired = resets = conflicts = 0
        expired_user_ids: List[str] = []

        for stored in self.store.iter_subscriptions():
            examined += 1

            def operation(subscription_id=stored.id):
                now = self.now()
                current = self.store.get_by_id(subscription_id)
                candidate, events = self.evaluate(current, now, reset_browse=True)
                if candidate is current:
                    return current, current, events
                return current, self.store.save(replace(candidate, updated_at=now)), events

            try:
                before, after, events = retry_on_conflict(
                    operation, retries=self.max_retries, description=f"sweep subscription_id={stored.id}"
                )
            except ConcurrencyConflict:
                conflicts += 1
                continue

            self.dispatcher.emit(events)
            if before.status != after.status and after.status == SubscriptionStatus.EXPIRED:
                expired += 1
                expired_user_ids.append(after.user_id)
            if after.last_browse_reset_at != before.last_browse_reset_at:
                resets += 1

        logger.info(
            f"Subscription sweep finished: examined={examined}, expired={expired}, "
            f"browse_resets={resets}, conflicts={conflicts}"
        )
        return SweepReport(
            examined=examined,
            expired=expired,
            browse_resets=resets,
            conflicts=conflicts,
            expired_user_ids=expired_user_ids,
        )
