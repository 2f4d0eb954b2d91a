"""
Quota enforcement for metered user actions.

Resolves the user's subscription and plan, applies due lazy corrections and
returns allow/deny decisions as data. Increments are a compare-and-swap on
the user's record, so concurrent requests from the same user can never push
a counter past its cap.
"""
import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from entitlements.core import config
from entitlements.core.plan_catalog import Action, Quota, SubscriptionPlan
from entitlements.services.entitlement_store import EntitlementStore, retry_on_conflict
from entitlements.services.lifecycle_service import LifecycleManager
from entitlements.services.notification_service import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationType,
)
from entitlements.services.types import (
    BrowseCheckResult,
    CounterUsage,
    DenyReason,
    ListingCheckResult,
    NotificationPermission,
    QuotaCheckResult,
    ReleaseResult,
    SubscriptionStatus,
    UsageSummary,
    UserSubscription,
)

logger = logging.getLogger(__name__)

_COUNTER_FIELDS = {
    Action.BROWSE: "browse_count_used",
    Action.LISTING: "listing_count_used",
    Action.JOB_POST: "job_posts_used",
}

_ACTION_LABELS = {
    Action.BROWSE: "item views this month",
    Action.LISTING: "listings",
    Action.JOB_POST: "job posts",
}


def _with_usage(subscription: UserSubscription, action: Action, used: int) -> UserSubscription:
    return replace(subscription, **{_COUNTER_FIELDS[action]: used})


def _counter_usage(quota: Quota, used: int) -> CounterUsage:
    ratio = quota.usage_ratio(used)
    return CounterUsage(
        used=used,
        limit=quota.limit,
        remaining=quota.remaining(used),
        percentage=None if ratio is None else round(min(ratio, 1.0) * 100, 1),
        unlimited=quota.is_unlimited,
        limit_reached=quota.is_reached(used),
    )


class QuotaEnforcer:
    """Check and increment browse, listing and job-post quotas."""

    def __init__(
        self,
        store: EntitlementStore,
        lifecycle: LifecycleManager,
        dispatcher: Optional[NotificationDispatcher] = None,
        *,
        browse_warning_ratio: float = config.BROWSE_WARNING_RATIO,
        max_retries: int = config.MAX_CONCURRENCY_RETRIES,
        release_on_delete: bool = config.RELEASE_QUOTA_ON_DELETE,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher or lifecycle.dispatcher
        self.browse_warning_ratio = browse_warning_ratio
        self.max_retries = max_retries
        self.release_on_delete = release_on_delete

    # ------------------------------------------------------------------
    # Generic check / increment
    # ------------------------------------------------------------------

    def check(self, user_id: str, action: Action) -> QuotaCheckResult:
        """
        Read-only decision for one more ``action``.

        Only the lazy corrections (expiry, browse window reset) are persisted.
        """
        subscription = self.lifecycle.refresh(user_id, reset_browse=action == Action.BROWSE)
        plan = self.lifecycle.resolve_plan(subscription.subscription_plan_id)
        result = self._decide(subscription, plan, action)
        if not result.allowed:
            logger.info(
                f"Quota check denied: user_id={user_id}, action={action.value}, "
                f"reason={result.reason.value}, used={result.used}, limit={result.limit}"
            )
        return result

    def increment(self, user_id: str, action: Action) -> QuotaCheckResult:
        """
        Check and consume one unit of ``action`` as a single atomic step.

        Returns the post-increment decision. A denied increment changes no
        counter. Raises ConcurrencyConflict only if the retry budget runs out.
        """
        def operation() -> Tuple[QuotaCheckResult, List[NotificationEvent]]:
            now = self.lifecycle.now()
            current = self.lifecycle.load(user_id)
            candidate, events = self.lifecycle.evaluate(current, now, reset_browse=action == Action.BROWSE)
            plan = self.lifecycle.resolve_plan(candidate.subscription_plan_id)
            decision = self._decide(candidate, plan, action)

            if not decision.allowed:
                if candidate is not current and candidate.is_persisted:
                    candidate = self.store.save(replace(candidate, updated_at=now))
                    decision = replace(decision, subscription=candidate)
                return decision, events

            before = candidate.used_for(action)
            after = before + 1
            stored = self.store.save(_with_usage(replace(candidate, updated_at=now), action, after))
            events.extend(self._threshold_events(stored, plan, action, before, after))

            quota = plan.quota_for(action)
            return replace(
                decision,
                remaining=quota.remaining(after),
                subscription=stored,
                used=after,
                message=self._allowed_message(action, quota, after),
            ), events

        result, events = retry_on_conflict(
            operation,
            retries=self.max_retries,
            description=f"increment {action.value} user_id={user_id}",
        )
        self.dispatcher.emit(events)

        if result.allowed:
            logger.info(
                f"Quota consumed: user_id={user_id}, action={action.value}, "
                f"used={result.used}, limit={result.limit}"
            )
        else:
            logger.warning(
                f"Quota increment denied: user_id={user_id}, action={action.value}, "
                f"reason={result.reason.value}, used={result.used}, limit={result.limit}"
            )
        return result

    # ------------------------------------------------------------------
    # Per-action entry points
    # ------------------------------------------------------------------

    def check_browse_limit(self, user_id: str) -> BrowseCheckResult:
        return self.check(user_id, Action.BROWSE)

    def increment_browse_count(self, user_id: str) -> BrowseCheckResult:
        return self.increment(user_id, Action.BROWSE)

    def check_listing_limit(self, user_id: str) -> ListingCheckResult:
        return self.check(user_id, Action.LISTING)

    def increment_listing_count(self, user_id: str) -> ListingCheckResult:
        """Call only after the listing has been created."""
        return self.increment(user_id, Action.LISTING)

    def check_job_post_limit(self, user_id: str) -> ListingCheckResult:
        return self.check(user_id, Action.JOB_POST)

    def increment_job_post_count(self, user_id: str) -> ListingCheckResult:
        """Call only after the job post has been created."""
        return self.increment(user_id, Action.JOB_POST)

    def release_listing(self, user_id: str) -> ReleaseResult:
        return self.release(user_id, Action.LISTING)

    def release_job_post(self, user_id: str) -> ReleaseResult:
        return self.release(user_id, Action.JOB_POST)

    def release(self, user_id: str, action: Action) -> ReleaseResult:
        """
        Give back one unit of a cumulative quota after the entity is deleted.

        A no-op unless release on delete is enabled. Browse usage is never
        released.
        """
        if action == Action.BROWSE:
            raise ValueError("Browse usage cannot be released")

        if not self.release_on_delete:
            subscription = self.lifecycle.refresh(user_id)
            return ReleaseResult(
                released=False,
                used=subscription.used_for(action),
                subscription=subscription,
                message="Quota is not released when entities are deleted",
            )

        def operation() -> Tuple[ReleaseResult, List[NotificationEvent]]:
            now = self.lifecycle.now()
            current = self.lifecycle.load(user_id)
            candidate, events = self.lifecycle.evaluate(current, now)
            used = candidate.used_for(action)
            if not candidate.is_persisted or used == 0:
                if candidate is not current and candidate.is_persisted:
                    candidate = self.store.save(replace(candidate, updated_at=now))
                return ReleaseResult(
                    released=False,
                    used=used,
                    subscription=candidate,
                    message=f"No {_ACTION_LABELS[action]} to release",
                ), events
            stored = self.store.save(_with_usage(replace(candidate, updated_at=now), action, used - 1))
            return ReleaseResult(
                released=True,
                used=used - 1,
                subscription=stored,
                message=f"Released one of your {_ACTION_LABELS[action]}",
            ), events

        result, events = retry_on_conflict(
            operation,
            retries=self.max_retries,
            description=f"release {action.value} user_id={user_id}",
        )
        self.dispatcher.emit(events)
        if result.released:
            logger.info(f"Quota released: user_id={user_id}, action={action.value}, used={result.used}")
        return result

    def check_notification_permission(self, user_id: str) -> NotificationPermission:
        subscription = self.lifecycle.refresh(user_id)
        plan = self.lifecycle.resolve_plan(subscription.subscription_plan_id)
        allowed = subscription.status == SubscriptionStatus.ACTIVE and plan.notifications_enabled
        return NotificationPermission(allowed=allowed, subscription=subscription)

    def get_usage_summary(self, user_id: str) -> UsageSummary:
        """Current usage of every counter against the user's plan."""
        subscription = self.lifecycle.refresh(user_id, reset_browse=True)
        plan = self.lifecycle.resolve_plan(subscription.subscription_plan_id)
        active = subscription.status == SubscriptionStatus.ACTIVE
        return UsageSummary(
            plan_id=plan.id,
            plan_name=plan.display_name,
            status=subscription.status,
            browse=_counter_usage(plan.max_browse_count, subscription.browse_count_used),
            listings=_counter_usage(plan.max_listing_count, subscription.listing_count_used),
            job_posts=_counter_usage(plan.max_job_posts, subscription.job_posts_used),
            days_remaining=max(0, self.lifecycle.get_days_remaining(subscription.end_date)),
            is_expiring_soon=active and self.lifecycle.is_expiring_soon(subscription.end_date),
            is_expired=subscription.status == SubscriptionStatus.EXPIRED,
            is_suspended=subscription.status == SubscriptionStatus.SUSPENDED,
            subscription=subscription if subscription.is_persisted else None,
        )

    # ------------------------------------------------------------------
    # Decision helpers
    # ------------------------------------------------------------------

    def _decide(self, subscription: UserSubscription, plan: SubscriptionPlan, action: Action) -> QuotaCheckResult:
        quota = plan.quota_for(action)
        used = subscription.used_for(action)

        if subscription.status != SubscriptionStatus.ACTIVE:
            if subscription.status == SubscriptionStatus.SUSPENDED:
                reason = DenyReason.SUBSCRIPTION_SUSPENDED
                message = "Your subscription is suspended. Please contact support to restore access."
            else:
                reason = DenyReason.SUBSCRIPTION_EXPIRED
                message = "Your subscription has expired. Please renew your plan to continue."
            return QuotaCheckResult(
                allowed=False,
                remaining=0,
                limit_reached=False,
                subscription=subscription,
                message=message,
                action=action,
                limit=quota,
                used=used,
                reason=reason,
            )

        if quota.is_unlimited:
            return QuotaCheckResult(
                allowed=True,
                remaining=None,
                limit_reached=False,
                subscription=subscription,
                message=f"Unlimited {_ACTION_LABELS[action]} on the {plan.display_name}",
                action=action,
                limit=quota,
                used=used,
            )

        remaining = quota.remaining(used)
        if remaining > 0:
            return QuotaCheckResult(
                allowed=True,
                remaining=remaining,
                limit_reached=False,
                subscription=subscription,
                message=self._allowed_message(action, quota, used),
                action=action,
                limit=quota,
                used=used,
            )

        return QuotaCheckResult(
            allowed=False,
            remaining=0,
            limit_reached=True,
            subscription=subscription,
            message=self._limit_message(action, quota, plan),
            action=action,
            limit=quota,
            used=used,
            reason=DenyReason.LIMIT_REACHED,
        )

    @staticmethod
    def _allowed_message(action: Action, quota: Quota, used: int) -> str:
        if quota.is_unlimited:
            return f"Unlimited {_ACTION_LABELS[action]}"
        return f"{quota.remaining(used)} of {quota.limit} {_ACTION_LABELS[action]} remaining"

    @staticmethod
    def _limit_message(action: Action, quota: Quota, plan: SubscriptionPlan) -> str:
        if quota.limit == 0:
            return f"The {plan.display_name} does not include {_ACTION_LABELS[action]}. Upgrade your plan to continue."
        return (
            f"You have used all {quota.limit} {_ACTION_LABELS[action]} on the {plan.display_name}. "
            "Upgrade your plan to continue."
        )

    def _threshold_events(
        self,
        subscription: UserSubscription,
        plan: SubscriptionPlan,
        action: Action,
        before: int,
        after: int,
    ) -> List[NotificationEvent]:
        quota = plan.quota_for(action)
        if quota.is_unlimited:
            return []

        payload = {
            "subscription_id": subscription.id,
            "plan_id": plan.id,
            "action": action.value,
            "used": after,
            "limit": quota.limit,
        }
        if action == Action.BROWSE:
            if quota.usage_ratio(before) < self.browse_warning_ratio <= quota.usage_ratio(after):
                return [NotificationEvent(
                    user_id=subscription.user_id,
                    type=NotificationType.BROWSE_LIMIT_WARNING,
                    payload=dict(payload, remaining=quota.remaining(after)),
                )]
            return []

        if not quota.is_reached(before) and quota.is_reached(after):
            return [NotificationEvent(
                user_id=subscription.user_id,
                type=NotificationType.LISTING_LIMIT_REACHED,
                payload=payload,
            )]
        return []
