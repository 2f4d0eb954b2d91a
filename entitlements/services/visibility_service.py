"""
Listing visibility delays.

Higher tiers see new listings immediately; lower tiers only once the plan's
``listing_visibility_delay_hours`` have passed since the listing was created.
"""
import logging
from datetime import datetime, timedelta
from operator import attrgetter
from typing import Callable, Iterable, List, Tuple, TypeVar

from entitlements.core.plan_catalog import DEFAULT_FREE_PLAN, SubscriptionPlan
from entitlements.core.timeutils import ensure_utc
from entitlements.services.lifecycle_service import LifecycleManager
from entitlements.services.types import SubscriptionStatus, UserSubscription, VisibilityCheckResult

logger = logging.getLogger(__name__)

L = TypeVar("L")


class VisibilityScheduler:
    def __init__(self, lifecycle: LifecycleManager):
        self.lifecycle = lifecycle

    def _viewer_plan(self, viewer_user_id: str) -> Tuple[UserSubscription, SubscriptionPlan]:
        subscription = self.lifecycle.refresh(viewer_user_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            # Lapsed viewers see listings on the free tier's schedule
            return subscription, DEFAULT_FREE_PLAN
        return subscription, self.lifecycle.resolve_plan(subscription.subscription_plan_id)

    def check_visibility(self, listing_created_at: datetime, viewer_user_id: str) -> VisibilityCheckResult:
        """
        Whether a listing created at ``listing_created_at`` is visible to the viewer now.

        ``available_at = created_at + delay``; a zero delay is always visible.
        """
        subscription, plan = self._viewer_plan(viewer_user_id)
        return self._evaluate(ensure_utc(listing_created_at), subscription, plan, self.lifecycle.now())

    def filter_visible(
        self,
        listings: Iterable[L],
        viewer_user_id: str,
        created_at: Callable[[L], datetime] = attrgetter("created_at"),
    ) -> List[L]:
        """Keep only the listings the viewer may see, resolving their plan once."""
        subscription, plan = self._viewer_plan(viewer_user_id)
        now = self.lifecycle.now()
        visible = [
            listing for listing in listings
            if self._evaluate(ensure_utc(created_at(listing)), subscription, plan, now).visible
        ]
        logger.debug(
            f"Visibility filter: viewer={viewer_user_id}, plan={plan.id}, visible={len(visible)}"
        )
        return visible

    @staticmethod
    def _evaluate(
        created_at: datetime,
        subscription: UserSubscription,
        plan: SubscriptionPlan,
        now: datetime,
    ) -> VisibilityCheckResult:
        delay = plan.listing_visibility_delay_hours
        available_at = created_at + timedelta(hours=delay)
        return VisibilityCheckResult(
            visible=delay == 0 or now >= available_at,
            delay_hours=delay,
            available_at=available_at,
            subscription=subscription,
        )
