"""
Unit tests for subscription lifecycle transitions and admin operations.
"""
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from entitlements.core.errors import InvalidTransition, NotFound
from entitlements.services.lifecycle_service import get_days_remaining, is_expiring_soon
from entitlements.services.notification_service import NotificationType
from entitlements.services.types import SubscriptionFilters, SubscriptionStatus

from tests.conftest import NOW


def test_days_remaining_and_expiring_soon():
    """Test a subscription ending in 5 days is expiring soon."""
    end = NOW + timedelta(days=5)
    assert get_days_remaining(end, NOW) == 5
    assert is_expiring_soon(end, NOW) is True


def test_days_remaining_rounds_up():
    """Test partial days count as a whole day."""
    assert get_days_remaining(NOW + timedelta(days=7, hours=1), NOW) == 8
    assert is_expiring_soon(NOW + timedelta(days=7, hours=1), NOW) is False
    assert get_days_remaining(NOW + timedelta(hours=2), NOW) == 1
    assert is_expiring_soon(NOW - timedelta(hours=2), NOW) is False


def test_manager_uses_its_clock(lifecycle, clock):
    """Test the manager's helpers read the injected clock."""
    end = clock.now + timedelta(days=5)
    assert lifecycle.get_days_remaining(end) == 5
    assert lifecycle.is_expiring_soon(end) is True
    clock.advance(days=5)
    assert lifecycle.is_expiring_soon(end) is False


def test_assign_creates_active_subscription(lifecycle, store, subscribe):
    """Test admin assignment starts an active period with zeroed counters."""
    sub = subscribe("user-1", "plan-standard")
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.subscription_plan_id == "plan-standard"
    assert sub.browse_count_used == 0
    assert "ASSIGNED" in sub.notes
    assert store.get_by_user_id("user-1").id == sub.id


def test_assign_replaces_existing_record(lifecycle, quota, store, subscribe):
    """Test reassignment keeps one record per user and restarts usage."""
    first = subscribe("user-1", "plan-basic")
    quota.increment_listing_count("user-1")
    second = subscribe("user-1", "plan-premium", days=365)

    assert second.id == first.id
    assert second.listing_count_used == 0
    assert second.subscription_plan_id == "plan-premium"
    assert len(list(store.iter_subscriptions())) == 1


def test_assign_validation(lifecycle, store, clock):
    """Test period, plan existence and plan availability checks."""
    with pytest.raises(ValueError):
        lifecycle.assign("user-1", "plan-basic", clock.now, clock.now - timedelta(days=1))
    with pytest.raises(NotFound):
        lifecycle.assign("user-1", "plan-gold", clock.now, clock.now + timedelta(days=1))

    store.set_plan_active("plan-standard", False)
    with pytest.raises(InvalidTransition):
        lifecycle.assign("user-1", "plan-standard", clock.now, clock.now + timedelta(days=1))


def test_read_corrects_expired_status(lifecycle, store, clock, trigger, subscribe):
    """Test reading a lapsed subscription persists the expired status once."""
    sub = subscribe("user-1", "plan-basic", days=10)
    clock.advance(days=11)

    assert lifecycle.get(sub.id).status == SubscriptionStatus.EXPIRED
    assert store.get_by_id(sub.id).status == SubscriptionStatus.EXPIRED
    lifecycle.get(sub.id)
    assert len(trigger.of_type(NotificationType.SUBSCRIPTION_EXPIRED)) == 1


def test_expiring_soon_event_once_per_period(lifecycle, clock, trigger, subscribe):
    """Test the expiring-soon warning is raised once and re-armed by extend."""
    sub = subscribe("user-1", "plan-standard", days=30)
    clock.advance(days=25)

    lifecycle.refresh("user-1")
    lifecycle.refresh("user-1")
    events = trigger.of_type(NotificationType.SUBSCRIPTION_EXPIRING_SOON)
    assert len(events) == 1
    assert events[0].payload["days_remaining"] == 5

    lifecycle.extend(sub.id, timedelta(days=3))
    clock.advance(days=2)
    lifecycle.refresh("user-1")
    assert len(trigger.of_type(NotificationType.SUBSCRIPTION_EXPIRING_SOON)) == 2


def test_suspend_and_reactivate(lifecycle, subscribe):
    """Test suspension records the reason and reactivation keeps the end date."""
    sub = subscribe("user-1", "plan-standard")

    suspended = lifecycle.suspend(sub.id, "payment reversed")
    assert suspended.status == SubscriptionStatus.SUSPENDED
    assert "SUSPENDED: payment reversed" in suspended.notes

    with pytest.raises(InvalidTransition):
        lifecycle.suspend(sub.id, "again")

    reactivated = lifecycle.reactivate(sub.id)
    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert reactivated.end_date == sub.end_date

    with pytest.raises(InvalidTransition):
        lifecycle.reactivate(sub.id)


def test_suspend_requires_reason(lifecycle, subscribe):
    """Test an empty reason is rejected."""
    sub = subscribe("user-1", "plan-standard")
    with pytest.raises(ValueError):
        lifecycle.suspend(sub.id, "   ")


def test_extend_adds_time(lifecycle, subscribe):
    """Test extension moves the end date forward."""
    sub = subscribe("user-1", "plan-basic")
    extended = lifecycle.extend(sub.id, timedelta(days=15))
    assert extended.end_date == sub.end_date + timedelta(days=15)

    with pytest.raises(ValueError):
        lifecycle.extend(sub.id, timedelta(0))


def test_extend_reactivates_expired(lifecycle, clock, subscribe):
    """Test extending an expired subscription returns it to active."""
    sub = subscribe("user-1", "plan-basic", days=10)
    clock.advance(days=12)
    assert lifecycle.get(sub.id).status == SubscriptionStatus.EXPIRED

    extended = lifecycle.extend(sub.id, timedelta(days=30))
    assert extended.status == SubscriptionStatus.ACTIVE
    assert extended.end_date == sub.end_date + timedelta(days=30)


def test_change_plan_resets_only_plan_scoped_counters(lifecycle, quota, subscribe):
    """Test a plan change zeroes listings and job posts but not browse usage."""
    sub = subscribe("user-1", "plan-basic")
    quota.increment_browse_count("user-1")
    quota.increment_browse_count("user-1")
    quota.increment_listing_count("user-1")
    quota.increment_job_post_count("user-1")

    changed = lifecycle.change_plan(sub.id, "plan-standard")
    assert changed.subscription_plan_id == "plan-standard"
    assert changed.listing_count_used == 0
    assert changed.job_posts_used == 0
    assert changed.browse_count_used == 2
    assert "plan-basic -> plan-standard" in changed.notes

    with pytest.raises(InvalidTransition):
        lifecycle.change_plan(sub.id, "plan-standard")
    with pytest.raises(NotFound):
        lifecycle.change_plan(sub.id, "plan-gold")


def test_cancel_is_terminal(lifecycle, trigger, subscribe):
    """Test cancellation expires immediately and blocks extend and plan changes."""
    sub = subscribe("user-1", "plan-standard")

    cancelled = lifecycle.cancel(sub.id, "requested by user")
    assert cancelled.status == SubscriptionStatus.EXPIRED
    assert cancelled.cancelled_at is not None
    assert "CANCELLED: requested by user" in cancelled.notes

    events = trigger.of_type(NotificationType.SUBSCRIPTION_EXPIRED)
    assert [event.payload["reason"] for event in events] == ["cancelled"]

    with pytest.raises(InvalidTransition):
        lifecycle.cancel(sub.id, "twice")
    with pytest.raises(InvalidTransition):
        lifecycle.extend(sub.id, timedelta(days=30))
    with pytest.raises(InvalidTransition):
        lifecycle.change_plan(sub.id, "plan-premium")


def test_new_assignment_after_cancel(lifecycle, subscribe):
    """Test re-subscribing after cancellation is a fresh assignment."""
    sub = subscribe("user-1", "plan-standard")
    lifecycle.cancel(sub.id, "requested by user")

    renewed = subscribe("user-1", "plan-basic")
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.cancelled_at is None


def test_reset_browse_count(lifecycle, quota, clock, subscribe):
    """Test the admin reset zeroes browse usage and restarts the window."""
    sub = subscribe("user-1", "plan-basic")
    for _ in range(10):
        quota.increment_browse_count("user-1")
    now = clock.advance(hours=3)

    reset = lifecycle.reset_browse_count(sub.id, "support ticket 42")
    assert reset.browse_count_used == 0
    assert reset.last_browse_reset_at == now
    assert quota.check_browse_limit("user-1").remaining == 10


def test_unknown_subscription(lifecycle):
    """Test admin operations on a missing id raise NotFound."""
    with pytest.raises(NotFound):
        lifecycle.suspend(404, "reason")
    with pytest.raises(NotFound):
        lifecycle.get_for_user("nobody")


def test_subscription_stats(lifecycle, store, clock, subscribe):
    """Test dashboard counters use the effective status."""
    subscribe("user-1", "plan-standard", days=30)
    subscribe("user-2", "plan-premium", days=5)
    suspended = subscribe("user-3", "plan-basic", days=30)
    lapsed = subscribe("user-4", "plan-basic", days=30)
    lifecycle.suspend(suspended.id, "fraud check")
    store.save(replace(store.get_by_id(lapsed.id), end_date=clock.now - timedelta(hours=1)))

    stats = lifecycle.get_subscription_stats()
    assert stats.total_subscriptions == 4
    assert stats.active_subscriptions == 2
    assert stats.suspended_subscriptions == 1
    assert stats.expired_subscriptions == 1
    assert stats.expiring_soon == 1
    assert stats.total_plans == 4
    assert stats.active_plans == 4
    assert stats.revenue_projection == Decimal("2498")


def test_list_subscriptions(lifecycle, subscribe):
    """Test the admin listing passes filters through to the store."""
    subscribe("user-1", "plan-standard", days=30)
    subscribe("user-2", "plan-premium", days=5)

    page = lifecycle.list_subscriptions(SubscriptionFilters(expiring_within_days=7))
    assert [sub.user_id for sub in page.items] == ["user-2"]
    page = lifecycle.list_subscriptions(SubscriptionFilters(plan_id="plan-standard"))
    assert page.total == 1


def test_sweep_applies_due_corrections(lifecycle, quota, store, clock, subscribe):
    """Test the sweep expires lapsed records and restarts stale browse windows."""
    subscribe("user-1", "plan-basic", days=10)
    subscribe("user-2", "plan-basic", days=90)
    subscribe("user-3", "plan-premium", days=90)
    quota.increment_browse_count("user-2")

    clock.advance(days=31)
    report = lifecycle.sweep()

    assert report.examined == 3
    assert report.expired == 1
    assert report.expired_user_ids == ["user-1"]
    assert report.browse_resets == 2
    assert report.conflicts == 0
    assert store.get_by_user_id("user-1").status == SubscriptionStatus.EXPIRED
    assert store.get_by_user_id("user-2").browse_count_used == 0

    again = lifecycle.sweep()
    assert again.expired == 0
    assert again.browse_resets == 0
