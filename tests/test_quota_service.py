"""
Unit tests for quota enforcement.
Covers check/increment semantics, lazy resets, thresholds and concurrency.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta

import pytest

from entitlements.core.plan_catalog import Action
from entitlements.main import build_services
from entitlements.services.entitlement_store import InMemoryEntitlementStore
from entitlements.services.notification_service import NotificationTrigger, NotificationType
from entitlements.services.quota_service import QuotaEnforcer
from entitlements.services.types import DenyReason, SubscriptionStatus

from tests.conftest import FixedClock, RecordingTrigger, make_sql_store


def test_basic_plan_browse_limit(quota, subscribe):
    """Test the 11th browse on basic is denied after 10 successful increments."""
    subscribe("user-1", "plan-basic")

    for expected_remaining in range(9, -1, -1):
        result = quota.increment_browse_count("user-1")
        assert result.allowed is True
        assert result.remaining == expected_remaining
        assert result.limit_reached is False

    result = quota.check_browse_limit("user-1")
    assert result.allowed is False
    assert result.remaining == 0
    assert result.limit_reached is True
    assert result.reason == DenyReason.LIMIT_REACHED
    assert "10" in result.message


def test_denied_increment_changes_nothing(quota, store, subscribe):
    """Test an increment past the cap leaves the record untouched."""
    subscribe("user-1", "plan-basic")
    for _ in range(10):
        quota.increment_browse_count("user-1")
    before = store.get_by_user_id("user-1")

    result = quota.increment_browse_count("user-1")
    assert result.allowed is False
    assert result.limit_reached is True

    after = store.get_by_user_id("user-1")
    assert after.browse_count_used == 10
    assert after.version == before.version


def test_user_without_subscription_gets_free_plan(quota, store):
    """Test the free fallback applies and is only persisted on first use."""
    result = quota.check_browse_limit("guest")
    assert result.allowed is True
    assert result.remaining == 3
    assert result.subscription.subscription_plan_id == "plan-free"
    assert result.subscription.id is None
    assert list(store.iter_subscriptions()) == []

    result = quota.increment_browse_count("guest")
    assert result.allowed is True
    assert result.remaining == 2
    stored = store.get_by_user_id("guest")
    assert stored.subscription_plan_id == "plan-free"
    assert stored.browse_count_used == 1


def test_free_plan_cannot_create_listings(quota, store):
    """Test a zero listing quota denies with an explanatory message."""
    result = quota.increment_listing_count("guest")
    assert result.allowed is False
    assert result.remaining == 0
    assert result.limit_reached is True
    assert "does not include" in result.message
    assert list(store.iter_subscriptions()) == []


def test_browse_resets_after_thirty_days(quota, store, clock, subscribe):
    """Test a due reset is applied and persisted before the limit is evaluated."""
    subscribe("user-1", "plan-basic", days=90)
    for _ in range(10):
        quota.increment_browse_count("user-1")
    assert quota.check_browse_limit("user-1").allowed is False

    now = clock.advance(days=31)
    result = quota.check_browse_limit("user-1")
    assert result.allowed is True
    assert result.remaining == 10

    stored = store.get_by_user_id("user-1")
    assert stored.browse_count_used == 0
    assert stored.last_browse_reset_at == now


def test_check_is_idempotent(quota, store, subscribe):
    """Test repeated checks with no increment do not touch the record."""
    subscribe("user-1", "plan-basic")
    quota.increment_browse_count("user-1")
    before = store.get_by_user_id("user-1")

    first = quota.check_browse_limit("user-1")
    second = quota.check_browse_limit("user-1")

    after = store.get_by_user_id("user-1")
    assert first.remaining == second.remaining == 9
    assert after.browse_count_used == before.browse_count_used
    assert after.last_browse_reset_at == before.last_browse_reset_at
    assert after.version == before.version


def test_expired_but_active_record_is_denied_and_corrected(quota, store, lifecycle, trigger, clock):
    """Test a past end date denies the check and flips the persisted status."""
    stored = lifecycle.assign("user-1", "plan-standard", clock.now - timedelta(days=31), clock.now + timedelta(days=1))
    store.save(replace(stored, end_date=clock.now - timedelta(days=1)))
    assert store.get_by_user_id("user-1").status == SubscriptionStatus.ACTIVE

    result = quota.check_browse_limit("user-1")
    assert result.allowed is False
    assert result.remaining == 0
    assert result.limit_reached is False
    assert result.reason == DenyReason.SUBSCRIPTION_EXPIRED
    assert result.message

    assert store.get_by_user_id("user-1").status == SubscriptionStatus.EXPIRED
    expired = trigger.of_type(NotificationType.SUBSCRIPTION_EXPIRED)
    assert len(expired) == 1
    assert expired[0].payload["reason"] == "period_ended"


def test_suspended_subscription_is_denied(quota, lifecycle, subscribe):
    """Test suspended subscriptions cannot consume any quota."""
    sub = subscribe("user-1", "plan-premium")
    lifecycle.suspend(sub.id, "chargeback")

    for action in Action:
        result = quota.increment("user-1", action)
        assert result.allowed is False
        assert result.reason == DenyReason.SUBSCRIPTION_SUSPENDED
        assert result.limit_reached is False


def test_unlimited_browse_never_runs_out(quota, trigger, subscribe):
    """Test unlimited quota reports no remaining count and emits no warnings."""
    subscribe("user-1", "plan-premium")
    for _ in range(25):
        result = quota.increment_browse_count("user-1")
        assert result.allowed is True
        assert result.remaining is None
    assert result.used == 25
    assert trigger.of_type(NotificationType.BROWSE_LIMIT_WARNING) == []


def test_listing_counter_does_not_reset_monthly(quota, clock, subscribe):
    """Test listing usage is cumulative for the subscription period."""
    subscribe("user-1", "plan-basic", days=90)
    quota.increment_listing_count("user-1")
    quota.increment_listing_count("user-1")
    assert quota.check_listing_limit("user-1").allowed is False

    clock.advance(days=45)
    result = quota.check_listing_limit("user-1")
    assert result.allowed is False
    assert result.used == 2


def test_job_post_limit(quota, subscribe):
    """Test job posts are metered separately from listings."""
    subscribe("user-1", "plan-basic")
    assert quota.increment_job_post_count("user-1").allowed is True
    assert quota.check_job_post_limit("user-1").allowed is False
    assert quota.check_listing_limit("user-1").remaining == 2


def test_browse_warning_fires_once_at_eighty_percent(quota, trigger, subscribe):
    """Test the warning is emitted by the increment that crosses 80%."""
    subscribe("user-1", "plan-basic")
    for _ in range(10):
        quota.increment_browse_count("user-1")

    warnings = trigger.of_type(NotificationType.BROWSE_LIMIT_WARNING)
    assert len(warnings) == 1
    assert warnings[0].user_id == "user-1"
    assert warnings[0].payload["used"] == 8
    assert warnings[0].payload["limit"] == 10


def test_limit_reached_event_for_listings_and_job_posts(quota, trigger, subscribe):
    """Test the 100% event names the counter that filled up."""
    subscribe("user-1", "plan-basic")
    quota.increment_listing_count("user-1")
    assert trigger.of_type(NotificationType.LISTING_LIMIT_REACHED) == []

    quota.increment_listing_count("user-1")
    quota.increment_listing_count("user-1")
    quota.increment_job_post_count("user-1")

    events = trigger.of_type(NotificationType.LISTING_LIMIT_REACHED)
    assert [event.payload["action"] for event in events] == ["listing", "job_post"]


class ExplodingTrigger(NotificationTrigger):
    def notify(self, event):
        raise RuntimeError("push gateway down")


def test_failing_trigger_does_not_fail_increment(store, clock):
    """Test a notification failure never rolls back the counter change."""
    services = build_services(store, ExplodingTrigger(), clock=clock)
    services.lifecycle.assign("user-1", "plan-basic", clock.now, clock.now + timedelta(days=30))

    for _ in range(10):
        assert services.quota.increment_browse_count("user-1").allowed is True
    assert store.get_by_user_id("user-1").browse_count_used == 10


def test_notifications_dispatched_on_executor(store, clock):
    """Test events handed to an executor are delivered after the call returns."""
    trigger = RecordingTrigger()
    services = build_services(store, trigger, executor=ThreadPoolExecutor(max_workers=2), clock=clock)
    services.lifecycle.assign("user-1", "plan-basic", clock.now, clock.now + timedelta(days=30))
    for _ in range(8):
        services.quota.increment_browse_count("user-1")

    services.dispatcher.close()
    assert len(trigger.of_type(NotificationType.BROWSE_LIMIT_WARNING)) == 1


def test_release_is_disabled_by_default(quota, subscribe):
    """Test deleting a listing does not free quota unless configured."""
    subscribe("user-1", "plan-basic")
    quota.increment_listing_count("user-1")

    result = quota.release_listing("user-1")
    assert result.released is False
    assert result.used == 1


def test_release_when_enabled(store, lifecycle, subscribe):
    """Test release decrements and floors at zero."""
    quota = QuotaEnforcer(store, lifecycle, release_on_delete=True)
    subscribe("user-1", "plan-basic")
    quota.increment_job_post_count("user-1")

    result = quota.release_job_post("user-1")
    assert result.released is True
    assert result.used == 0
    assert quota.check_job_post_limit("user-1").allowed is True

    assert quota.release_job_post("user-1").released is False
    with pytest.raises(ValueError):
        quota.release("user-1", Action.BROWSE)


def test_notification_permission(quota, lifecycle, subscribe):
    """Test notifications follow the plan flag and subscription status."""
    assert quota.check_notification_permission("guest").allowed is False

    subscribe("user-1", "plan-basic")
    assert quota.check_notification_permission("user-1").allowed is False

    sub = subscribe("user-2", "plan-standard")
    assert quota.check_notification_permission("user-2").allowed is True

    lifecycle.suspend(sub.id, "abuse report")
    assert quota.check_notification_permission("user-2").allowed is False


def test_usage_summary(quota, subscribe):
    """Test the per-counter usage summary."""
    subscribe("user-1", "plan-premium")
    for _ in range(3):
        quota.increment_browse_count("user-1")
    quota.increment_listing_count("user-1")

    summary = quota.get_usage_summary("user-1")
    assert summary.plan_id == "plan-premium"
    assert summary.status == SubscriptionStatus.ACTIVE
    assert summary.browse.unlimited is True
    assert summary.browse.used == 3
    assert summary.browse.remaining is None
    assert summary.listings.limit == 50
    assert summary.listings.remaining == 49
    assert summary.listings.percentage == 2.0
    assert summary.days_remaining == 30
    assert summary.is_expiring_soon is False
    assert summary.is_expired is False


def test_usage_summary_for_guest(quota):
    """Test guests see the free plan with no stored subscription."""
    summary = quota.get_usage_summary("guest")
    assert summary.plan_id == "plan-free"
    assert summary.listings.limit_reached is True
    assert summary.subscription is None


def _run_concurrent_increments(quota, user_id, attempts):
    with ThreadPoolExecutor(max_workers=attempts) as pool:
        return list(pool.map(lambda _: quota.increment_browse_count(user_id), range(attempts)))


@pytest.mark.parametrize("backend", ["memory", "sql"])
def test_concurrent_increments_never_exceed_cap(backend, tmp_path):
    """Test 10 concurrent increments with 3 remaining yield exactly 3 successes."""
    if backend == "memory":
        store = InMemoryEntitlementStore()
    else:
        store = make_sql_store(f"sqlite:///{tmp_path / 'entitlements.db'}")

    clock = FixedClock()
    services = build_services(store, RecordingTrigger(), clock=clock)
    services.lifecycle.assign("user-1", "plan-basic", clock.now, clock.now + timedelta(days=30))
    for _ in range(7):
        services.quota.increment_browse_count("user-1")

    try:
        results = _run_concurrent_increments(services.quota, "user-1", 10)
        assert sum(1 for r in results if r.allowed) == 3
        assert sum(1 for r in results if r.limit_reached) == 7
        assert store.get_by_user_id("user-1").browse_count_used == 10
    finally:
        store.close()


def test_concurrent_reset_applied_once(quota, store, clock, subscribe):
    """Test racing checks that all see a due reset persist it exactly once."""
    subscribe("user-1", "plan-basic", days=90)
    for _ in range(5):
        quota.increment_browse_count("user-1")
    before = store.get_by_user_id("user-1")

    clock.advance(days=31)
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: quota.check_browse_limit("user-1"), range(8)))

    assert all(r.remaining == 10 for r in results)
    after = store.get_by_user_id("user-1")
    assert after.browse_count_used == 0
    assert after.version == before.version + 1
