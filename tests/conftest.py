"""
Shared fixtures: a controllable clock, a recording notification trigger and
fully wired services over either store implementation.
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest

from entitlements.core.plan_catalog import DEFAULT_PLANS
from entitlements.db.session import build_engine, build_session_factory, init_db
from entitlements.main import build_services
from entitlements.services.entitlement_store import InMemoryEntitlementStore
from entitlements.services.notification_service import NotificationTrigger
from entitlements.services.sql_store import SqlEntitlementStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingTrigger(NotificationTrigger):
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def notify(self, event):
        with self._lock:
            self.events.append(event)

    def of_type(self, notification_type):
        return [event for event in self.events if event.type == notification_type]


def make_sql_store(database_url: str = "sqlite:///:memory:") -> SqlEntitlementStore:
    engine = build_engine(database_url)
    init_db(engine)
    store = SqlEntitlementStore(build_session_factory(engine))
    store.seed_plans(DEFAULT_PLANS)
    return store


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def trigger():
    return RecordingTrigger()


@pytest.fixture
def store():
    return InMemoryEntitlementStore()


@pytest.fixture
def sql_store():
    store = make_sql_store()
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    """Runs the test once per store implementation."""
    if request.param == "memory":
        yield InMemoryEntitlementStore()
        return
    store = make_sql_store()
    yield store
    store.close()


@pytest.fixture
def services(store, trigger, clock):
    return build_services(store, trigger, clock=clock)


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


@pytest.fixture
def quota(services):
    return services.quota


@pytest.fixture
def subscribe(lifecycle, clock):
    """Assign a plan to a user starting now for ``days`` days."""
    def _subscribe(user_id: str, plan_id: str, days: int = 30):
        return lifecycle.assign(user_id, plan_id, clock.now, clock.now + timedelta(days=days))
    return _subscribe
