"""
Entitlement store interface and the in-memory implementation.

The store persists one UserSubscription per user plus the plan catalog and
subscription requests. Every write of a subscription or request is a
compare-and-swap on the record's ``version``: the caller passes the record
as it read it (with any changes applied) and the write only succeeds if the
stored version still matches. Services own the retry loop.
"""
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from entitlements.core.errors import ConcurrencyConflict, NotFound
from entitlements.core.plan_catalog import PlanCatalog, SubscriptionPlan
from entitlements.services.types import (
    Page,
    RequestStatus,
    SortOrder,
    SubscriptionFilters,
    SubscriptionRequest,
    SubscriptionStatus,
    UserSubscription,
)

logger = logging.getLogger(__name__)


class EntitlementStore(ABC):
    """Repository for subscription records, plans and subscription requests."""

    # Subscriptions

    @abstractmethod
    def get_by_user_id(self, user_id: str) -> UserSubscription:
        """Raises NotFound when the user has no subscription record."""

    @abstractmethod
    def get_by_id(self, subscription_id: int) -> UserSubscription:
        """Raises NotFound when no record has this id."""

    @abstractmethod
    def save(self, subscription: UserSubscription) -> UserSubscription:
        """
        Atomically persist the full record.

        A record without an id is inserted (conflicts if the user already has
        one). Otherwise the write succeeds only if the stored version equals
        ``subscription.version``; the stored copy gets version + 1 and is
        returned.

        Raises:
            ConcurrencyConflict: the record changed since it was read
        """

    @abstractmethod
    def iter_subscriptions(self) -> Iterable[UserSubscription]:
        """Snapshot of every subscription record."""

    @abstractmethod
    def query_subscriptions(self, filters: SubscriptionFilters, now: datetime) -> Page:
        """Filtered, sorted, paginated subscription records."""

    # Plans

    @abstractmethod
    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        """Raises NotFound for unknown plan ids."""

    @abstractmethod
    def list_plans(self) -> List[SubscriptionPlan]:
        pass

    @abstractmethod
    def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        """Raises ValueError if the plan id is taken."""

    @abstractmethod
    def set_plan_active(self, plan_id: str, is_active: bool) -> SubscriptionPlan:
        pass

    # Subscription requests

    @abstractmethod
    def get_request(self, request_id: int) -> SubscriptionRequest:
        pass

    @abstractmethod
    def save_request(self, request: SubscriptionRequest) -> SubscriptionRequest:
        """Same compare-and-swap contract as ``save``."""

    @abstractmethod
    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[SubscriptionRequest]:
        pass

    def close(self) -> None:
        """Release any resources held by the store."""


T = TypeVar("T")


def retry_on_conflict(operation: Callable[[], T], *, retries: int, description: str) -> T:
    """
    Run a read-compute-save operation, re-running it from scratch on
    ConcurrencyConflict up to ``retries`` extra times.

    The operation must re-read the record on every attempt.
    """
    attempts = max(0, retries) + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt >= attempts:
                logger.warning(f"Giving up after {attempts} conflicting attempts: {description}")
                raise
            logger.debug(f"Concurrent update, retrying ({attempt}/{attempts}): {description}")


def matches_filters(sub: UserSubscription, filters: SubscriptionFilters, now: datetime) -> bool:
    if filters.status is not None and sub.status != filters.status:
        return False
    if filters.plan_id is not None and sub.subscription_plan_id != filters.plan_id:
        return False
    if filters.expiring_within_days is not None:
        horizon = now + timedelta(days=filters.expiring_within_days)
        if sub.status != SubscriptionStatus.ACTIVE:
            return False
        if not (now <= sub.end_date <= horizon):
            return False
    return True


class InMemoryEntitlementStore(EntitlementStore):
    """
    Thread-safe in-process store.

    A single lock guards all maps; each operation holds it only for the
    duration of one read or one compare-and-swap.
    """

    def __init__(self, catalog: Optional[PlanCatalog] = None):
        self._lock = threading.Lock()
        self._catalog = catalog or PlanCatalog()
        self._subscriptions: Dict[int, UserSubscription] = {}
        self._by_user: Dict[str, int] = {}
        self._requests: Dict[int, SubscriptionRequest] = {}
        self._subscription_ids = itertools.count(1)
        self._request_ids = itertools.count(1)

    def get_by_user_id(self, user_id: str) -> UserSubscription:
        with self._lock:
            subscription_id = self._by_user.get(user_id)
            if subscription_id is None:
                raise NotFound("subscription", user_id)
            return self._subscriptions[subscription_id]

    def get_by_id(self, subscription_id: int) -> UserSubscription:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFound("subscription", subscription_id)
            return subscription

    def save(self, subscription: UserSubscription) -> UserSubscription:
        with self._lock:
            if subscription.id is None:
                if subscription.user_id in self._by_user:
                    raise ConcurrencyConflict(f"user:{subscription.user_id}")
                stored = replace(subscription, id=next(self._subscription_ids), version=1)
                self._by_user[stored.user_id] = stored.id
            else:
                current = self._subscriptions.get(subscription.id)
                if current is None:
                    raise NotFound("subscription", subscription.id)
                if current.version != subscription.version:
                    raise ConcurrencyConflict(subscription.id, subscription.version)
                stored = replace(subscription, version=current.version + 1)
            self._subscriptions[stored.id] = stored
            return stored

    def iter_subscriptions(self) -> Iterable[UserSubscription]:
        with self._lock:
            return list(self._subscriptions.values())

    def query_subscriptions(self, filters: SubscriptionFilters, now: datetime) -> Page:
        matching = [
            sub for sub in self.iter_subscriptions()
            if matches_filters(sub, filters, now)
        ]
        sort_field = filters.sort_by.value
        matching.sort(
            key=lambda sub: (getattr(sub, sort_field) or datetime.min.replace(tzinfo=now.tzinfo), sub.id),
            reverse=filters.sort_order == SortOrder.DESC,
        )
        items = matching[filters.offset:filters.offset + filters.page_size]
        return Page(items=items, total=len(matching), page=filters.page, page_size=filters.page_size)

    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        with self._lock:
            return self._catalog.get(plan_id)

    def list_plans(self) -> List[SubscriptionPlan]:
        with self._lock:
            return list(self._catalog)

    def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        with self._lock:
            if plan.id in self._catalog:
                raise ValueError(f"Plan {plan.id} already exists")
            if any(existing.name == plan.name for existing in self._catalog):
                raise ValueError(f"Plan name {plan.name} already exists")
            self._catalog = self._catalog.with_plan(plan)
            return plan

    def set_plan_active(self, plan_id: str, is_active: bool) -> SubscriptionPlan:
        with self._lock:
            plan = replace(self._catalog.get(plan_id), is_active=is_active)
            self._catalog = self._catalog.with_plan(plan)
            return plan

    def get_request(self, request_id: int) -> SubscriptionRequest:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise NotFound("subscription request", request_id)
            return request

    def save_request(self, request: SubscriptionRequest) -> SubscriptionRequest:
        with self._lock:
            if request.id is None:
                stored = replace(request, id=next(self._request_ids), version=1)
            else:
                current = self._requests.get(request.id)
                if current is None:
                    raise NotFound("subscription request", request.id)
                if current.version != request.version:
                    raise ConcurrencyConflict(request.id, request.version)
                stored = replace(request, version=current.version + 1)
            self._requests[stored.id] = stored
            return stored

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[SubscriptionRequest]:
        with self._lock:
            requests = list(self._requests.values())
        return [
            request for request in sorted(requests, key=lambda r: r.id)
            if (status is None or request.status == status)
            and (user_id is None or request.user_id == user_id)
        ]
