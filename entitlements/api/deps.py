"""
Service wiring for the routes.

``create_app`` builds one Services bundle and stores it on ``app.state``;
routes pull the piece they need through these dependencies.
"""
from dataclasses import dataclass

from fastapi import Request

from entitlements.services.entitlement_store import EntitlementStore
from entitlements.services.lifecycle_service import LifecycleManager
from entitlements.services.notification_service import NotificationDispatcher
from entitlements.services.quota_service import QuotaEnforcer
from entitlements.services.request_service import SubscriptionRequestService
from entitlements.services.visibility_service import VisibilityScheduler


@dataclass
class Services:
    store: EntitlementStore
    dispatcher: NotificationDispatcher
    lifecycle: LifecycleManager
    quota: QuotaEnforcer
    visibility: VisibilityScheduler
    requests: SubscriptionRequestService

    def close(self) -> None:
        self.dispatcher.close()
        self.store.close()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(request: Request) -> EntitlementStore:
    return get_services(request).store


def get_lifecycle(request: Request) -> LifecycleManager:
    return get_services(request).lifecycle


def get_quota_enforcer(request: Request) -> QuotaEnforcer:
    return get_services(request).quota


def get_visibility(request: Request) -> VisibilityScheduler:
    return get_services(request).visibility


def get_request_service(request: Request) -> SubscriptionRequestService:
    return get_services(request).requests
