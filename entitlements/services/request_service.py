"""
Manual subscription activation.

Online payment is not offered: a user files a request for a plan and an
admin approves (assigning the plan for a fixed period) or rejects it.
"""
import logging
from dataclasses import replace
from datetime import timedelta
from typing import List, Optional

from entitlements.core import config
from entitlements.core.errors import InvalidTransition
from entitlements.services.entitlement_store import EntitlementStore, retry_on_conflict
from entitlements.services.lifecycle_service import LifecycleManager
from entitlements.services.types import RequestStatus, SubscriptionRequest, UserSubscription

logger = logging.getLogger(__name__)


class SubscriptionRequestService:
    def __init__(
        self,
        store: EntitlementStore,
        lifecycle: LifecycleManager,
        *,
        default_period_days: int = config.REQUEST_DEFAULT_PERIOD_DAYS,
        max_retries: int = config.MAX_CONCURRENCY_RETRIES,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.default_period = timedelta(days=default_period_days)
        self.max_retries = max_retries

    def create(self, user_id: str, plan_id: str, message: Optional[str] = None) -> SubscriptionRequest:
        """
        File a request for ``plan_id``.

        Raises:
            NotFound: unknown plan
            InvalidTransition: inactive plan, or the user already has a pending request
        """
        plan = self.store.get_plan(plan_id)
        if not plan.is_active:
            raise InvalidTransition(f"Plan {plan_id} is not available")
        if self.store.list_requests(status=RequestStatus.PENDING, user_id=user_id):
            raise InvalidTransition("You already have a pending subscription request")

        request = self.store.save_request(SubscriptionRequest(
            id=None,
            user_id=user_id,
            plan_id=plan.id,
            message=message,
            created_at=self.lifecycle.now(),
        ))
        logger.info(f"Subscription request created: id={request.id}, user_id={user_id}, plan={plan.id}")
        return request

    def list(self, status: Optional[RequestStatus] = None, user_id: Optional[str] = None) -> List[SubscriptionRequest]:
        return self.store.list_requests(status=status, user_id=user_id)

    def approve(
        self,
        request_id: int,
        admin_id: str,
        notes: Optional[str] = None,
        period: Optional[timedelta] = None,
    ) -> UserSubscription:
        """
        Approve a pending request and assign its plan starting now.

        The request is claimed first so two admins cannot both approve it; if
        the assignment then fails the request goes back to pending.
        """
        claimed = self._resolve(request_id, RequestStatus.APPROVED, admin_id, notes)
        start = claimed.resolved_at
        try:
            subscription = self.lifecycle.assign(
                claimed.user_id,
                claimed.plan_id,
                start,
                start + (period or self.default_period),
                assigned_by=admin_id,
                notes=f"approved request #{claimed.id}",
            )
        except Exception:
            logger.exception(f"Assignment failed for subscription request {request_id}, restoring to pending")
            retry_on_conflict(
                lambda: self.store.save_request(replace(
                    self.store.get_request(request_id),
                    status=RequestStatus.PENDING,
                    resolved_at=None,
                    resolved_by=None,
                )),
                retries=self.max_retries,
                description=f"restore request_id={request_id}",
            )
            raise
        return subscription

    def reject(self, request_id: int, admin_id: str, notes: Optional[str] = None) -> SubscriptionRequest:
        return self._resolve(request_id, RequestStatus.REJECTED, admin_id, notes)

    def _resolve(self, request_id: int, status: RequestStatus, admin_id: str, notes: Optional[str]) -> SubscriptionRequest:
        def operation():
            request = self.store.get_request(request_id)
            if request.status != RequestStatus.PENDING:
                raise InvalidTransition(
                    f"Subscription request {request_id} is already {request.status.value}", request.status
                )
            return self.store.save_request(replace(
                request,
                status=status,
                admin_notes=notes,
                resolved_at=self.lifecycle.now(),
                resolved_by=admin_id,
            ))

        resolved = retry_on_conflict(
            operation, retries=self.max_retries, description=f"resolve request_id={request_id}"
        )
        logger.info(f"Subscription request {status.value}: id={request_id}, by={admin_id}")
        return resolved
