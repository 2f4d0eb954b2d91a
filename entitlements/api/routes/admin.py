"""
Admin subscription management endpoints.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from entitlements.api.deps import get_lifecycle
from entitlements.core.auth_dependency import require_admin
from entitlements.schemas.subscription import (
    AssignSubscriptionRequest,
    ChangePlanRequest,
    ExtendSubscriptionRequest,
    OptionalReasonRequest,
    ReasonRequest,
    SubscriptionPage,
    SubscriptionResponse,
    SubscriptionStatsResponse,
)
from entitlements.services.lifecycle_service import LifecycleManager
from entitlements.services.types import (
    MAX_PAGE_SIZE,
    SortField,
    SortOrder,
    SubscriptionFilters,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/subscriptions", tags=["Admin"])


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def assign_subscription(
    body: AssignSubscriptionRequest,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    """Place a user on a plan, replacing their current subscription."""
    subscription = lifecycle.assign(
        body.user_id,
        body.plan_id,
        body.start_date,
        body.end_date,
        assigned_by=admin_id,
        notes=body.notes,
    )
    return SubscriptionResponse.from_domain(subscription)


@router.get("", response_model=SubscriptionPage)
def list_subscriptions(
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    plan_id: Optional[str] = None,
    expiring_within_days: Optional[int] = Query(None, ge=0),
    sort_by: SortField = SortField.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    filters = SubscriptionFilters(
        status=status_filter,
        plan_id=plan_id,
        expiring_within_days=expiring_within_days,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    return SubscriptionPage.from_domain(lifecycle.list_subscriptions(filters))


@router.get("/stats", response_model=SubscriptionStatsResponse)
def subscription_stats(
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    return SubscriptionStatsResponse.from_domain(lifecycle.get_subscription_stats())


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: int,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    return SubscriptionResponse.from_domain(lifecycle.get(subscription_id))


@router.post("/{subscription_id}/extend", response_model=SubscriptionResponse)
def extend_subscription(
    subscription_id: int,
    body: ExtendSubscriptionRequest,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    subscription = lifecycle.extend(subscription_id, timedelta(days=body.days), notes=body.notes)
    return SubscriptionResponse.from_domain(subscription)


@router.post("/{subscription_id}/suspend", response_model=SubscriptionResponse)
def suspend_subscription(
    subscription_id: int,
    body: ReasonRequest,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    return SubscriptionResponse.from_domain(lifecycle.suspend(subscription_id, body.reason))


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionResponse)
def reactivate_subscription(
    subscription_id: int,
    body: Optional[OptionalReasonRequest] = None,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    notes = body.reason if body else None
    return SubscriptionResponse.from_domain(lifecycle.reactivate(subscription_id, notes))


@router.post("/{subscription_id}/change-plan", response_model=SubscriptionResponse)
def change_plan(
    subscription_id: int,
    body: ChangePlanRequest,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    subscription = lifecycle.change_plan(subscription_id, body.plan_id, notes=body.notes)
    return SubscriptionResponse.from_domain(subscription)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: int,
    body: ReasonRequest,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    return SubscriptionResponse.from_domain(lifecycle.cancel(subscription_id, body.reason))


@router.post("/{subscription_id}/reset-browse", response_model=SubscriptionResponse)
def reset_browse(
    subscription_id: int,
    body: Optional[OptionalReasonRequest] = None,
    admin_id: str = Depends(require_admin),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
):
    reason = body.reason if body else None
    return SubscriptionResponse.from_domain(lifecycle.reset_browse_count(subscription_id, reason))
