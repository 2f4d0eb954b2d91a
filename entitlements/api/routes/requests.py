"""
Subscription request endpoints (manual plan activation).
"""
import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from entitlements.api.deps import get_request_service
from entitlements.core.auth_dependency import get_current_user_id, require_admin
from entitlements.schemas.request import (
    SubscriptionRequestCreate,
    SubscriptionRequestResolve,
    SubscriptionRequestResponse,
)
from entitlements.schemas.subscription import SubscriptionResponse
from entitlements.services.request_service import SubscriptionRequestService
from entitlements.services.types import RequestStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Subscription Requests"])


@router.post(
    "/me/subscription-requests",
    response_model=SubscriptionRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_request(
    body: SubscriptionRequestCreate,
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionRequestService = Depends(get_request_service),
):
    """Ask an admin to activate a plan. Only one request may be pending at a time."""
    return SubscriptionRequestResponse.from_domain(service.create(user_id, body.plan_id, body.message))


@router.get("/me/subscription-requests", response_model=List[SubscriptionRequestResponse])
def my_requests(
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionRequestService = Depends(get_request_service),
):
    return [SubscriptionRequestResponse.from_domain(r) for r in service.list(user_id=user_id)]


@router.get("/admin/subscription-requests", response_model=List[SubscriptionRequestResponse])
def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    admin_id: str = Depends(require_admin),
    service: SubscriptionRequestService = Depends(get_request_service),
):
    return [SubscriptionRequestResponse.from_domain(r) for r in service.list(status=status_filter)]


@router.post("/admin/subscription-requests/{request_id}/approve", response_model=SubscriptionResponse)
def approve_request(
    request_id: int,
    body: Optional[SubscriptionRequestResolve] = None,
    admin_id: str = Depends(require_admin),
    service: SubscriptionRequestService = Depends(get_request_service),
):
    """Approve a pending request; the user is assigned the plan starting now."""
    body = body or SubscriptionRequestResolve()
    period = timedelta(days=body.days) if body.days else None
    subscription = service.approve(request_id, admin_id, notes=body.notes, period=period)
    return SubscriptionResponse.from_domain(subscription)


@router.post("/admin/subscription-requests/{request_id}/reject", response_model=SubscriptionRequestResponse)
def reject_request(
    request_id: int,
    body: Optional[SubscriptionRequestResolve] = None,
    admin_id: str = Depends(require_admin),
    service: SubscriptionRequestService = Depends(get_request_service),
):
    notes = body.notes if body else None
    return SubscriptionRequestResponse.from_domain(service.reject(request_id, admin_id, notes=notes))
