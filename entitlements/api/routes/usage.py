"""
Self-service usage endpoints.

Listing and job-post providers call the ``check`` endpoint before creating an
entity and the increment endpoint only after the create succeeded.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from entitlements.api.deps import get_quota_enforcer, get_visibility
from entitlements.core.auth_dependency import get_current_user_id
from entitlements.core.plan_catalog import Action
from entitlements.schemas.usage import (
    NotificationPermissionResponse,
    QuotaDecisionResponse,
    QuotaExceededResponse,
    ReleaseResponse,
    UsageResponse,
    VisibilityRequest,
    VisibilityResponse,
)
from entitlements.services.quota_service import QuotaEnforcer
from entitlements.services.types import QuotaCheckResult
from entitlements.services.visibility_service import VisibilityScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me", tags=["Usage"])


def consumed_or_429(result: QuotaCheckResult) -> QuotaDecisionResponse:
    """Turn a denied increment into a 429 with a structured detail."""
    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=QuotaExceededResponse(
                action=result.action.value,
                plan=result.subscription.subscription_plan_id,
                reason=result.reason.value,
                limit=result.limit.limit,
                used=result.used,
                remaining=0,
                message=result.message,
            ).model_dump(),
        )
    return QuotaDecisionResponse.from_domain(result)


@router.get("/usage", response_model=UsageResponse, status_code=status.HTTP_200_OK)
def get_usage(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    """
    Get current usage for the authenticated user.

    Returns the plan, subscription status and per-counter used / limit /
    remaining (limit and remaining are null when unlimited).
    """
    summary = quota.get_usage_summary(user_id)
    logger.debug(f"Usage summary requested: user_id={user_id}, plan={summary.plan_id}")
    return UsageResponse.from_domain(summary)


@router.post("/browse/check", response_model=QuotaDecisionResponse)
def check_browse(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return QuotaDecisionResponse.from_domain(quota.check_browse_limit(user_id))


@router.post("/browse", response_model=QuotaDecisionResponse)
def record_browse(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    """Consume one item view. 429 when the monthly limit is used up or the subscription is inactive."""
    return consumed_or_429(quota.increment_browse_count(user_id))


@router.post("/listings/check", response_model=QuotaDecisionResponse)
def check_listing(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return QuotaDecisionResponse.from_domain(quota.check_listing_limit(user_id))


@router.post("/listings", response_model=QuotaDecisionResponse)
def record_listing(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return consumed_or_429(quota.increment_listing_count(user_id))


@router.delete("/listings", response_model=ReleaseResponse)
def release_listing(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    """Report a deleted listing. Frees quota only when release on delete is enabled."""
    return ReleaseResponse.from_domain(quota.release(user_id, Action.LISTING))


@router.post("/job-posts/check", response_model=QuotaDecisionResponse)
def check_job_post(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return QuotaDecisionResponse.from_domain(quota.check_job_post_limit(user_id))


@router.post("/job-posts", response_model=QuotaDecisionResponse)
def record_job_post(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return consumed_or_429(quota.increment_job_post_count(user_id))


@router.delete("/job-posts", response_model=ReleaseResponse)
def release_job_post(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return ReleaseResponse.from_domain(quota.release(user_id, Action.JOB_POST))


@router.get("/notifications/permission", response_model=NotificationPermissionResponse)
def notification_permission(
    user_id: str = Depends(get_current_user_id),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
):
    return NotificationPermissionResponse.from_domain(quota.check_notification_permission(user_id))


@router.post("/visibility", response_model=VisibilityResponse)
def check_visibility(
    body: VisibilityRequest,
    user_id: str = Depends(get_current_user_id),
    visibility: VisibilityScheduler = Depends(get_visibility),
):
    """Whether a listing created at ``listing_created_at`` is visible to the caller yet."""
    return VisibilityResponse.from_domain(visibility.check_visibility(body.listing_created_at, user_id))
