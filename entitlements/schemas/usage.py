"""
Pydantic schemas for usage endpoints.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from entitlements.schemas.subscription import SubscriptionResponse
from entitlements.services.types import (
    CounterUsage,
    NotificationPermission,
    QuotaCheckResult,
    ReleaseResult,
    SubscriptionStatus,
    UsageSummary,
    VisibilityCheckResult,
)


def _subscription(sub) -> Optional[SubscriptionResponse]:
    if sub is None or not sub.is_persisted:
        return None
    return SubscriptionResponse.from_domain(sub)


class QuotaDecisionResponse(BaseModel):
    """Allow/deny decision for a metered action."""
    action: str = Field(..., description="browse, listing or job_post")
    allowed: bool
    remaining: Optional[int] = Field(None, description="Remaining quota (None for unlimited)")
    limit: Optional[int] = Field(None, description="Plan limit (None for unlimited)")
    used: int
    limit_reached: bool
    reason: Optional[str] = Field(None, description="limit_reached, subscription_expired or subscription_suspended")
    message: Optional[str] = None
    plan_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "action": "browse",
                "allowed": True,
                "remaining": 7,
                "limit": 10,
                "used": 3,
                "limit_reached": False,
                "reason": None,
                "message": "7 of 10 item views this month remaining",
                "plan_id": "plan-basic"
            }
        }

    @classmethod
    def from_domain(cls, result: QuotaCheckResult) -> "QuotaDecisionResponse":
        return cls(
            action=result.action.value,
            allowed=result.allowed,
            remaining=result.remaining,
            limit=result.limit.limit,
            used=result.used,
            limit_reached=result.limit_reached,
            reason=result.reason.value if result.reason else None,
            message=result.message,
            plan_id=result.subscription.subscription_plan_id if result.subscription else None,
        )


class QuotaExceededResponse(BaseModel):
    """Error detail returned with 429 when an increment is denied."""
    error: str = Field("quota_exceeded", description="Error code")
    action: str
    plan: str
    reason: str
    limit: Optional[int] = None
    used: int
    remaining: int
    message: str

    class Config:
        json_schema_extra = {
            "example": {
                "error": "quota_exceeded",
                "action": "browse",
                "plan": "plan-basic",
                "reason": "limit_reached",
                "limit": 10,
                "used": 10,
                "remaining": 0,
                "message": "You have used all 10 item views this month on the Basic Plan. Upgrade your plan to continue."
            }
        }


class CounterUsageResponse(BaseModel):
    used: int
    limit: Optional[int] = Field(None, description="Limit (None for unlimited)")
    remaining: Optional[int] = Field(None, description="Remaining quota (None for unlimited)")
    percentage: Optional[float] = None
    unlimited: bool
    limit_reached: bool

    @classmethod
    def from_domain(cls, usage: CounterUsage) -> "CounterUsageResponse":
        return cls(
            used=usage.used,
            limit=usage.limit,
            remaining=usage.remaining,
            percentage=usage.percentage,
            unlimited=usage.unlimited,
            limit_reached=usage.limit_reached,
        )


class UsageResponse(BaseModel):
    """Response schema for GET /me/usage."""
    plan_id: str
    plan_name: str
    status: SubscriptionStatus
    browse: CounterUsageResponse
    listings: CounterUsageResponse
    job_posts: CounterUsageResponse
    days_remaining: int
    is_expiring_soon: bool
    is_expired: bool
    is_suspended: bool
    subscription: Optional[SubscriptionResponse] = None

    @classmethod
    def from_domain(cls, summary: UsageSummary) -> "UsageResponse":
        return cls(
            plan_id=summary.plan_id,
            plan_name=summary.plan_name,
            status=summary.status,
            browse=CounterUsageResponse.from_domain(summary.browse),
            listings=CounterUsageResponse.from_domain(summary.listings),
            job_posts=CounterUsageResponse.from_domain(summary.job_posts),
            days_remaining=summary.days_remaining,
            is_expiring_soon=summary.is_expiring_soon,
            is_expired=summary.is_expired,
            is_suspended=summary.is_suspended,
            subscription=_subscription(summary.subscription),
        )


class ReleaseResponse(BaseModel):
    released: bool
    used: int
    message: str

    @classmethod
    def from_domain(cls, result: ReleaseResult) -> "ReleaseResponse":
        return cls(released=result.released, used=result.used, message=result.message)


class NotificationPermissionResponse(BaseModel):
    allowed: bool
    plan_id: str

    @classmethod
    def from_domain(cls, permission: NotificationPermission) -> "NotificationPermissionResponse":
        return cls(allowed=permission.allowed, plan_id=permission.subscription.subscription_plan_id)


class VisibilityRequest(BaseModel):
    listing_created_at: datetime = Field(..., description="Creation time of the listing (naive values are UTC)")


class VisibilityResponse(BaseModel):
    visible: bool
    delay_hours: int
    available_at: datetime

    @classmethod
    def from_domain(cls, result: VisibilityCheckResult) -> "VisibilityResponse":
        return cls(visible=result.visible, delay_hours=result.delay_hours, available_at=result.available_at)
