"""
Pydantic schemas for admin subscription endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from entitlements.services.types import Page, SubscriptionStats, SubscriptionStatus, UserSubscription


class SubscriptionResponse(BaseModel):
    id: Optional[int] = Field(None, description="None for the implicit free plan")
    user_id: str
    subscription_plan_id: str
    start_date: datetime
    end_date: datetime
    status: SubscriptionStatus
    browse_count_used: int
    last_browse_reset_at: datetime
    listing_count_used: int
    job_posts_used: int
    assigned_by: str
    notes: Optional[str] = None
    version: int
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, sub: UserSubscription) -> "SubscriptionResponse":
        return cls(
            id=sub.id,
            user_id=sub.user_id,
            subscription_plan_id=sub.subscription_plan_id,
            start_date=sub.start_date,
            end_date=sub.end_date,
            status=sub.status,
            browse_count_used=sub.browse_count_used,
            last_browse_reset_at=sub.last_browse_reset_at,
            listing_count_used=sub.listing_count_used,
            job_posts_used=sub.job_posts_used,
            assigned_by=sub.assigned_by,
            notes=sub.notes,
            version=sub.version,
            cancelled_at=sub.cancelled_at,
            created_at=sub.created_at,
            updated_at=sub.updated_at,
        )


class SubscriptionPage(BaseModel):
    items: List[SubscriptionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def from_domain(cls, page: Page) -> "SubscriptionPage":
        return cls(
            items=[SubscriptionResponse.from_domain(sub) for sub in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
        )


class SubscriptionStatsResponse(BaseModel):
    total_subscriptions: int
    active_subscriptions: int
    expired_subscriptions: int
    suspended_subscriptions: int
    expiring_soon: int
    total_plans: int
    active_plans: int
    revenue_projection: float = Field(..., description="Sum of plan prices over active subscriptions")

    @classmethod
    def from_domain(cls, stats: SubscriptionStats) -> "SubscriptionStatsResponse":
        return cls(
            total_subscriptions=stats.total_subscriptions,
            active_subscriptions=stats.active_subscriptions,
            expired_subscriptions=stats.expired_subscriptions,
            suspended_subscriptions=stats.suspended_subscriptions,
            expiring_soon=stats.expiring_soon,
            total_plans=stats.total_plans,
            active_plans=stats.active_plans,
            revenue_projection=float(stats.revenue_projection),
        )


class AssignSubscriptionRequest(BaseModel):
    """Request body for POST /admin/subscriptions."""
    user_id: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)
    start_date: datetime
    end_date: datetime
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user-42",
                "plan_id": "plan-standard",
                "start_date": "2026-01-01T00:00:00Z",
                "end_date": "2026-02-01T00:00:00Z",
                "notes": "Paid by bank transfer"
            }
        }


class ExtendSubscriptionRequest(BaseModel):
    days: int = Field(..., gt=0, description="Days to add to the end date")
    notes: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class OptionalReasonRequest(BaseModel):
    reason: Optional[str] = None


class ChangePlanRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)
    notes: Optional[str] = None
