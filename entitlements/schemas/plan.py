"""
Pydantic schemas for plan endpoints.
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from entitlements.core.plan_catalog import Quota, SubscriptionPlan


class PlanResponse(BaseModel):
    """A subscription plan. Quota limits are null when unlimited."""
    id: str
    name: str
    display_name: str
    description: str
    max_browse_count: Optional[int] = Field(None, description="Monthly item views (None for unlimited)")
    max_listing_count: Optional[int] = Field(None, description="Listings for the subscription period (None for unlimited)")
    max_job_posts: Optional[int] = Field(None, description="Job posts for the subscription period (None for unlimited)")
    listing_visibility_delay_hours: int
    notifications_enabled: bool
    price: float
    billing_period: str
    is_active: bool
    features: List[str]

    class Config:
        json_schema_extra = {
            "example": {
                "id": "plan-standard",
                "name": "standard",
                "display_name": "Standard Plan",
                "description": "Perfect for regular users and small institutes",
                "max_browse_count": 50,
                "max_listing_count": 10,
                "max_job_posts": 5,
                "listing_visibility_delay_hours": 24,
                "notifications_enabled": True,
                "price": 499.0,
                "billing_period": "monthly",
                "is_active": True,
                "features": ["50 item views per month", "List up to 10 items"]
            }
        }

    @classmethod
    def from_domain(cls, plan: SubscriptionPlan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            display_name=plan.display_name,
            description=plan.description,
            max_browse_count=plan.max_browse_count.limit,
            max_listing_count=plan.max_listing_count.limit,
            max_job_posts=plan.max_job_posts.limit,
            listing_visibility_delay_hours=plan.listing_visibility_delay_hours,
            notifications_enabled=plan.notifications_enabled,
            price=float(plan.price),
            billing_period=plan.billing_period,
            is_active=plan.is_active,
            features=list(plan.features),
        )


class PlanCreateRequest(BaseModel):
    """Request body for POST /admin/plans. Omit a limit (or send null) for unlimited."""
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=64)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    max_browse_count: Optional[int] = Field(None, ge=0)
    max_listing_count: Optional[int] = Field(None, ge=0)
    max_job_posts: Optional[int] = Field(None, ge=0)
    listing_visibility_delay_hours: int = Field(0, ge=0)
    notifications_enabled: bool = False
    price: Decimal = Field(Decimal("0"), ge=0)
    billing_period: str = Field("monthly", pattern="^(monthly|yearly)$")
    features: List[str] = Field(default_factory=list)

    def to_domain(self) -> SubscriptionPlan:
        return SubscriptionPlan(
            id=self.id,
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            max_browse_count=Quota(self.max_browse_count),
            max_listing_count=Quota(self.max_listing_count),
            max_job_posts=Quota(self.max_job_posts),
            listing_visibility_delay_hours=self.listing_visibility_delay_hours,
            notifications_enabled=self.notifications_enabled,
            price=self.price,
            billing_period=self.billing_period,
            features=tuple(self.features),
        )


class PlanActiveUpdate(BaseModel):
    is_active: bool
