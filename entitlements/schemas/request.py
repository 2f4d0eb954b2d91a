"""
Pydantic schemas for subscription request endpoints.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from entitlements.services.types import RequestStatus, SubscriptionRequest


class SubscriptionRequestCreate(BaseModel):
    plan_id: str = Field(..., min_length=1)
    message: Optional[str] = Field(None, max_length=2000)

    class Config:
        json_schema_extra = {
            "example": {
                "plan_id": "plan-standard",
                "message": "Paid by bank transfer, reference 1234"
            }
        }


class SubscriptionRequestResolve(BaseModel):
    notes: Optional[str] = None
    days: Optional[int] = Field(None, gt=0, description="Approval only: subscription length, defaults to the configured period")


class SubscriptionRequestResponse(BaseModel):
    id: int
    user_id: str
    plan_id: str
    status: RequestStatus
    message: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @classmethod
    def from_domain(cls, request: SubscriptionRequest) -> "SubscriptionRequestResponse":
        return cls(
            id=request.id,
            user_id=request.user_id,
            plan_id=request.plan_id,
            status=request.status,
            message=request.message,
            admin_notes=request.admin_notes,
            created_at=request.created_at,
            resolved_at=request.resolved_at,
            resolved_by=request.resolved_by,
        )
