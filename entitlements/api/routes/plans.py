"""
Plan catalog endpoints.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status

from entitlements.api.deps import get_store
from entitlements.core.auth_dependency import require_admin
from entitlements.schemas.plan import PlanActiveUpdate, PlanCreateRequest, PlanResponse
from entitlements.services.entitlement_store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Plans"])


@router.get("/plans", response_model=List[PlanResponse])
def list_active_plans(store: EntitlementStore = Depends(get_store)):
    """Plans currently offered to users. Public."""
    return [PlanResponse.from_domain(plan) for plan in store.list_plans() if plan.is_active]


@router.get("/admin/plans", response_model=List[PlanResponse])
def list_all_plans(
    admin_id: str = Depends(require_admin),
    store: EntitlementStore = Depends(get_store),
):
    return [PlanResponse.from_domain(plan) for plan in store.list_plans()]


@router.post("/admin/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
def create_plan(
    body: PlanCreateRequest,
    admin_id: str = Depends(require_admin),
    store: EntitlementStore = Depends(get_store),
):
    """
    Add a plan under a new id.

    Existing plans are never edited in place; publish a new plan and move
    users to it instead.
    """
    plan = store.add_plan(body.to_domain())
    logger.info(f"Plan created: id={plan.id}, by={admin_id}")
    return PlanResponse.from_domain(plan)


@router.patch("/admin/plans/{plan_id}", response_model=PlanResponse)
def set_plan_active(
    plan_id: str,
    body: PlanActiveUpdate,
    admin_id: str = Depends(require_admin),
    store: EntitlementStore = Depends(get_store),
):
    plan = store.set_plan_active(plan_id, body.is_active)
    logger.info(f"Plan {'activated' if plan.is_active else 'deactivated'}: id={plan.id}, by={admin_id}")
    return PlanResponse.from_domain(plan)
