"""
Health check endpoint for deployment monitoring.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from entitlements.api.deps import get_store
from entitlements.services.entitlement_store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check(store: EntitlementStore = Depends(get_store)):
    """
    Health check endpoint for deployment monitoring.

    Returns 200 with status "degraded" if the store cannot be read.
    """
    status = "healthy"

    try:
        plans = len(store.list_plans())
        store_status = "connected"
    except Exception as e:
        logger.error(f"Health check could not read the store: {e}")
        plans = 0
        store_status = f"error: {str(e)}"
        status = "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": store_status,
        "plans": plans,
        "version": "1.0.0",
    }
