"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.
"""
from entitlements.db.models.plan import SubscriptionPlanRecord
from entitlements.db.models.subscription import UserSubscriptionRecord
from entitlements.db.models.subscription_request import SubscriptionRequestRecord

__all__ = [
    "SubscriptionPlanRecord",
    "UserSubscriptionRecord",
    "SubscriptionRequestRecord",
]
