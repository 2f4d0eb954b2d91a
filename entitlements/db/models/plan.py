from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, Numeric, String, Text
from sqlalchemy.sql import func

from entitlements.db.base import Base


class SubscriptionPlanRecord(Base):
    """
    Plan catalog row.

    Quota columns hold NULL for unlimited. Rows are inserted once and only
    their ``is_active`` flag is ever updated.
    """
    __tablename__ = "subscription_plans"

    id = Column(String, primary_key=True)  # "plan-basic", "plan-standard", ...
    name = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")

    max_browse_count = Column(Integer, nullable=True)
    max_listing_count = Column(Integer, nullable=True)
    max_job_posts = Column(Integer, nullable=True)
    listing_visibility_delay_hours = Column(Integer, nullable=False, default=0)
    notifications_enabled = Column(Boolean, nullable=False, default=False)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    billing_period = Column(String, nullable=False, default="monthly")  # monthly | yearly
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    features = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
