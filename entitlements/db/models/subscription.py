from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from entitlements.db.base import Base


class UserSubscriptionRecord(Base):
    """
    One authoritative subscription/usage row per user.

    ``version`` is the optimistic-lock stamp: every write is an UPDATE guarded
    by the version that was read.
    """
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, unique=True, index=True)
    subscription_plan_id = Column(String, nullable=False, index=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String, nullable=False, default="active", index=True)  # active | expired | suspended

    browse_count_used = Column(Integer, nullable=False, default=0)
    last_browse_reset_at = Column(DateTime(timezone=True), nullable=False)
    listing_count_used = Column(Integer, nullable=False, default=0)
    job_posts_used = Column(Integer, nullable=False, default=0)

    assigned_by = Column(String, nullable=False, default="system")
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expiry_warning_sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_user_subscriptions_status_end", "status", "end_date"),
    )
