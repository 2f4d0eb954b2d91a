from sqlalchemy import Column, DateTime, Integer, String, Text

from entitlements.db.base import Base


class SubscriptionRequestRecord(Base):
    """A user's request to be placed on a plan, resolved manually by an admin."""
    __tablename__ = "subscription_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)  # pending | approved | rejected
    message = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
