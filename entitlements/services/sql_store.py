"""
SQLAlchemy-backed entitlement store.

Compare-and-swap is a single guarded UPDATE (``WHERE id = :id AND
version = :expected``); a zero row count means another writer got there
first. Inserts rely on the unique ``user_id`` constraint for the same
guarantee.
"""
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from entitlements.core.errors import ConcurrencyConflict, NotFound
from entitlements.core.plan_catalog import DEFAULT_FREE_PLAN, Quota, SubscriptionPlan
from entitlements.core.timeutils import ensure_utc
from entitlements.db.models.plan import SubscriptionPlanRecord
from entitlements.db.models.subscription import UserSubscriptionRecord
from entitlements.db.models.subscription_request import SubscriptionRequestRecord
from entitlements.services.entitlement_store import EntitlementStore
from entitlements.services.types import (
    Page,
    RequestStatus,
    SortOrder,
    SubscriptionFilters,
    SubscriptionRequest,
    SubscriptionStatus,
    UserSubscription,
)

logger = logging.getLogger(__name__)

_SUBSCRIPTION_FIELDS = (
    "user_id",
    "subscription_plan_id",
    "start_date",
    "end_date",
    "browse_count_used",
    "last_browse_reset_at",
    "listing_count_used",
    "job_posts_used",
    "assigned_by",
    "notes",
    "created_at",
    "updated_at",
    "cancelled_at",
    "expiry_warning_sent_at",
)

_REQUEST_FIELDS = (
    "user_id",
    "plan_id",
    "message",
    "admin_notes",
    "created_at",
    "resolved_at",
    "resolved_by",
)


def plan_to_domain(row: SubscriptionPlanRecord) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=row.id,
        name=row.name,
        display_name=row.display_name,
        description=row.description or "",
        max_browse_count=Quota(row.max_browse_count),
        max_listing_count=Quota(row.max_listing_count),
        max_job_posts=Quota(row.max_job_posts),
        listing_visibility_delay_hours=row.listing_visibility_delay_hours,
        notifications_enabled=bool(row.notifications_enabled),
        price=Decimal(str(row.price if row.price is not None else 0)),
        billing_period=row.billing_period,
        is_active=bool(row.is_active),
        features=tuple(row.features or ()),
    )


def plan_to_record(plan: SubscriptionPlan) -> SubscriptionPlanRecord:
    return SubscriptionPlanRecord(
        id=plan.id,
        name=plan.name,
        display_name=plan.display_name,
        description=plan.description,
        max_browse_count=plan.max_browse_count.limit,
        max_listing_count=plan.max_listing_count.limit,
        max_job_posts=plan.max_job_posts.limit,
        listing_visibility_delay_hours=plan.listing_visibility_delay_hours,
        notifications_enabled=plan.notifications_enabled,
        price=plan.price,
        billing_period=plan.billing_period,
        is_active=plan.is_active,
        features=list(plan.features),
    )


def subscription_to_domain(row: UserSubscriptionRecord) -> UserSubscription:
    return UserSubscription(
        id=row.id,
        user_id=row.user_id,
        subscription_plan_id=row.subscription_plan_id,
        start_date=ensure_utc(row.start_date),
        end_date=ensure_utc(row.end_date),
        status=SubscriptionStatus(row.status),
        last_browse_reset_at=ensure_utc(row.last_browse_reset_at),
        browse_count_used=row.browse_count_used,
        listing_count_used=row.listing_count_used,
        job_posts_used=row.job_posts_used,
        assigned_by=row.assigned_by,
        notes=row.notes,
        version=row.version,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        cancelled_at=ensure_utc(row.cancelled_at),
        expiry_warning_sent_at=ensure_utc(row.expiry_warning_sent_at),
    )


def request_to_domain(row: SubscriptionRequestRecord) -> SubscriptionRequest:
    return SubscriptionRequest(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        status=RequestStatus(row.status),
        message=row.message,
        admin_notes=row.admin_notes,
        created_at=ensure_utc(row.created_at),
        resolved_at=ensure_utc(row.resolved_at),
        resolved_by=row.resolved_by,
        version=row.version,
    )


class SqlEntitlementStore(EntitlementStore):
    """Entitlement store over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # Subscriptions

    def get_by_user_id(self, user_id: str) -> UserSubscription:
        db = self._session()
        try:
            row = db.query(UserSubscriptionRecord).filter(UserSubscriptionRecord.user_id == user_id).first()
            if not row:
                raise NotFound("subscription", user_id)
            return subscription_to_domain(row)
        finally:
            db.close()

    def get_by_id(self, subscription_id: int) -> UserSubscription:
        db = self._session()
        try:
            row = db.query(UserSubscriptionRecord).filter(UserSubscriptionRecord.id == subscription_id).first()
            if not row:
                raise NotFound("subscription", subscription_id)
            return subscription_to_domain(row)
        finally:
            db.close()

    def save(self, subscription: UserSubscription) -> UserSubscription:
        db = self._session()
        try:
            if subscription.id is None:
                return self._insert(db, subscription)

            values = {field: getattr(subscription, field) for field in _SUBSCRIPTION_FIELDS}
            values["status"] = subscription.status.value
            values["version"] = subscription.version + 1
            updated = db.query(UserSubscriptionRecord).filter(
                UserSubscriptionRecord.id == subscription.id,
                UserSubscriptionRecord.version == subscription.version,
            ).update(values, synchronize_session=False)
            db.commit()

            if updated == 0:
                exists = db.query(UserSubscriptionRecord.id).filter(
                    UserSubscriptionRecord.id == subscription.id
                ).first()
                if not exists:
                    raise NotFound("subscription", subscription.id)
                raise ConcurrencyConflict(subscription.id, subscription.version)

            return replace(subscription, version=subscription.version + 1)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _insert(self, db: Session, subscription: UserSubscription) -> UserSubscription:
        row = UserSubscriptionRecord(
            status=subscription.status.value,
            version=1,
            **{field: getattr(subscription, field) for field in _SUBSCRIPTION_FIELDS},
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Subscription insert lost race: user_id={subscription.user_id}")
            raise ConcurrencyConflict(f"user:{subscription.user_id}")
        db.refresh(row)
        return subscription_to_domain(row)

    def iter_subscriptions(self) -> Iterable[UserSubscription]:
        db = self._session()
        try:
            rows = db.query(UserSubscriptionRecord).order_by(UserSubscriptionRecord.id).all()
            return [subscription_to_domain(row) for row in rows]
        finally:
            db.close()

    def query_subscriptions(self, filters: SubscriptionFilters, now: datetime) -> Page:
        db = self._session()
        try:
            query = db.query(UserSubscriptionRecord)
            if filters.status is not None:
                query = query.filter(UserSubscriptionRecord.status == filters.status.value)
            if filters.plan_id is not None:
                query = query.filter(UserSubscriptionRecord.subscription_plan_id == filters.plan_id)
            if filters.expiring_within_days is not None:
                horizon = now + timedelta(days=filters.expiring_within_days)
                query = query.filter(
                    UserSubscriptionRecord.status == SubscriptionStatus.ACTIVE.value,
                    UserSubscriptionRecord.end_date >= now,
                    UserSubscriptionRecord.end_date <= horizon,
                )

            total = query.count()

            sort_column = getattr(UserSubscriptionRecord, filters.sort_by.value)
            if filters.sort_order == SortOrder.DESC:
                query = query.order_by(sort_column.desc(), UserSubscriptionRecord.id.desc())
            else:
                query = query.order_by(sort_column.asc(), UserSubscriptionRecord.id.asc())

            rows = query.offset(filters.offset).limit(filters.page_size).all()
            return Page(
                items=[subscription_to_domain(row) for row in rows],
                total=total,
                page=filters.page,
                page_size=filters.page_size,
            )
        finally:
            db.close()

    # Plans

    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        db = self._session()
        try:
            row = db.query(SubscriptionPlanRecord).filter(SubscriptionPlanRecord.id == plan_id).first()
            if row:
                return plan_to_domain(row)
            if plan_id == DEFAULT_FREE_PLAN.id:
                return DEFAULT_FREE_PLAN
            raise NotFound("plan", plan_id)
        finally:
            db.close()

    def list_plans(self) -> List[SubscriptionPlan]:
        db = self._session()
        try:
            rows = db.query(SubscriptionPlanRecord).order_by(SubscriptionPlanRecord.price, SubscriptionPlanRecord.id).all()
            return [plan_to_domain(row) for row in rows]
        finally:
            db.close()

    def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        if plan.id == DEFAULT_FREE_PLAN.id:
            raise ValueError(f"Plan {plan.id} already exists")
        db = self._session()
        try:
            db.add(plan_to_record(plan))
            db.commit()
            return plan
        except IntegrityError:
            db.rollback()
            raise ValueError(f"Plan {plan.id} already exists")
        finally:
            db.close()

    def set_plan_active(self, plan_id: str, is_active: bool) -> SubscriptionPlan:
        db = self._session()
        try:
            row = db.query(SubscriptionPlanRecord).filter(SubscriptionPlanRecord.id == plan_id).first()
            if not row:
                raise NotFound("plan", plan_id)
            row.is_active = is_active
            db.commit()
            db.refresh(row)
            return plan_to_domain(row)
        finally:
            db.close()

    def seed_plans(self, plans: Iterable[SubscriptionPlan]) -> int:
        """Insert any catalog plans that are missing. Existing rows are left untouched."""
        db = self._session()
        try:
            existing = {plan_id for (plan_id,) in db.query(SubscriptionPlanRecord.id).all()}
            added = 0
            for plan in plans:
                if plan.id in existing:
                    continue
                db.add(plan_to_record(plan))
                added += 1
            db.commit()
            if added:
                logger.info(f"Seeded {added} subscription plans")
            return added
        finally:
            db.close()

    # Subscription requests

    def get_request(self, request_id: int) -> SubscriptionRequest:
        db = self._session()
        try:
            row = db.query(SubscriptionRequestRecord).filter(SubscriptionRequestRecord.id == request_id).first()
            if not row:
                raise NotFound("subscription request", request_id)
            return request_to_domain(row)
        finally:
            db.close()

    def save_request(self, request: SubscriptionRequest) -> SubscriptionRequest:
        db = self._session()
        try:
            if request.id is None:
                row = SubscriptionRequestRecord(
                    status=request.status.value,
                    version=1,
                    **{field: getattr(request, field) for field in _REQUEST_FIELDS},
                )
                db.add(row)
                db.commit()
                db.refresh(row)
                return request_to_domain(row)

            values = {field: getattr(request, field) for field in _REQUEST_FIELDS}
            values["status"] = request.status.value
            values["version"] = request.version + 1
            updated = db.query(SubscriptionRequestRecord).filter(
                SubscriptionRequestRecord.id == request.id,
                SubscriptionRequestRecord.version == request.version,
            ).update(values, synchronize_session=False)
            db.commit()
            if updated == 0:
                raise ConcurrencyConflict(request.id, request.version)
            return replace(request, version=request.version + 1)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        user_id: Optional[str] = None,
    ) -> List[SubscriptionRequest]:
        db = self._session()
        try:
            query = db.query(SubscriptionRequestRecord)
            if status is not None:
                query = query.filter(SubscriptionRequestRecord.status == status.value)
            if user_id is not None:
                query = query.filter(SubscriptionRequestRecord.user_id == user_id)
            return [request_to_domain(row) for row in query.order_by(SubscriptionRequestRecord.id).all()]
        finally:
            db.close()

    def close(self) -> None:
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            bind.dispose()
