"""
Domain records and result types shared by the entitlement services.

Records are frozen dataclasses; services derive updated copies with
``dataclasses.replace`` and hand them to the store for a compare-and-swap.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from entitlements.core.plan_catalog import Action, Quota


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class DenyReason(str, enum.Enum):
    LIMIT_REACHED = "limit_reached"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_SUSPENDED = "subscription_suspended"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class UserSubscription:
    """
    The single authoritative usage/subscription record for a user.

    ``id`` is None for the synthesized free-plan fallback that has not been
    persisted yet. ``version`` is the optimistic-lock stamp checked by
    ``EntitlementStore.save``.
    """
    id: Optional[int]
    user_id: str
    subscription_plan_id: str
    start_date: datetime
    end_date: datetime
    status: SubscriptionStatus
    last_browse_reset_at: datetime
    browse_count_used: int = 0
    listing_count_used: int = 0
    job_posts_used: int = 0
    assigned_by: str = "system"
    notes: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expiry_warning_sent_at: Optional[datetime] = None

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    def used_for(self, action: Action) -> int:
        if action == Action.BROWSE:
            return self.browse_count_used
        if action == Action.LISTING:
            return self.listing_count_used
        return self.job_posts_used


@dataclass(frozen=True)
class QuotaCheckResult:
    """
    Allow/deny decision for a metered action.

    ``remaining`` is None when the plan's quota is unlimited. On denial the
    message is always set so UI layers can render it directly.
    """
    allowed: bool
    remaining: Optional[int]
    limit_reached: bool
    subscription: Optional[UserSubscription]
    message: Optional[str]
    action: Action
    limit: Quota
    used: int
    reason: Optional[DenyReason] = None


BrowseCheckResult = QuotaCheckResult
ListingCheckResult = QuotaCheckResult


@dataclass(frozen=True)
class VisibilityCheckResult:
    visible: bool
    delay_hours: int
    available_at: datetime
    subscription: Optional[UserSubscription]


@dataclass(frozen=True)
class NotificationPermission:
    allowed: bool
    subscription: Optional[UserSubscription]


@dataclass(frozen=True)
class ReleaseResult:
    released: bool
    used: int
    subscription: Optional[UserSubscription]
    message: str


@dataclass(frozen=True)
class CounterUsage:
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    percentage: Optional[float]
    unlimited: bool
    limit_reached: bool


@dataclass(frozen=True)
class UsageSummary:
    plan_id: str
    plan_name: str
    status: SubscriptionStatus
    browse: CounterUsage
    listings: CounterUsage
    job_posts: CounterUsage
    days_remaining: int
    is_expiring_soon: bool
    is_expired: bool
    is_suspended: bool
    subscription: Optional[UserSubscription]


class SortField(str, enum.Enum):
    START_DATE = "start_date"
    END_DATE = "end_date"
    CREATED_AT = "created_at"


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class SubscriptionFilters:
    """
    Admin listing filter.

    status: only records in this lifecycle state (as persisted)
    plan_id: only records on this plan
    expiring_within_days: only active records whose end date falls within
        the next N days (and is not already past)
    sort_by / sort_order: ordering of the page, ties broken by id
    page / page_size: 1-based pagination, page_size capped at 100
    """
    status: Optional[SubscriptionStatus] = None
    plan_id: Optional[str] = None
    expiring_within_days: Optional[int] = None
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    page: int = 1
    page_size: int = 20

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if self.expiring_within_days is not None and self.expiring_within_days < 0:
            raise ValueError("expiring_within_days must be non-negative")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class SubscriptionStats:
    total_subscriptions: int
    active_subscriptions: int
    expired_subscriptions: int
    suspended_subscriptions: int
    expiring_soon: int
    total_plans: int
    active_plans: int
    revenue_projection: Decimal


@dataclass(frozen=True)
class SubscriptionRequest:
    id: Optional[int]
    user_id: str
    plan_id: str
    status: RequestStatus = RequestStatus.PENDING
    message: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    version: int = 1


@dataclass(frozen=True)
class SweepReport:
    examined: int = 0
    expired: int = 0
    browse_resets: int = 0
    conflicts: int = 0
    expired_user_ids: List[str] = field(default_factory=list)
