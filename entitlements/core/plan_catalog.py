"""
Subscription plan catalog.

Single source of truth for the built-in plans, their quota ceilings and
listing visibility delays. Plans are immutable: a plan change for a user is
always a switch to a different plan id, never an in-place edit.
"""
import enum
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from entitlements.core.errors import NotFound

# Legacy data used a literal large number for "no limit"
LEGACY_UNLIMITED_SENTINEL = 999999


class Action(str, enum.Enum):
    """Metered user actions."""
    BROWSE = "browse"
    LISTING = "listing"
    JOB_POST = "job_post"


SUPPORTED_ACTIONS: List[Action] = [Action.BROWSE, Action.LISTING, Action.JOB_POST]


@dataclass(frozen=True)
class Quota:
    """
    Tagged quota ceiling: either unlimited or bounded by a non-negative count.

    ``limit`` is None for unlimited. Use the constructors rather than building
    instances directly so a bounded quota can never be negative.
    """
    limit: Optional[int] = None

    def __post_init__(self):
        if self.limit is not None and (isinstance(self.limit, bool) or self.limit < 0):
            raise ValueError(f"Bounded quota must be a non-negative integer, got {self.limit!r}")

    @classmethod
    def unlimited(cls) -> "Quota":
        return cls(None)

    @classmethod
    def bounded(cls, limit: int) -> "Quota":
        return cls(int(limit))

    @classmethod
    def from_legacy(cls, value: Optional[int]) -> "Quota":
        """Map legacy numeric ceilings (where 999999 meant unlimited) to a Quota."""
        if value is None or value >= LEGACY_UNLIMITED_SENTINEL:
            return cls.unlimited()
        return cls.bounded(value)

    @property
    def is_unlimited(self) -> bool:
        return self.limit is None

    def remaining(self, used: int) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - used)

    def is_reached(self, used: int) -> bool:
        if self.limit is None:
            return False
        return used >= self.limit

    def usage_ratio(self, used: int) -> Optional[float]:
        if self.limit is None:
            return None
        if self.limit == 0:
            return 1.0
        return used / self.limit

    def __str__(self) -> str:
        return "unlimited" if self.limit is None else str(self.limit)


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    name: str
    display_name: str
    max_browse_count: Quota
    max_listing_count: Quota
    max_job_posts: Quota
    listing_visibility_delay_hours: int
    notifications_enabled: bool
    price: Decimal = Decimal("0")
    billing_period: str = "monthly"  # monthly | yearly
    is_active: bool = True
    description: str = ""
    features: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.listing_visibility_delay_hours < 0:
            raise ValueError("listing_visibility_delay_hours must be non-negative")
        if self.billing_period not in ("monthly", "yearly"):
            raise ValueError(f"Unsupported billing period: {self.billing_period}")

    def quota_for(self, action: Action) -> Quota:
        """Get the ceiling for a metered action."""
        if action == Action.BROWSE:
            return self.max_browse_count
        if action == Action.LISTING:
            return self.max_listing_count
        return self.max_job_posts


DEFAULT_FREE_PLAN = SubscriptionPlan(
    id="plan-free",
    name="free",
    display_name="Free (Limited Access)",
    description="Guest access with severe limitations",
    max_browse_count=Quota.bounded(3),
    max_listing_count=Quota.bounded(0),
    max_job_posts=Quota.bounded(0),
    listing_visibility_delay_hours=168,
    notifications_enabled=False,
    features=(
        "3 item views per month",
        "No listing creation",
        "Masked details",
        "No notifications",
    ),
)

DEFAULT_PLANS: Tuple[SubscriptionPlan, ...] = (
    SubscriptionPlan(
        id="plan-basic",
        name="basic",
        display_name="Basic Plan",
        description="Entry-level access for occasional users",
        max_browse_count=Quota.bounded(10),
        max_listing_count=Quota.bounded(2),
        max_job_posts=Quota.bounded(1),
        listing_visibility_delay_hours=168,  # 7 days
        notifications_enabled=False,
        features=(
            "10 item views per month",
            "List up to 2 items",
            "See listings after 7 days",
            "No notifications",
        ),
    ),
    SubscriptionPlan(
        id="plan-standard",
        name="standard",
        display_name="Standard Plan",
        description="Perfect for regular users and small institutes",
        max_browse_count=Quota.bounded(50),
        max_listing_count=Quota.bounded(10),
        max_job_posts=Quota.bounded(5),
        listing_visibility_delay_hours=24,
        notifications_enabled=True,
        price=Decimal("499"),
        features=(
            "50 item views per month",
            "List up to 10 items",
            "See listings after 24 hours",
            "Email notifications",
        ),
    ),
    SubscriptionPlan(
        id="plan-premium",
        name="premium",
        display_name="Premium Plan",
        description="Unlimited access for power users and large institutes",
        max_browse_count=Quota.unlimited(),
        max_listing_count=Quota.bounded(50),
        max_job_posts=Quota.bounded(20),
        listing_visibility_delay_hours=0,
        notifications_enabled=True,
        price=Decimal("1999"),
        features=(
            "Unlimited item views",
            "List up to 50 items",
            "Instant listing visibility",
            "Real-time notifications",
        ),
    ),
    SubscriptionPlan(
        id="plan-enterprise",
        name="enterprise",
        display_name="Enterprise Plan",
        description="Custom solution for large organizations",
        max_browse_count=Quota.unlimited(),
        max_listing_count=Quota.unlimited(),
        max_job_posts=Quota.unlimited(),
        listing_visibility_delay_hours=0,
        notifications_enabled=True,
        price=Decimal("9999"),
        features=(
            "Unlimited everything",
            "Instant visibility",
            "Dedicated support team",
        ),
    ),
)


class PlanCatalog:
    """Immutable, enumerable set of plan definitions keyed by plan id."""

    def __init__(self, plans: Iterable[SubscriptionPlan] = DEFAULT_PLANS):
        by_id: Dict[str, SubscriptionPlan] = {}
        for plan in plans:
            if plan.id in by_id:
                raise ValueError(f"Duplicate plan id: {plan.id}")
            by_id[plan.id] = plan
        self._plans = MappingProxyType(by_id)

    def get(self, plan_id: str) -> SubscriptionPlan:
        """
        Get a plan by id.

        DEFAULT_FREE_PLAN always resolves even though it is not enumerated.

        Raises:
            NotFound: if the id is unknown
        """
        plan = self.find(plan_id)
        if plan is None:
            raise NotFound("plan", plan_id)
        return plan

    def find(self, plan_id: str) -> Optional[SubscriptionPlan]:
        if plan_id == DEFAULT_FREE_PLAN.id and plan_id not in self._plans:
            return DEFAULT_FREE_PLAN
        return self._plans.get(plan_id)

    def active(self) -> List[SubscriptionPlan]:
        return [plan for plan in self._plans.values() if plan.is_active]

    def with_plan(self, plan: SubscriptionPlan) -> "PlanCatalog":
        """Return a new catalog with ``plan`` added or its active flag replaced."""
        existing = self._plans.get(plan.id)
        if existing is not None and _quota_fields(existing) != _quota_fields(plan):
            raise ValueError(f"Plan {plan.id} already exists; quota fields are immutable")
        plans = dict(self._plans)
        plans[plan.id] = plan
        return PlanCatalog(plans.values())

    def __contains__(self, plan_id) -> bool:
        return self.find(plan_id) is not None

    def __iter__(self) -> Iterator[SubscriptionPlan]:
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)


def _quota_fields(plan: SubscriptionPlan):
    return (
        plan.max_browse_count,
        plan.max_listing_count,
        plan.max_job_posts,
        plan.listing_visibility_delay_hours,
    )
