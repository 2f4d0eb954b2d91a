"""
Integration tests for the HTTP routes.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from entitlements.core.security import create_access_token
from entitlements.main import create_app
from entitlements.services.entitlement_store import InMemoryEntitlementStore


@pytest.fixture
def app_store():
    return InMemoryEntitlementStore()


@pytest.fixture
def client(app_store, trigger, clock):
    app = create_app(app_store, trigger=trigger, clock=clock, configure_logging=False)
    return TestClient(app)


def auth(user_id: str, role: str = None) -> dict:
    claims = {"sub": user_id}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


USER = auth("user-1")
ADMIN = auth("admin-1", role="admin")


def assign(client, clock, user_id="user-1", plan_id="plan-basic", days=30):
    response = client.post("/admin/subscriptions", headers=ADMIN, json={
        "user_id": user_id,
        "plan_id": plan_id,
        "start_date": clock.now.isoformat(),
        "end_date": (clock.now + timedelta(days=days)).isoformat(),
    })
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    """Test health check reports the store."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["plans"] == 4


def test_public_plan_list(client):
    """Test active plans are listed without authentication."""
    response = client.get("/plans")
    assert response.status_code == 200
    plans = {plan["id"]: plan for plan in response.json()}
    assert set(plans) == {"plan-basic", "plan-standard", "plan-premium", "plan-enterprise"}
    assert plans["plan-premium"]["max_browse_count"] is None
    assert plans["plan-basic"]["max_browse_count"] == 10


def test_requires_token(client):
    """Test /me routes reject missing and invalid tokens."""
    assert client.get("/me/usage").status_code == 401
    response = client.get("/me/usage", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_usage_for_guest(client):
    """Test a user without a subscription sees the free plan."""
    response = client.get("/me/usage", headers=USER)
    assert response.status_code == 200
    data = response.json()
    assert data["plan_id"] == "plan-free"
    assert data["browse"]["limit"] == 3
    assert data["subscription"] is None


def test_browse_until_quota_exceeded(client):
    """Test the free plan allows three views and then answers 429."""
    for remaining in (2, 1, 0):
        response = client.post("/me/browse", headers=USER)
        assert response.status_code == 200
        assert response.json()["remaining"] == remaining

    response = client.post("/me/browse", headers=USER)
    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error"] == "quota_exceeded"
    assert detail["reason"] == "limit_reached"
    assert detail["limit"] == 3
    assert detail["remaining"] == 0
    assert detail["message"]

    check = client.post("/me/browse/check", headers=USER)
    assert check.status_code == 200
    assert check.json()["allowed"] is False
    assert check.json()["limit_reached"] is True


def test_listing_flow(client, clock):
    """Test check before create, increment after, and release when disabled."""
    assign(client, clock, plan_id="plan-basic")

    check = client.post("/me/listings/check", headers=USER).json()
    assert check["allowed"] is True
    assert check["remaining"] == 2

    assert client.post("/me/listings", headers=USER).status_code == 200
    assert client.post("/me/listings", headers=USER).status_code == 200
    denied = client.post("/me/listings", headers=USER)
    assert denied.status_code == 429
    assert denied.json()["detail"]["action"] == "listing"

    released = client.delete("/me/listings", headers=USER).json()
    assert released["released"] is False
    assert released["used"] == 2

    assert client.post("/me/job-posts", headers=USER).status_code == 200
    assert client.post("/me/job-posts/check", headers=USER).json()["allowed"] is False


def test_admin_routes_require_admin_role(client, clock):
    """Test non-admin tokens are refused."""
    response = client.post("/admin/subscriptions", headers=USER, json={
        "user_id": "user-1",
        "plan_id": "plan-basic",
        "start_date": clock.now.isoformat(),
        "end_date": (clock.now + timedelta(days=30)).isoformat(),
    })
    assert response.status_code == 403
    assert client.get("/admin/subscriptions/stats", headers=USER).status_code == 403


def test_assign_validation_errors(client, clock):
    """Test bad periods map to 422 and unknown plans to 404."""
    response = client.post("/admin/subscriptions", headers=ADMIN, json={
        "user_id": "user-1",
        "plan_id": "plan-basic",
        "start_date": clock.now.isoformat(),
        "end_date": (clock.now - timedelta(days=1)).isoformat(),
    })
    assert response.status_code == 422

    response = client.post("/admin/subscriptions", headers=ADMIN, json={
        "user_id": "user-1",
        "plan_id": "plan-gold",
        "start_date": clock.now.isoformat(),
        "end_date": (clock.now + timedelta(days=1)).isoformat(),
    })
    assert response.status_code == 404


def test_suspend_blocks_usage(client, clock):
    """Test a suspended subscription is denied with a reason, and double suspend is 409."""
    sub = assign(client, clock, plan_id="plan-premium")

    response = client.post(f"/admin/subscriptions/{sub['id']}/suspend", headers=ADMIN, json={"reason": "chargeback"})
    assert response.status_code == 200
    assert response.json()["status"] == "suspended"

    check = client.post("/me/browse/check", headers=USER).json()
    assert check["allowed"] is False
    assert check["reason"] == "subscription_suspended"

    response = client.post(f"/admin/subscriptions/{sub['id']}/suspend", headers=ADMIN, json={"reason": "again"})
    assert response.status_code == 409

    response = client.post(f"/admin/subscriptions/{sub['id']}/reactivate", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "active"


def test_admin_lifecycle_routes(client, clock):
    """Test extend, change-plan, reset-browse and cancel through the API."""
    sub = assign(client, clock, plan_id="plan-basic")
    client.post("/me/browse", headers=USER)

    extended = client.post(f"/admin/subscriptions/{sub['id']}/extend", headers=ADMIN, json={"days": 10}).json()
    assert extended["version"] > sub["version"]

    changed = client.post(
        f"/admin/subscriptions/{sub['id']}/change-plan", headers=ADMIN, json={"plan_id": "plan-standard"}
    ).json()
    assert changed["subscription_plan_id"] == "plan-standard"
    assert changed["browse_count_used"] == 1

    reset = client.post(f"/admin/subscriptions/{sub['id']}/reset-browse", headers=ADMIN).json()
    assert reset["browse_count_used"] == 0

    cancelled = client.post(f"/admin/subscriptions/{sub['id']}/cancel", headers=ADMIN, json={"reason": "refund"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "expired"
    assert cancelled.json()["cancelled_at"] is not None

    response = client.post(f"/admin/subscriptions/{sub['id']}/extend", headers=ADMIN, json={"days": 10})
    assert response.status_code == 409


def test_admin_list_get_and_stats(client, clock):
    """Test admin read endpoints."""
    first = assign(client, clock, user_id="user-1", plan_id="plan-standard")
    assign(client, clock, user_id="user-2", plan_id="plan-premium", days=5)

    listing = client.get("/admin/subscriptions", headers=ADMIN, params={"expiring_within_days": 7}).json()
    assert listing["total"] == 1
    assert listing["items"][0]["user_id"] == "user-2"

    listing = client.get("/admin/subscriptions", headers=ADMIN, params={"status": "active", "page_size": 1}).json()
    assert listing["total"] == 2
    assert listing["total_pages"] == 2

    fetched = client.get(f"/admin/subscriptions/{first['id']}", headers=ADMIN)
    assert fetched.status_code == 200
    assert fetched.json()["user_id"] == "user-1"
    assert client.get("/admin/subscriptions/999", headers=ADMIN).status_code == 404

    stats = client.get("/admin/subscriptions/stats", headers=ADMIN).json()
    assert stats["total_subscriptions"] == 2
    assert stats["expiring_soon"] == 1
    assert stats["revenue_projection"] == 2498.0


def test_admin_plan_management(client):
    """Test creating a plan under a new id and withdrawing it."""
    response = client.post("/admin/plans", headers=ADMIN, json={
        "id": "plan-gold",
        "name": "gold",
        "display_name": "Gold Plan",
        "max_browse_count": 200,
        "max_listing_count": 25,
        "listing_visibility_delay_hours": 12,
        "notifications_enabled": True,
        "price": "999",
    })
    assert response.status_code == 201
    assert response.json()["max_job_posts"] is None

    duplicate = client.post("/admin/plans", headers=ADMIN, json={
        "id": "plan-gold", "name": "gold-2", "display_name": "Gold Again",
    })
    assert duplicate.status_code == 422

    response = client.patch("/admin/plans/plan-gold", headers=ADMIN, json={"is_active": False})
    assert response.status_code == 200
    assert "plan-gold" not in {plan["id"] for plan in client.get("/plans").json()}
    assert "plan-gold" in {plan["id"] for plan in client.get("/admin/plans", headers=ADMIN).json()}


def test_visibility_endpoint(client, clock):
    """Test the caller's delay is applied."""
    assign(client, clock, plan_id="plan-standard")
    response = client.post("/me/visibility", headers=USER, json={
        "listing_created_at": (clock.now - timedelta(hours=2)).isoformat(),
    })
    assert response.status_code == 200
    assert response.json()["visible"] is False
    assert response.json()["delay_hours"] == 24


def test_notification_permission_endpoint(client, clock):
    """Test the plan flag is reported."""
    assert client.get("/me/notifications/permission", headers=USER).json()["allowed"] is False
    assign(client, clock, plan_id="plan-standard")
    assert client.get("/me/notifications/permission", headers=USER).json()["allowed"] is True


def test_subscription_request_flow(client):
    """Test a user request approved by an admin activates the plan."""
    response = client.post("/me/subscription-requests", headers=USER, json={"plan_id": "plan-standard"})
    assert response.status_code == 201
    request_id = response.json()["id"]

    duplicate = client.post("/me/subscription-requests", headers=USER, json={"plan_id": "plan-premium"})
    assert duplicate.status_code == 409

    pending = client.get("/admin/subscription-requests", headers=ADMIN, params={"status": "pending"}).json()
    assert [r["id"] for r in pending] == [request_id]

    approved = client.post(f"/admin/subscription-requests/{request_id}/approve", headers=ADMIN, json={"notes": "paid"})
    assert approved.status_code == 200
    assert approved.json()["subscription_plan_id"] == "plan-standard"

    mine = client.get("/me/subscription-requests", headers=USER).json()
    assert mine[0]["status"] == "approved"
    assert client.get("/me/usage", headers=USER).json()["plan_id"] == "plan-standard"

    again = client.post(f"/admin/subscription-requests/{request_id}/reject", headers=ADMIN)
    assert again.status_code == 409


def test_app_with_sql_store(clock):
    """Test the default SQL-backed wiring end to end."""
    app = create_app(clock=clock, database_url="sqlite:///:memory:", configure_logging=False)
    client = TestClient(app)
    try:
        assert client.get("/health").json()["plans"] == 4
        assert client.post("/me/browse", headers=USER).status_code == 200
        assert client.get("/me/usage", headers=USER).json()["browse"]["used"] == 1
    finally:
        app.state.services.close()
