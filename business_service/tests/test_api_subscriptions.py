"""
HTTP surface for plans, subscriptions, usage and entitlements.
"""
from fastapi.testclient import TestClient

from business_service.main import app
from business_service.models.plan import SubscriptionTier


def _subscribe(client, business_id, plan_id, is_annual=False):
    resp = client.post(
        "/api/subscriptions",
        json={"business_id": business_id, "plan_id": plan_id, "is_annual": is_annual},
    )
    assert resp.status_code == 201
    return resp.json()


def test_liveness_and_readiness(plans):
    client = TestClient(app)
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").status_code == 200


def test_readiness_fails_without_default_plan():
    client = TestClient(app)
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "default plan missing"


def test_db_health(plans):
    client = TestClient(app)
    body = client.get("/api/health/db").json()
    assert body["ok"] is True
    assert body["catalog_ok"] is True
    assert body["db"]["connected"] is True
    assert len(body["db"]["tables_present"]) == 4


def test_list_and_read_plans(plans):
    client = TestClient(app)
    listed = client.get("/api/subscriptions/plans").json()
    assert [p["name"] for p in listed] == ["Basic", "Premium", "Enterprise"]

    premium = client.get(f"/api/subscriptions/plans/{plans[SubscriptionTier.PREMIUM].id}").json()
    assert premium["monthly_reply_limit"] == 120
    assert premium["private_reviews_enabled"] is True


def test_subscribe_and_read_back(plans, business):
    client = TestClient(app)
    created = _subscribe(client, business["id"], plans[SubscriptionTier.PREMIUM].id)

    assert created["status"] == "active"
    assert created["plan_name"] == "Premium"
    assert created["is_active"] is True

    resp = client.get(f"/api/subscriptions/business/{business['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]


def test_record_usage_and_read_it(plans, business):
    client = TestClient(app)
    _subscribe(client, business["id"], plans[SubscriptionTier.BASIC].id)

    recorded = client.post(f"/api/subscriptions/business/{business['id']}/usage/reply").json()
    assert recorded == {"recorded": True, "action_type": "reply"}

    usage = client.get(f"/api/subscriptions/business/{business['id']}/usage").json()
    assert usage["replies"]["used"] == 1
    assert usage["replies"]["limit"] == 10
    assert usage["replies"]["remaining"] == 9
    assert usage["disputes"]["used"] == 0


def test_can_perform_and_feature_gate(plans, business):
    client = TestClient(app)
    _subscribe(client, business["id"], plans[SubscriptionTier.PREMIUM].id)

    can = client.get(f"/api/subscriptions/business/{business['id']}/can-perform/private_reviews").json()
    assert can == {"can_perform": True, "action_type": "private_reviews"}

    gate = client.get(f"/api/subscriptions/business/{business['id']}/feature/data_api").json()
    assert gate["available"] is False
    assert gate["message"] == "Upgrade to Enterprise to access this feature"


def test_upgrade_then_cancel(plans, business):
    client = TestClient(app)
    _subscribe(client, business["id"], plans[SubscriptionTier.BASIC].id)

    upgraded = client.put(
        "/api/subscriptions/upgrade",
        json={"business_id": business["id"], "new_plan_id": plans[SubscriptionTier.ENTERPRISE].id},
    )
    assert upgraded.status_code == 200
    assert upgraded.json()["plan_name"] == "Enterprise"

    cancelled = client.post("/api/subscriptions/cancel", json={"business_id": business["id"], "reason": "closing"})
    assert cancelled.json() == {"message": "Subscription cancelled successfully"}
    assert client.get(f"/api/subscriptions/business/{business['id']}").status_code == 404


def test_upgrade_comparison_is_null_at_top_tier(plans, business):
    client = TestClient(app)
    _subscribe(client, business["id"], plans[SubscriptionTier.ENTERPRISE].id)

    resp = client.get(f"/api/subscriptions/business/{business['id']}/upgrade-comparison")
    assert resp.status_code == 200
    assert resp.json() is None


def test_upgrade_comparison_for_default_plan(plans, business):
    client = TestClient(app)
    body = client.get(f"/api/subscriptions/business/{business['id']}/upgrade-comparison").json()
    assert body["recommended_plan"]["name"] == "Premium"
    assert body["additional_features"] == ["Private Reviews"]


def test_entitlements_snapshot(plans, business):
    client = TestClient(app)
    body = client.get(f"/api/subscriptions/business/{business['id']}/entitlements").json()
    assert body["has_active_subscription"] is False
    assert body["plan"]["name"] == "Basic"
    assert [f["feature"] for f in body["features"]][:2] == ["private_reviews", "dnd_mode"]


def test_expiring_window_validation(plans):
    client = TestClient(app)
    assert client.get("/api/subscriptions/expiring", params={"days": 30}).json() == []
    assert client.get("/api/subscriptions/expiring", params={"days": -1}).status_code == 422


def test_missing_invoice(plans):
    client = TestClient(app)
    resp = client.get("/api/subscription-invoices/nope")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Invoice not found"


def test_consume_stops_at_limit(plans, business):
    client = TestClient(app)
    _subscribe(client, business["id"], plans[SubscriptionTier.BASIC].id)
    url = f"/api/subscriptions/business/{business['id']}/usage/dispute/consume"

    for _ in range(5):
        assert client.post(url).json() == {"allowed": True, "action_type": "dispute"}

    refused = client.post(url)
    assert refused.status_code == 403
    assert refused.json()["error"]["code"] == "quota_exceeded"

    usage = client.get(f"/api/subscriptions/business/{business['id']}/usage").json()
    assert usage["disputes"]["used"] == 5
    assert usage["disputes"]["remaining"] == 0


def test_consume_rejects_unmetered_action(plans, business):
    client = TestClient(app)
    resp = client.post(f"/api/subscriptions/business/{business['id']}/usage/dnd_mode/consume")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_health_reports_unreachable_database(plans, monkeypatch):
    from business_service.api import health

    monkeypatch.setattr(health, "check_connection", lambda: False)
    client = TestClient(app)

    ready = client.get("/readyz")
    assert ready.status_code == 503
    assert ready.json()["detail"] == "database unreachable"

    body = client.get("/api/health/db").json()
    assert body["ok"] is False
    assert body["db"]["connected"] is False
    assert body["db"]["tables_present"] == []
