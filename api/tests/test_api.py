import pytest
from fastapi.testclient import TestClient

from spinwheel import security
from spinwheel.allocation import SpinAllocator
from spinwheel.config import settings
from spinwheel.db import get_db
from spinwheel.main import app, get_allocator
from spinwheel.models import Spin


@pytest.fixture
def client(session_factory, rng, test_settings):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    allocator = SpinAllocator(session_factory, rng=rng, settings=test_settings)
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_allocator] = lambda: allocator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_campaign_lists_wheel_wedges(client, make_campaign):
    campaign = make_campaign()
    body = client.get("/api/campaign").json()
    assert body["campaign"]["slug"] == "gateway-launch"
    assert body["campaign"]["id"] == campaign.id
    assert [p["name"] for p in body["prizes"]] == [
        "10% Off", "$5 Off", "15% Off", "Free Shipping", "$20 Off", "25% Off!",
    ]
    assert "weight" not in body["prizes"][0]


def test_campaign_missing(client):
    r = client.get("/api/campaign")
    assert r.status_code == 404
    assert r.json()["code"] == "HTTP_ERROR"


def test_verify_then_execute_then_verify(client, make_campaign):
    make_campaign()
    payload = {"phone": "+1 (555) 123-4567"}

    r = client.post("/api/spin/verify", json=payload)
    assert r.json() == {"eligible": True, "reason": None, "message": "Ready to spin!", "next_open": None}

    r = client.post("/api/spin/execute", json=payload, headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["coupon"]["code"].startswith("GATEWAY-")
    assert body["redirect_url"] == "https://gateway.market/dashboard"
    assert 0 <= body["prize_index"] < 6

    r = client.post("/api/spin/verify", json=payload)
    assert r.json()["reason"] == "already_spun"

    r = client.post("/api/spin/execute", json=payload)
    assert r.status_code == 400
    assert r.json()["code"] == "not_eligible"
    assert r.json()["reason"] == "already_spun"


def test_execute_records_forwarded_address(client, make_campaign, db):
    make_campaign()
    client.post(
        "/api/spin/execute",
        json={"email": "jane@example.com"},
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest-agent"},
    )
    spin = db.query(Spin).one()
    assert spin.ip_address == "203.0.113.9"
    assert spin.user_agent == "pytest-agent"
    assert spin.email == "jane@example.com"


def test_execute_requires_identity(client, make_campaign):
    make_campaign()
    r = client.post("/api/spin/execute", json={})
    assert r.status_code == 422
    assert r.json()["code"] == "missing_identity"


def test_execute_rejects_short_phone(client, make_campaign):
    make_campaign()
    r = client.post("/api/spin/execute", json={"phone": "12345"})
    assert r.status_code == 422
    assert r.json()["code"] == "invalid_identity"


def test_verify_not_whitelisted(client, make_campaign):
    make_campaign(require_whitelist=True)
    r = client.post("/api/spin/verify", json={"phone": "+15559876543"})
    body = r.json()
    assert body["eligible"] is False
    assert body["reason"] == "not_whitelisted"
    assert body["message"] == "This phone number is not eligible for this promotion."


def test_execute_without_prizes(client, make_campaign):
    make_campaign(prizes=[])
    r = client.post("/api/spin/execute", json={"phone": "+15551234567"})
    assert r.status_code == 404
    assert r.json()["code"] == "no_prizes_configured"


def test_admin_stats_requires_token(client, make_campaign):
    campaign = make_campaign()
    r = client.get(f"/api/admin/campaigns/{campaign.id}/stats")
    assert r.status_code == 401


def test_admin_login_and_stats(client, make_campaign, monkeypatch):
    monkeypatch.setattr(settings, "admin_password", "s3cret")
    monkeypatch.setattr(settings, "admin_password_hash", "")
    monkeypatch.setattr(security, "_failed", {})
    campaign = make_campaign()
    campaign_id = campaign.id
    client.post("/api/spin/execute", json={"phone": "+15551234567"})
    client.post("/api/spin/execute", json={"email": "jane@example.com"})

    assert client.post("/api/admin/login", json={"password": "nope"}).status_code == 401
    token = client.post("/api/admin/login", json={"password": "s3cret"}).json()["token"]

    r = client.get(f"/api/admin/campaigns/{campaign_id}/stats", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    stats = r.json()
    assert stats["total_spins"] == 2
    assert stats["unique_users"] == 1
    assert stats["coupons_redeemed"] == 0
    assert sum(p["win_count"] for p in stats["prizes"]) == 2

    r = client.get("/api/admin/campaigns/999/stats", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 404


def test_admin_login_throttled(client, monkeypatch):
    monkeypatch.setattr(settings, "admin_password", "s3cret")
    monkeypatch.setattr(settings, "admin_password_hash", "")
    monkeypatch.setattr(security, "_failed", {})
    for _ in range(security.MAX_ATTEMPTS):
        assert client.post("/api/admin/login", json={"password": "wrong"}).status_code == 401
    r = client.post("/api/admin/login", json={"password": "s3cret"})
    assert r.status_code == 429
