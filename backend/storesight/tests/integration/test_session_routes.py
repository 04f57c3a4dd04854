"""Integration tests for /api/sessions."""

from datetime import timedelta

import pytest

from storesight.models.base import utcnow
from storesight.models.shop import Shop
from storesight.models.shop_session import ShopSession

SHOP = "test-store.myshopify.com"


@pytest.fixture
def add_session(db_session):
    def _add(session_id, last_accessed=timedelta(0), active=True):
        shop = db_session.query(Shop).filter_by(shopify_domain=SHOP).one()
        now = utcnow()
        session = ShopSession(
            shop_id=shop.id,
            session_id=session_id,
            access_token=f"token-{session_id}",
            is_active=active,
            last_accessed_at=now - last_accessed,
            expires_at=now + timedelta(hours=4),
        )
        db_session.add(session)
        db_session.flush()
        return session

    return _add


@pytest.mark.parametrize("method,path", [
    ("get", "/api/sessions/active"),
    ("get", "/api/sessions/current"),
    ("post", "/api/sessions/terminate-others"),
    ("post", "/api/sessions/heartbeat"),
    ("get", "/api/sessions/stale-check"),
    ("get", "/api/sessions/limit-check"),
    ("post", "/api/sessions/can-create-session"),
])
def test_requires_shop_cookie(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401
    assert response.json() == {"error": "No shop authentication found"}


def test_active_sessions(authed_client, add_session):
    add_session("session-2", last_accessed=timedelta(minutes=5))

    body = authed_client.get("/api/sessions/active").json()

    assert body["activeSessionCount"] == 2
    assert body["currentSessionId"] == "session-1"
    current = [s for s in body["sessions"] if s["isCurrentSession"]]
    assert [s["sessionId"] for s in current] == ["session-1"]


def test_current_session(authed_client):
    body = authed_client.get("/api/sessions/current").json()
    assert body["found"] is True
    assert body["sessionId"] == "session-1"
    assert body["isActive"] is True
    assert body["isExpired"] is False


def test_current_session_of_another_shop_is_not_found(authed_client, make_shop):
    make_shop("other.myshopify.com", sessions={"foreign": "t"})
    authed_client.cookies.set("SESSION_ID", "foreign")

    body = authed_client.get("/api/sessions/current").json()

    assert body == {"success": True, "sessionId": "foreign", "shop": SHOP, "found": False}


class TestTerminate:

    def test_requires_session_id(self, authed_client):
        response = authed_client.post("/api/sessions/terminate", json={})
        assert response.status_code == 400

    def test_cannot_terminate_own_session(self, authed_client):
        response = authed_client.post("/api/sessions/terminate", json={"sessionId": "session-1"})
        assert response.status_code == 400
        assert "logout" in response.json()["error"]

    def test_unknown_session(self, authed_client):
        response = authed_client.post("/api/sessions/terminate", json={"sessionId": "ghost"})
        assert response.status_code == 404

    def test_terminates_other_session(self, authed_client, add_session, db_session):
        add_session("session-2")

        response = authed_client.post("/api/sessions/terminate", json={"sessionId": "session-2"})

        assert response.json()["terminatedSessionId"] == "session-2"
        assert db_session.query(ShopSession).filter_by(session_id="session-2").one().is_active is False

    def test_terminate_others(self, authed_client, add_session):
        add_session("session-2")
        add_session("session-3")

        body = authed_client.post("/api/sessions/terminate-others").json()

        assert body["terminatedSessionsCount"] == 2
        assert authed_client.get("/api/sessions/active").json()["activeSessionCount"] == 1

    def test_terminate_current_without_identity(self, client):
        response = client.post("/api/sessions/terminate-current")
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_terminate_current(self, authed_client, db_session):
        body = authed_client.post("/api/sessions/terminate-current").json()
        assert body["success"] is True
        assert db_session.query(ShopSession).filter_by(session_id="session-1").one().is_active is False


def test_heartbeat_slides_expiry(authed_client, db_session):
    session = db_session.query(ShopSession).filter_by(session_id="session-1").one()
    session.expires_at = utcnow() + timedelta(minutes=5)
    db_session.flush()

    body = authed_client.post("/api/sessions/heartbeat").json()

    assert body["success"] is True
    assert body["activeSessionCount"] == 1
    db_session.refresh(session)
    assert session.is_expired(utcnow() + timedelta(hours=3)) is False


def test_heartbeat_for_inactive_session(authed_client, add_session):
    add_session("dead", active=False)
    authed_client.cookies.set("SESSION_ID", "dead")
    response = authed_client.post("/api/sessions/heartbeat")
    assert response.status_code == 404


def test_stale_check(authed_client, add_session):
    add_session("idle", last_accessed=timedelta(hours=1))

    body = authed_client.get("/api/sessions/stale-check").json()

    assert body["staleSessionCount"] == 1
    assert body["staleSessions"][0]["sessionId"] == "idle"
    assert body["staleSessions"][0]["minutesSinceLastAccess"] >= 59


def test_limit_check_and_can_create(authed_client, add_session):
    for i in range(2, 6):
        add_session(f"session-{i}")

    limit = authed_client.get("/api/sessions/limit-check").json()
    assert limit["limitReached"] is True
    assert limit["maxSessions"] == 5
    assert limit["currentSessionFound"] is True

    can_create = authed_client.post("/api/sessions/can-create-session").json()
    assert can_create["canCreate"] is True
    assert can_create["currentSessionExists"] is True

    authed_client.cookies.set("SESSION_ID", "newcomer")
    assert authed_client.post("/api/sessions/can-create-session").json()["canCreate"] is False
