"""
Integration tests for /api/auth/shopify: OAuth install, current shop,
refresh, logout and raw export.
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from storesight.models.audit_log import AuditLog
from storesight.models.base import utcnow
from storesight.models.shop import Shop
from storesight.models.shop_session import ShopSession
from storesight.services.oauth_service import (
    OAuthService,
    TokenExchangeError,
    TokenExchangeNetworkError,
    compute_hmac,
)

SHOP = "test-store.myshopify.com"


def _query(response):
    return parse_qs(urlparse(response.headers["location"]).query)


@pytest.fixture
def token_exchange(monkeypatch):
    """Replace the Shopify token exchange; set .error to make it fail."""
    class Exchange:
        def __init__(self):
            self.calls = []
            self.error = None

    exchange = Exchange()

    async def fake(service, shop, code):
        exchange.calls.append((shop, code))
        if exchange.error:
            raise exchange.error
        return "shpat_new_token"

    monkeypatch.setattr(OAuthService, "exchange_code_for_token", fake)
    return exchange


class TestLogin:

    def test_requires_shop(self, client):
        response = client.get("/api/auth/shopify/login")
        assert response.status_code == 400
        assert response.json() == {"error": "Shop parameter is required"}

    def test_rejects_invalid_shop(self, client):
        response = client.get("/api/auth/shopify/login", params={"shop": "example.com"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid shop domain"}

    def test_redirects_to_install(self, client):
        response = client.get(
            "/api/auth/shopify/login", params={"shop": SHOP, "return_url": "/dashboard"}
        )
        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.path == "/api/auth/shopify/install"
        assert parse_qs(location.query) == {"shop": [SHOP], "return_url": ["/dashboard"]}


class TestInstall:

    def test_redirects_to_shopify(self, client, memory_cache):
        response = client.get(
            "/api/auth/shopify/install", params={"shop": SHOP, "return_url": "/dashboard"}
        )

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.netloc == SHOP
        assert location.path == "/admin/oauth/authorize"
        state = _query(response)["state"][0]
        assert memory_cache.get(f"oauth:return_url:{state}") == "/dashboard"

    def test_invalid_shop(self, client):
        response = client.get("/api/auth/shopify/install", params={"shop": "nope"})
        assert response.status_code == 400

    def test_missing_configuration(self, client, monkeypatch):
        monkeypatch.delenv("SHOPIFY_API_KEY")
        response = client.get("/api/auth/shopify/install", params={"shop": SHOP})
        assert response.status_code == 500
        assert "configuration" in response.json()["error"]


class TestCallback:

    def test_success_creates_shop_and_sets_cookies(self, client, db_session, token_exchange):
        response = client.get(
            "/api/auth/shopify/callback", params={"shop": SHOP, "code": "code-1", "state": "s"}
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"http://localhost:5173/?shop={SHOP}"
        assert response.cookies["shop"] == SHOP
        session_id = response.cookies["SESSION_ID"]

        shop = db_session.query(Shop).filter_by(shopify_domain=SHOP).one()
        assert shop.access_token == "shpat_new_token"
        session = db_session.query(ShopSession).filter_by(session_id=session_id).one()
        assert session.is_active is True
        actions = [log.action for log in db_session.query(AuditLog).filter_by(shop_id=shop.id)]
        assert "SHOP_AUTHENTICATED" in actions

    def test_returns_to_stored_url(self, client, memory_cache, token_exchange):
        memory_cache.set("oauth:return_url:state-1", "http://localhost:5173/dashboard", 60)
        response = client.get(
            "/api/auth/shopify/callback", params={"shop": SHOP, "code": "c", "state": "state-1"}
        )
        assert response.headers["location"] == "http://localhost:5173/dashboard"
        assert memory_cache.get("oauth:return_url:state-1") is None

    def test_reused_code_skips_exchange(self, client, token_exchange):
        params = {"shop": SHOP, "code": "code-1"}
        client.get("/api/auth/shopify/callback", params=params)
        response = client.get("/api/auth/shopify/callback", params=params)

        assert response.status_code == 302
        assert response.headers["location"] == f"http://localhost:5173/?shop={SHOP}"
        assert len(token_exchange.calls) == 1

    def test_valid_hmac_is_accepted(self, client, token_exchange):
        params = {"shop": SHOP, "code": "code-1", "timestamp": "1700000000"}
        params["hmac"] = compute_hmac(params, "test-api-secret")

        response = client.get("/api/auth/shopify/callback", params=params)

        assert "error" not in _query(response)
        assert token_exchange.calls == [(SHOP, "code-1")]

    def test_bad_hmac_is_rejected(self, client, token_exchange):
        response = client.get(
            "/api/auth/shopify/callback", params={"shop": SHOP, "code": "c", "hmac": "deadbeef"}
        )
        assert _query(response)["error"] == ["auth_failed"]
        assert token_exchange.calls == []

    @pytest.mark.parametrize("params,error_code", [
        ({"error": "access_denied", "error_description": "denied"}, "oauth_error"),
        ({"shop": SHOP}, "missing_params"),
        ({"code": "c"}, "missing_params"),
        ({"shop": "bad-shop.com", "code": "c"}, "oauth_error"),
    ])
    def test_error_redirects(self, client, token_exchange, params, error_code):
        response = client.get("/api/auth/shopify/callback", params=params)
        assert response.status_code == 302
        assert response.headers["location"].startswith("http://localhost:5173/?error=")
        assert _query(response)["error"] == [error_code]

    @pytest.mark.parametrize("error,error_code", [
        (TokenExchangeError("rejected"), "token_error"),
        (TokenExchangeNetworkError("down"), "network_error"),
    ])
    def test_exchange_failures(self, client, token_exchange, error, error_code):
        token_exchange.error = error
        response = client.get("/api/auth/shopify/callback", params={"shop": SHOP, "code": "c"})
        assert _query(response)["error"] == [error_code]


class TestMe:

    def test_without_cookie(self, client):
        response = client.get("/api/auth/shopify/me")
        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated", "shop": None}

    def test_authenticated(self, authed_client):
        response = authed_client.get("/api/auth/shopify/me")
        assert response.status_code == 200
        assert response.json() == {"shop": SHOP, "authenticated": True, "sessionId": "session-1"}

    def test_logged_out_session_gets_reauth_url(self, authed_client, db_session):
        db_session.query(ShopSession).filter_by(session_id="session-1").one().is_active = False
        db_session.flush()

        response = authed_client.get("/api/auth/shopify/me")

        assert response.status_code == 401
        body = response.json()
        assert body["shop"] is None
        assert body["reauth_url"] == "/api/auth/shopify/login?shop=test-store.myshopify.com"

    def test_shop_cookie_only_binds_new_session(self, client, make_shop, db_session):
        make_shop(SHOP)
        client.cookies.set("shop", SHOP)

        response = client.get("/api/auth/shopify/me")

        assert response.status_code == 200
        session_id = response.json()["sessionId"]
        assert response.cookies["SESSION_ID"] == session_id
        assert db_session.query(ShopSession).filter_by(session_id=session_id).one().is_active


class TestRefresh:

    def test_without_shop(self, client):
        response = client.post("/api/auth/shopify/refresh")
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_refreshes_session(self, authed_client):
        response = authed_client.post("/api/auth/shopify/refresh")
        assert response.status_code == 200
        assert response.json() == {
            "success": True, "shop": SHOP, "message": "Authentication refreshed",
        }
        assert response.cookies["SESSION_ID"] == "session-1"

    def test_unknown_shop(self, client):
        client.cookies.set("shop", "ghost.myshopify.com")
        response = client.post("/api/auth/shopify/refresh")
        assert response.status_code == 401
        assert response.json()["reauth_url"].endswith("shop=ghost.myshopify.com")


class TestDisconnect:

    def test_disconnects_current_session(self, authed_client, db_session):
        shop = db_session.query(Shop).filter_by(shopify_domain=SHOP).one()
        db_session.add(ShopSession(
            shop_id=shop.id, session_id="session-2", access_token="t", is_active=True,
            last_accessed_at=utcnow(), expires_at=utcnow() + timedelta(hours=4),
        ))
        db_session.flush()

        response = authed_client.post("/api/auth/shopify/profile/disconnect")

        assert response.status_code == 200
        assert response.json() == {"status": "success"}
        assert db_session.query(ShopSession).filter_by(session_id="session-1").one().is_active is False
        assert db_session.query(ShopSession).filter_by(session_id="session-2").one().is_active is True
        actions = [log.action for log in db_session.query(AuditLog).filter_by(shop_id=shop.id)]
        assert "SHOP_DISCONNECTED" in actions

    def test_disconnect_all(self, authed_client, db_session):
        response = authed_client.post("/api/auth/shopify/profile/disconnect", params={"all": "true"})
        assert response.status_code == 200
        active = db_session.query(ShopSession).filter(ShopSession.is_active.is_(True)).count()
        assert active == 0

    def test_without_cookie_still_succeeds(self, client):
        response = client.post("/api/auth/shopify/profile/disconnect")
        assert response.status_code == 200

    def test_force_disconnect(self, authed_client, db_session):
        response = authed_client.post("/api/auth/shopify/profile/force-disconnect")
        assert response.status_code == 200
        assert response.json()["status"] == "force_disconnected"
        assert db_session.query(ShopSession).filter_by(session_id="session-1").one().is_active is False


class TestExport:

    def test_requires_authentication(self, client):
        assert client.get("/api/auth/shopify/export", params={"type": "products"}).status_code == 401

    def test_rejects_unknown_type(self, authed_client):
        response = authed_client.get("/api/auth/shopify/export", params={"type": "customers"})
        assert response.status_code == 400

    def test_downloads_products(self, authed_client, shopify_handler):
        shopify_handler.json("products", {"products": [{"id": 1, "title": "Hat"}]})

        response = authed_client.get("/api/auth/shopify/export", params={"type": "products"})

        assert response.status_code == 200
        assert response.json() == {"products": [{"id": 1, "title": "Hat"}]}
        assert response.headers["content-disposition"].startswith('attachment; filename="products_')
        assert shopify_handler.requests[0].headers["X-Shopify-Access-Token"] == "session-token-1"

    def test_orders_request_all_statuses(self, authed_client, shopify_handler):
        shopify_handler.json("orders", {"orders": []})
        authed_client.get("/api/auth/shopify/export", params={"type": "orders"})
        assert shopify_handler.requests[0].url.params["status"] == "any"

    def test_shopify_error_status_is_passed_through(self, authed_client, shopify_handler):
        shopify_handler.fail("products", 403)
        response = authed_client.get("/api/auth/shopify/export", params={"type": "products"})
        assert response.status_code == 403
        assert response.json() == {"error": "Failed to export data"}
