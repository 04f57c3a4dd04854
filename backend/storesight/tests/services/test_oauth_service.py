"""
Tests for the Shopify OAuth service.

Token exchange runs against httpx.MockTransport; no network access.
"""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from storesight.services.oauth_service import (
    HMACVerificationError,
    InvalidShopDomainError,
    OAuthService,
    TokenExchangeError,
    TokenExchangeNetworkError,
    compute_hmac,
    normalize_shop_domain,
    verify_hmac,
)

SECRET = "test-api-secret"


def make_service(memory_cache, handler=None):
    transport = httpx.MockTransport(handler) if handler else None
    return OAuthService(cache=memory_cache, transport=transport)


class TestConfiguration:

    def test_requires_api_key(self, monkeypatch, memory_cache):
        monkeypatch.delenv("SHOPIFY_API_KEY")
        with pytest.raises(ValueError, match="SHOPIFY_API_KEY"):
            OAuthService(cache=memory_cache)

    def test_requires_api_secret(self, monkeypatch, memory_cache):
        monkeypatch.delenv("SHOPIFY_API_SECRET")
        with pytest.raises(ValueError, match="SHOPIFY_API_SECRET"):
            OAuthService(cache=memory_cache)


class TestShopDomain:

    @pytest.mark.parametrize("shop", [
        "test-store.myshopify.com",
        "Store123.myshopify.com",
        "  padded.myshopify.com  ",
    ])
    def test_valid(self, shop):
        assert OAuthService.validate_shop_domain(shop) is True

    @pytest.mark.parametrize("shop", [
        None,
        "",
        "   ",
        "example.com",
        "-leading.myshopify.com",
        "evil.myshopify.com.attacker.io",
        "https://test-store.myshopify.com",
    ])
    def test_invalid(self, shop):
        assert OAuthService.validate_shop_domain(shop) is False

    def test_normalize(self):
        assert normalize_shop_domain(" https://Test-Store.myshopify.com/ ") == "test-store.myshopify.com"


class TestAuthorizationUrl:

    def test_contains_app_parameters(self, memory_cache):
        service = make_service(memory_cache)
        url = urlparse(service.create_authorization_url("test-store.myshopify.com", "state-123"))
        params = parse_qs(url.query)

        assert url.netloc == "test-store.myshopify.com"
        assert url.path == "/admin/oauth/authorize"
        assert params["client_id"] == ["test-api-key"]
        assert params["state"] == ["state-123"]
        assert "read_orders" in params["scope"][0]

    def test_rejects_invalid_shop(self, memory_cache):
        with pytest.raises(InvalidShopDomainError):
            make_service(memory_cache).create_authorization_url("not-a-shop", "state")

    def test_states_are_unique(self):
        assert OAuthService.generate_state() != OAuthService.generate_state()


class TestHmac:

    def test_sorted_query_excluding_signature_fields(self):
        params = {"shop": "a.myshopify.com", "code": "abc", "timestamp": "1", "hmac": "x", "signature": "y"}
        assert compute_hmac(params, SECRET) == compute_hmac(
            {"timestamp": "1", "code": "abc", "shop": "a.myshopify.com"}, SECRET
        )

    def test_verify(self, memory_cache):
        params = {"shop": "a.myshopify.com", "code": "abc", "timestamp": "1"}
        params["hmac"] = compute_hmac(params, SECRET)

        assert make_service(memory_cache).verify_callback_hmac(params) is True
        assert verify_hmac({**params, "code": "tampered"}, SECRET) is False
        assert verify_hmac({"shop": "a.myshopify.com"}, SECRET) is False
        assert verify_hmac(params, "") is False

    def test_require_valid_hmac(self, memory_cache):
        service = make_service(memory_cache)
        params = {"shop": "a.myshopify.com", "code": "abc", "timestamp": "1"}

        with pytest.raises(HMACVerificationError):
            service.require_valid_hmac(params)

        params["hmac"] = compute_hmac(params, SECRET)
        service.require_valid_hmac(params)

        with pytest.raises(HMACVerificationError):
            service.require_valid_hmac({**params, "code": "tampered"})


class TestTokenExchange:

    @pytest.mark.asyncio
    async def test_success(self, memory_cache):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"access_token": "shpat_123", "scope": "read_orders"})

        token = await make_service(memory_cache, handler).exchange_code_for_token(
            "Test-Store.myshopify.com", "code-1"
        )

        assert token == "shpat_123"
        assert str(seen[0].url) == "https://test-store.myshopify.com/admin/oauth/access_token"
        body = json.loads(seen[0].content)
        assert body == {"client_id": "test-api-key", "client_secret": SECRET, "code": "code-1"}

    @pytest.mark.asyncio
    async def test_rejected_code(self, memory_cache):
        service = make_service(memory_cache, lambda request: httpx.Response(400, text="invalid code"))
        with pytest.raises(TokenExchangeError, match="400"):
            await service.exchange_code_for_token("test-store.myshopify.com", "bad")

    @pytest.mark.asyncio
    async def test_network_failure(self, memory_cache):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = make_service(memory_cache, handler)
        with pytest.raises(TokenExchangeNetworkError):
            await service.exchange_code_for_token("test-store.myshopify.com", "code")

    @pytest.mark.asyncio
    async def test_missing_token(self, memory_cache):
        service = make_service(memory_cache, lambda request: httpx.Response(200, json={"scope": "x"}))
        with pytest.raises(TokenExchangeError, match="missing access_token"):
            await service.exchange_code_for_token("test-store.myshopify.com", "code")


class TestBookkeeping:

    def test_return_url_is_single_use(self, memory_cache):
        service = make_service(memory_cache)
        service.store_return_url("state-1", "/dashboard")

        assert service.pop_return_url("state-1") == "/dashboard"
        assert service.pop_return_url("state-1") is None
        assert service.pop_return_url(None) is None

    def test_used_codes(self, memory_cache):
        service = make_service(memory_cache)
        assert service.is_code_used("code-1") is False
        service.mark_code_used("code-1")
        assert service.is_code_used("code-1") is True
