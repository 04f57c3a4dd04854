"""
OAuth service for the Shopify app installation flow.

Handles:
- Shop domain validation
- Authorization URL construction with a CSRF state value
- Callback HMAC verification
- Token exchange
- Return-URL and used-code bookkeeping in the cache
"""

import hashlib
import hmac
import logging
import os
import re
import secrets
from typing import Mapping, Optional
from urllib.parse import urlencode

import httpx

from storesight.platform.redis_cache import get_cache

logger = logging.getLogger(__name__)

SHOP_DOMAIN_REGEX = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]*\.myshopify\.com$")

RETURN_URL_PREFIX = "oauth:return_url:"
USED_CODE_PREFIX = "oauth:used_code:"
RETURN_URL_TTL_SECONDS = 10 * 60
USED_CODE_TTL_SECONDS = 60 * 60

DEFAULT_SCOPES = "read_products,read_orders,read_customers,read_inventory"
DEFAULT_REDIRECT_URI = "http://localhost:8080/api/auth/shopify/callback"


class OAuthError(Exception):
    """Base exception for OAuth errors."""
    pass


class InvalidShopDomainError(OAuthError):
    """Raised when shop domain format is invalid."""
    pass


class HMACVerificationError(OAuthError):
    """Raised when HMAC signature verification fails."""
    pass


class TokenExchangeError(OAuthError):
    """Raised when token exchange with Shopify fails."""
    pass


class TokenExchangeNetworkError(TokenExchangeError):
    """Raised when Shopify could not be reached during token exchange."""
    pass


def normalize_shop_domain(shop: str) -> str:
    return shop.strip().replace("https://", "").replace("http://", "").rstrip("/").lower()


def compute_hmac(params: Mapping[str, str], secret: str) -> str:
    """
    Hex HMAC-SHA256 over the sorted query string, excluding hmac and signature.
    """
    message = "&".join(
        f"{key}={value}"
        for key, value in sorted(params.items())
        if key not in ("hmac", "signature")
    )
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_hmac(params: Mapping[str, str], secret: str) -> bool:
    provided = params.get("hmac")
    if not provided or not secret:
        return False
    return hmac.compare_digest(compute_hmac(params, secret), provided)


class OAuthService:
    """Service for handling the Shopify OAuth installation flow."""

    def __init__(self, cache=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = os.getenv("SHOPIFY_API_KEY")
        self.api_secret = os.getenv("SHOPIFY_API_SECRET")
        self.scopes = os.getenv("SHOPIFY_SCOPES", DEFAULT_SCOPES)
        self.redirect_uri = os.getenv("SHOPIFY_REDIRECT_URI", DEFAULT_REDIRECT_URI)
        self.cache = cache if cache is not None else get_cache()
        self._transport = transport

        if not self.api_key:
            raise ValueError("SHOPIFY_API_KEY environment variable is required")
        if not self.api_secret:
            raise ValueError("SHOPIFY_API_SECRET environment variable is required")

    @staticmethod
    def validate_shop_domain(shop: Optional[str]) -> bool:
        """
        Validate Shopify shop domain format.

        Args:
            shop: Shop domain (e.g., "mystore.myshopify.com")

        Returns:
            True if valid, False otherwise
        """
        if not shop or not shop.strip():
            return False
        return bool(SHOP_DOMAIN_REGEX.match(shop.strip()))

    @staticmethod
    def generate_state() -> str:
        return secrets.token_urlsafe(32)

    def create_authorization_url(self, shop: str, state: str) -> str:
        """
        Build the Shopify authorization URL for a shop.

        Raises:
            InvalidShopDomainError: If shop domain is invalid
        """
        if not self.validate_shop_domain(shop):
            raise InvalidShopDomainError(f"Invalid shop domain: {shop}")

        params = {
            "client_id": self.api_key,
            "scope": self.scopes,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"https://{normalize_shop_domain(shop)}/admin/oauth/authorize?{urlencode(params)}"

    def verify_callback_hmac(self, params: Mapping[str, str]) -> bool:
        """
        Verify Shopify OAuth callback HMAC signature.

        Shopify signs callbacks with HMAC-SHA256 over the sorted query string
        using the app secret, hex encoded.
        """
        return verify_hmac(params, self.api_secret)

    def require_valid_hmac(self, params: Mapping[str, str]) -> None:
        """
        Raise unless the callback carries a valid signature.

        Raises:
            HMACVerificationError: If the hmac parameter is missing or wrong
        """
        if not params.get("hmac") or not self.verify_callback_hmac(params):
            raise HMACVerificationError("Invalid HMAC signature on OAuth callback")

    async def exchange_code_for_token(self, shop: str, code: str) -> str:
        """
        Exchange OAuth authorization code for an access token.

        Raises:
            TokenExchangeError: If Shopify rejects the code or omits the token
            TokenExchangeNetworkError: If Shopify could not be reached
        """
        shop = normalize_shop_domain(shop)
        url = f"https://{shop}/admin/oauth/access_token"
        payload = {
            "client_id": self.api_key,
            "client_secret": self.api_secret,
            "code": code,
        }

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                token_data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Token exchange failed", extra={
                "shop_domain": shop,
                "status_code": e.response.status_code,
                "response_text": e.response.text[:500],
            })
            raise TokenExchangeError(f"Token exchange failed: {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error("Token exchange request error", extra={
                "shop_domain": shop,
                "error": str(e),
            })
            raise TokenExchangeNetworkError(f"Token exchange request error: {e}")

        access_token = token_data.get("access_token")
        if not access_token:
            raise TokenExchangeError("Token response missing access_token")

        logger.info("Token exchange successful", extra={"shop_domain": shop})
        return access_token

    # ------------------------------------------------------------------
    # Cache bookkeeping
    # ------------------------------------------------------------------

    def store_return_url(self, state: str, return_url: str) -> None:
        self.cache.set(f"{RETURN_URL_PREFIX}{state}", return_url, RETURN_URL_TTL_SECONDS)

    def pop_return_url(self, state: Optional[str]) -> Optional[str]:
        if not state:
            return None
        key = f"{RETURN_URL_PREFIX}{state}"
        return_url = self.cache.get(key)
        if return_url:
            self.cache.delete(key)
        return return_url

    def is_code_used(self, code: str) -> bool:
        return self.cache.get(f"{USED_CODE_PREFIX}{code}") is not None

    def mark_code_used(self, code: str) -> None:
        self.cache.set(f"{USED_CODE_PREFIX}{code}", "1", USED_CODE_TTL_SECONDS)
