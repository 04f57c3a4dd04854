"""
Client-side authentication state.

Mirrors the SPA's auth context: asks the API who the current shop is,
recovers an expired session through /refresh when the server offers a
reauth URL, and wipes cached dashboard data whenever identity changes.
"""

import logging
from typing import MutableMapping, Optional

import httpx

from storesight.client.dashboard_cache import DashboardCache

logger = logging.getLogger(__name__)

AUTH_PREFIX = "/api/auth/shopify"
ME_TIMEOUT_SECONDS = 10.0
REFRESH_TIMEOUT_SECONDS = 5.0


def _json_body(response: httpx.Response) -> Optional[dict]:
    """Decoded JSON object, or None when the body is not one (e.g. a proxy error page)."""
    try:
        body = response.json()
    except ValueError:
        logger.warning("Non-JSON auth response", extra={"status_code": response.status_code})
        return None
    return body if isinstance(body, dict) else None


class AuthClient:
    """
    Track whether the browser is signed in to a shop.

    `http` is an httpx.AsyncClient whose base_url points at the API and
    which carries the browser's cookies.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        storage: MutableMapping[str, str],
        cache: Optional[DashboardCache] = None,
    ):
        self.http = http
        self.cache = cache if cache is not None else DashboardCache(storage)
        self.shop: Optional[str] = None
        self.authenticated = False
        self.ready = False

    def _set_shop(self, shop: Optional[str]) -> None:
        self.shop = shop
        self.authenticated = shop is not None

    async def _try_refresh(self) -> Optional[str]:
        try:
            response = await self.http.post(f"{AUTH_PREFIX}/refresh", timeout=REFRESH_TIMEOUT_SECONDS)
        except httpx.HTTPError as e:
            logger.warning("Auth refresh failed", extra={"error": str(e)})
            return None

        if response.status_code != 200:
            return None
        body = _json_body(response) or {}
        if body.get("success") and body.get("shop"):
            return body["shop"]
        return None

    async def check_auth(self) -> bool:
        """
        Resolve the current shop from GET /me.

        On 401 with a reauth_url, POST /refresh is tried once. Any other
        failure clears the dashboard cache and leaves the client signed out.
        """
        try:
            try:
                response = await self.http.get(f"{AUTH_PREFIX}/me", timeout=ME_TIMEOUT_SECONDS)
            except httpx.HTTPError as e:
                logger.warning("Auth check failed", extra={"error": str(e)})
                response = None

            if response is not None and response.status_code == 200:
                shop = (_json_body(response) or {}).get("shop")
                if shop:
                    if self.shop and self.shop != shop:
                        logger.info("Shop changed, clearing dashboard cache", extra={"shop": shop})
                        self.cache.clear_all()
                    self._set_shop(shop)
                    return True

            if response is not None and response.status_code == 401:
                reauth_url = (_json_body(response) or {}).get("reauth_url")
            else:
                reauth_url = None

            if reauth_url:
                shop = await self._try_refresh()
                if shop:
                    logger.info("Recovered authentication", extra={"shop": shop})
                    self._set_shop(shop)
                    return True

            self._set_shop(None)
            self.cache.clear_all()
            return False
        finally:
            self.ready = True

    async def logout(self) -> None:
        """Disconnect on the server, then clear local state whatever the outcome."""
        try:
            await self.http.post(f"{AUTH_PREFIX}/profile/disconnect")
        except httpx.HTTPError as e:
            logger.warning("Logout request failed", extra={"error": str(e)})
        finally:
            self.cache.clear_all()
            self._set_shop(None)
            self.ready = True
