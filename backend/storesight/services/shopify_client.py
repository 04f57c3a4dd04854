"""
Shopify Admin REST API client.

Read-only access to orders, products and checkouts for the analytics
endpoints. One client per (shop, access token); use as an async context
manager so the underlying connection pool is closed.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2023-10")


class ShopifyAPIError(Exception):
    """Error communicating with Shopify API."""
    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ShopifyAdminClient:
    """Client for the Shopify Admin REST API of a single shop."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not shop_domain:
            raise ValueError("shop_domain is required")
        if not access_token:
            raise ValueError("access_token is required")

        self.shop_domain = shop_domain.replace("https://", "").replace("http://", "").rstrip("/")
        self.api_version = SHOPIFY_API_VERSION
        self.base_url = f"https://{self.shop_domain}/admin/api/{self.api_version}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(30.0, connect=10.0),
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Access-Token": access_token,
            },
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a resource and return the decoded JSON body.

        Raises:
            ShopifyAPIError: On any non-2xx status (status_code set) or
                transport failure (status_code None)
        """
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._client.get(path, params=clean_params)
        except httpx.RequestError as e:
            logger.error("Shopify API request error", extra={
                "shop_domain": self.shop_domain,
                "path": path,
                "error": str(e),
            })
            raise ShopifyAPIError(f"Shopify API request error: {e}")

        if response.status_code == 429:
            logger.warning("Shopify API rate limited", extra={"shop_domain": self.shop_domain})
            raise ShopifyAPIError("Rate limited - please retry after a delay", status_code=429)

        if response.status_code >= 400:
            logger.error("Shopify API error", extra={
                "shop_domain": self.shop_domain,
                "path": path,
                "status_code": response.status_code,
                "response_text": response.text[:500],
            })
            raise ShopifyAPIError(
                f"Shopify API error: {response.status_code}",
                status_code=response.status_code,
                response=response.text[:500],
            )

        return response.json()

    async def get_orders(
        self,
        created_at_min: Optional[datetime] = None,
        limit: int = 250,
        status: str = "any",
    ) -> List[Dict[str, Any]]:
        body = await self._get(
            "/orders.json",
            {"created_at_min": _iso(created_at_min), "limit": limit, "status": status},
        )
        return body.get("orders", [])

    async def get_products(
        self, limit: int = 250, created_at_min: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        body = await self._get(
            "/products.json",
            {"limit": limit, "created_at_min": _iso(created_at_min)},
        )
        return body.get("products", [])

    async def get_checkouts(
        self, created_at_min: Optional[datetime] = None, limit: int = 250
    ) -> List[Dict[str, Any]]:
        body = await self._get(
            "/checkouts.json",
            {"created_at_min": _iso(created_at_min), "limit": limit},
        )
        return body.get("checkouts", [])

    async def get_resource(self, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Raw JSON for a top-level resource such as "products" or "orders"."""
        return await self._get(f"/{name}.json", params)
