"""
Per-shop cache for dashboard analytics payloads.

Entries are JSON envelopes stored under dashboard:{kind}:{shop} so a
shop's dashboard can be served without calling Shopify again until the
entry expires.
"""

import logging
import time
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from storesight.platform.redis_cache import get_cache

logger = logging.getLogger(__name__)

CACHE_KINDS = (
    "revenue",
    "orders",
    "products",
    "inventory",
    "abandoned_carts",
)

DEFAULT_TTL_SECONDS = 120 * 60
CACHE_VERSION = "v2.0"


class CacheEntry(BaseModel):
    data: Any
    shop: str
    timestamp: float
    ttl_seconds: int
    version: str = CACHE_VERSION

    def is_expired(self) -> bool:
        return time.time() - self.timestamp > self.ttl_seconds

    @property
    def age_minutes(self) -> int:
        return int((time.time() - self.timestamp) // 60)


def cache_key(kind: str, shop: str) -> str:
    if kind not in CACHE_KINDS:
        raise ValueError(f"Unknown dashboard cache kind: {kind}")
    return f"dashboard:{kind}:{shop}"


class DashboardCacheService:
    """Read-through cache for dashboard payloads."""

    def __init__(self, cache=None, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = cache if cache is not None else get_cache()
        self.ttl_seconds = ttl_seconds

    def cache(self, kind: str, shop: str, data: Any, ttl_seconds: Optional[int] = None) -> bool:
        ttl = ttl_seconds or self.ttl_seconds
        entry = CacheEntry(data=data, shop=shop, timestamp=time.time(), ttl_seconds=ttl)
        stored = self.store.set(cache_key(kind, shop), entry.model_dump_json(), ttl)
        if stored:
            logger.debug("Dashboard data cached", extra={"kind": kind, "shop": shop})
        return stored

    def get_cached(self, kind: str, shop: str) -> Optional[Any]:
        """Cached payload, or None on miss, expiry or an unreadable entry."""
        key = cache_key(kind, shop)
        raw = self.store.get(key)
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable dashboard cache entry", extra={"key": key})
            self.store.delete(key)
            return None

        if entry.is_expired():
            self.store.delete(key)
            return None

        logger.debug(
            "Dashboard cache hit",
            extra={"kind": kind, "shop": shop, "age_minutes": entry.age_minutes},
        )
        return entry.data

    def invalidate(self, shop: str, kind: Optional[str] = None) -> int:
        """Drop one kind, or every kind, for a shop."""
        kinds = (kind,) if kind else CACHE_KINDS
        return self.store.delete(*(cache_key(k, shop) for k in kinds))
