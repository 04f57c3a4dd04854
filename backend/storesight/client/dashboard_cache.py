"""
Per-shop dashboard card cache kept in browser storage.

All cards of one shop live in a single JSON document under
`dashboard_cache_{shop}_v3`, keyed by card kind:

    {"version": "2.1.0", "shop": "...", "revenue": {<entry>}, ...}

Entries expire after 120 minutes; from 100 minutes the dashboard shows a
refresh hint.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, MutableMapping, Optional

logger = logging.getLogger(__name__)

CACHE_VERSION = "2.1.0"
CACHE_KEY_PREFIX = "dashboard_cache"
CACHE_DURATION_MINUTES = 120
CACHE_WARNING_MINUTES = 100


def cache_key(shop: str) -> str:
    return f"{CACHE_KEY_PREFIX}_{shop}_v3"


class DashboardCache:
    """Read and write cached dashboard cards for a shop."""

    def __init__(
        self,
        storage: MutableMapping[str, str],
        clock: Callable[[], float] = time.time,
        duration_minutes: int = CACHE_DURATION_MINUTES,
        warning_minutes: int = CACHE_WARNING_MINUTES,
    ):
        self.storage = storage
        self.clock = clock
        self.duration_ms = duration_minutes * 60 * 1000
        self.warning_ms = warning_minutes * 60 * 1000

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _read(self, shop: str) -> Dict[str, Any]:
        raw = self.storage.get(cache_key(shop))
        if not raw:
            return {}
        try:
            document = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable dashboard cache", extra={"shop": shop})
            self.storage.pop(cache_key(shop), None)
            return {}
        return document if isinstance(document, dict) else {}

    def age_ms(self, entry: Dict[str, Any]) -> int:
        return self._now_ms() - int(entry.get("timestamp", 0))

    def age_minutes(self, entry: Dict[str, Any]) -> int:
        return round(self.age_ms(entry) / 60000)

    def is_stale(self, entry: Dict[str, Any]) -> bool:
        return self.age_ms(entry) > self.duration_ms

    def needs_refresh_warning(self, entry: Dict[str, Any]) -> bool:
        """True once an entry is past the warning age but not yet expired."""
        age = self.age_ms(entry)
        return self.warning_ms < age < self.duration_ms

    def entry(self, shop: str, kind: str) -> Optional[Dict[str, Any]]:
        """The raw entry, expired or not."""
        if not shop:
            return None
        entry = self._read(shop).get(kind)
        return entry if isinstance(entry, dict) else None

    def load(self, shop: str, kind: str) -> Optional[Any]:
        """Cached data for a card, or None when missing or expired."""
        entry = self.entry(shop, kind)
        if entry is None:
            return None
        if self.is_stale(entry):
            logger.debug(
                "Dashboard cache expired",
                extra={"shop": shop, "kind": kind, "age_minutes": self.age_minutes(entry)},
            )
            return None
        return entry.get("data")

    def save(self, shop: str, kind: str, data: Any, source: str = "api") -> None:
        if not shop:
            logger.warning("Refusing to cache dashboard data without a shop")
            return

        document = self._read(shop)
        document[kind] = {
            "data": data,
            "timestamp": self._now_ms(),
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "version": CACHE_VERSION,
            "shop": shop,
            "source": source,
        }
        document["version"] = CACHE_VERSION
        document["shop"] = shop
        self.storage[cache_key(shop)] = json.dumps(document)

    def invalidate(self, shop: str, kind: str) -> None:
        document = self._read(shop)
        if kind in document:
            del document[kind]
            self.storage[cache_key(shop)] = json.dumps(document)

    def clear_shop(self, shop: str) -> None:
        if shop:
            self.storage.pop(cache_key(shop), None)

    def clear_all(self) -> int:
        """Remove every key containing `dashboard_cache`, older cache versions included."""
        keys = [k for k in list(self.storage.keys()) if CACHE_KEY_PREFIX in k]
        for key in keys:
            del self.storage[key]
        if keys:
            logger.info("Cleared dashboard cache", extra={"keys_removed": len(keys)})
        return len(keys)
