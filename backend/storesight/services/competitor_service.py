"""
Competitor suggestion review.

Lists discovered competitor listings for a shop and lets the merchant approve
or ignore them. The NEW-suggestion count polled by the dashboard badge is
held in a small per-process cache to absorb frequent polling.
"""

import logging
import math
import time
from threading import Lock
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from storesight.models.competitor_suggestion import CompetitorSuggestion, SuggestionStatus
from storesight.repositories.competitor_suggestion_repo import CompetitorSuggestionRepository

logger = logging.getLogger(__name__)

COUNT_CACHE_MINUTES = 30
COUNT_PRUNE_MINUTES = 60


class SuggestionCountCache:
    """Per-shop NEW-suggestion counts with a freshness window."""

    def __init__(self, fresh_minutes: int = COUNT_CACHE_MINUTES, prune_minutes: int = COUNT_PRUNE_MINUTES):
        self._entries: Dict[int, Tuple[int, float]] = {}
        self._lock = Lock()
        self.fresh_seconds = fresh_minutes * 60
        self.prune_seconds = prune_minutes * 60

    def get(self, shop_id: int) -> Optional[int]:
        with self._lock:
            entry = self._entries.get(shop_id)
            if entry is None:
                return None
            count, stored_at = entry
            if time.monotonic() - stored_at > self.fresh_seconds:
                return None
            return count

    def put(self, shop_id: int, count: int) -> None:
        now = time.monotonic()
        with self._lock:
            self._entries[shop_id] = (count, now)
            stale = [k for k, (_, at) in self._entries.items() if now - at > self.prune_seconds]
            for key in stale:
                del self._entries[key]

    def invalidate(self, shop_id: int) -> None:
        with self._lock:
            self._entries.pop(shop_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_count_cache = SuggestionCountCache()


def get_count_cache() -> SuggestionCountCache:
    return _count_cache


class CompetitorService:
    """Review workflow for competitor suggestions, scoped by shop id."""

    def __init__(self, db_session: Session, count_cache: Optional[SuggestionCountCache] = None):
        self.db = db_session
        self.repo = CompetitorSuggestionRepository(db_session)
        self.count_cache = count_cache if count_cache is not None else get_count_cache()

    def list_suggestions(
        self,
        shop_id: int,
        status: SuggestionStatus = SuggestionStatus.NEW,
        page: int = 0,
        size: int = 10,
    ) -> Dict[str, Any]:
        """One page of suggestions, shaped as {content, totalElements, totalPages, number, size}."""
        page = max(page, 0)
        size = max(size, 1)
        items, total = self.repo.page_by_shop_and_status(shop_id, status, page, size)
        return {
            "content": [item.to_dict() for item in items],
            "totalElements": total,
            "totalPages": math.ceil(total / size) if total else 0,
            "number": page,
            "size": size,
        }

    def get_new_count(self, shop_id: int) -> int:
        cached = self.count_cache.get(shop_id)
        if cached is not None:
            return cached

        count = self.repo.count_by_shop_and_status(shop_id, SuggestionStatus.NEW)
        self.count_cache.put(shop_id, count)
        logger.debug("Suggestion count refreshed", extra={"shop_id": shop_id, "count": count})
        return count

    def refresh_count(self, shop_id: int) -> None:
        self.count_cache.invalidate(shop_id)

    def _get_owned(self, shop_id: int, suggestion_id: int) -> Optional[CompetitorSuggestion]:
        suggestion = self.repo.get_by_id(suggestion_id)
        if suggestion is None or suggestion.shop_id != shop_id:
            return None
        return suggestion

    def approve(self, shop_id: int, suggestion_id: int) -> Optional[CompetitorSuggestion]:
        """Start tracking a suggestion. None when it is missing or another shop's."""
        suggestion = self._get_owned(shop_id, suggestion_id)
        if suggestion is None:
            return None
        suggestion.approve()
        self.db.commit()
        self.count_cache.invalidate(shop_id)
        logger.info(
            "Competitor suggestion approved",
            extra={"shop_id": shop_id, "suggestion_id": suggestion_id},
        )
        return suggestion

    def ignore(self, shop_id: int, suggestion_id: int) -> Optional[CompetitorSuggestion]:
        suggestion = self._get_owned(shop_id, suggestion_id)
        if suggestion is None:
            return None
        suggestion.ignore()
        self.db.commit()
        self.count_cache.invalidate(shop_id)
        logger.info(
            "Competitor suggestion ignored",
            extra={"shop_id": shop_id, "suggestion_id": suggestion_id},
        )
        return suggestion
