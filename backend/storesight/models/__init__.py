"""
Database models for shops, sessions, notifications, competitor
suggestions and the privacy audit log.
"""

from storesight.models.base import TimestampMixin
from storesight.models.shop import Shop
from storesight.models.shop_session import ShopSession
from storesight.models.notification import Notification
from storesight.models.competitor_suggestion import (
    CompetitorSuggestion,
    SuggestionSource,
    SuggestionStatus,
)
from storesight.models.audit_log import AuditLog

__all__ = [
    "TimestampMixin",
    "Shop",
    "ShopSession",
    "Notification",
    "CompetitorSuggestion",
    "SuggestionSource",
    "SuggestionStatus",
    "AuditLog",
]
