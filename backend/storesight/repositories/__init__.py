"""
Repositories: query classes over a SQLAlchemy Session.

Repositories never commit; the calling service owns the transaction.
"""

from storesight.repositories.shop_repo import ShopRepository, ShopSessionRepository
from storesight.repositories.notification_repo import NotificationRepository
from storesight.repositories.competitor_suggestion_repo import CompetitorSuggestionRepository
from storesight.repositories.audit_log_repo import AuditLogRepository

__all__ = [
    "ShopRepository",
    "ShopSessionRepository",
    "NotificationRepository",
    "CompetitorSuggestionRepository",
    "AuditLogRepository",
]
