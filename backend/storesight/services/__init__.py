"""
Business logic services.
"""

from storesight.services.shop_service import ShopService
from storesight.services.notification_service import NotificationService
from storesight.services.data_privacy_service import DataPrivacyService
from storesight.services.competitor_service import CompetitorService
from storesight.services.dashboard_cache_service import DashboardCacheService

__all__ = [
    "ShopService",
    "NotificationService",
    "DataPrivacyService",
    "CompetitorService",
    "DashboardCacheService",
]
