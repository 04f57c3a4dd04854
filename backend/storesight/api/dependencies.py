"""
Shared FastAPI dependencies.

Identity: the shop domain travels in the `shop` cookie; the browser session
id in the SESSION_ID cookie or X-Session-Id header. Services are built per
request on the request's database session, so tests can swap any of them
through app.dependency_overrides.
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from storesight.database.session import get_db_session
from storesight.platform.redis_cache import get_cache
from storesight.platform.request_context import get_session_id, get_shop_cookie
from storesight.services.competitor_service import CompetitorService
from storesight.services.dashboard_cache_service import DashboardCacheService
from storesight.services.data_privacy_service import DataPrivacyService
from storesight.services.notification_service import NotificationService
from storesight.services.oauth_service import OAuthService
from storesight.services.shop_service import ShopService
from storesight.services.shopify_client import ShopifyAdminClient

logger = logging.getLogger(__name__)

ShopifyClientFactory = Callable[[str, str], ShopifyAdminClient]


def get_current_shop(request: Request) -> Optional[str]:
    return get_shop_cookie(request)


def get_current_session_id(request: Request) -> Optional[str]:
    return get_session_id(request)


def get_cache_backend():
    return get_cache()


def get_shop_service(
    db: Session = Depends(get_db_session),
    cache=Depends(get_cache_backend),
) -> ShopService:
    return ShopService(db, cache=cache)


def get_notification_service(db: Session = Depends(get_db_session)) -> NotificationService:
    return NotificationService(db)


def get_privacy_service(
    db: Session = Depends(get_db_session),
    cache=Depends(get_cache_backend),
) -> DataPrivacyService:
    return DataPrivacyService(db, cache=cache)


def get_competitor_service(db: Session = Depends(get_db_session)) -> CompetitorService:
    return CompetitorService(db)


def get_dashboard_cache(cache=Depends(get_cache_backend)) -> DashboardCacheService:
    return DashboardCacheService(cache)


def get_oauth_service(cache=Depends(get_cache_backend)) -> Optional[OAuthService]:
    """OAuth service, or None when the Shopify app credentials are not configured."""
    try:
        return OAuthService(cache=cache)
    except ValueError as e:
        logger.error("Shopify OAuth not configured", extra={"error": str(e)})
        return None


def get_shopify_client_factory() -> ShopifyClientFactory:
    return ShopifyAdminClient
