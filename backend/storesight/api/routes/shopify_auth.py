"""
Shopify authentication routes.

Covers the OAuth install flow, the current-shop probe used by the SPA,
logout, raw data export and the notification inbox.

Identity after install:
- `shop` cookie: shop domain, readable by the SPA (not httponly)
- `SESSION_ID` cookie: browser session id, httponly
"""

import logging
import os
import secrets
from datetime import date
from typing import Optional
from urllib.parse import quote, unquote

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel

from storesight.api.dependencies import (
    ShopifyClientFactory,
    get_current_session_id,
    get_current_shop,
    get_notification_service,
    get_oauth_service,
    get_privacy_service,
    get_shop_service,
    get_shopify_client_factory,
)
from storesight.platform.request_context import SESSION_COOKIE, SHOP_COOKIE
from storesight.services.data_privacy_service import DataPrivacyService
from storesight.services.notification_service import (
    NotificationAccessError,
    NotificationNotFoundError,
    NotificationService,
)
from storesight.services.oauth_service import (
    HMACVerificationError,
    OAuthService,
    TokenExchangeError,
    TokenExchangeNetworkError,
)
from storesight.services.shop_service import ShopService
from storesight.services.shopify_client import ShopifyAPIError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/shopify", tags=["auth"])

SHOP_COOKIE_MAX_AGE = 60 * 60 * 24 * 7
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24
EXPORT_TYPES = {"products": {}, "orders": {"status": "any"}}


def _frontend_url() -> str:
    return os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")


def _secure_cookies() -> bool:
    return _frontend_url().startswith("https://")


def _reauth_url(shop: str) -> str:
    return f"/api/auth/shopify/login?shop={quote(shop, safe='')}"


def _error_redirect(error_code: str, message: str) -> RedirectResponse:
    url = f"{_frontend_url()}/?error={quote(error_code, safe='')}&error_message={quote(message, safe='')}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


def _set_identity_cookies(response: Response, shop: str, session_id: str) -> None:
    secure = _secure_cookies()
    response.set_cookie(
        SHOP_COOKIE, shop,
        max_age=SHOP_COOKIE_MAX_AGE, path="/", httponly=False, secure=secure, samesite="lax",
    )
    response.set_cookie(
        SESSION_COOKIE, session_id,
        max_age=SESSION_COOKIE_MAX_AGE, path="/", httponly=True, secure=secure, samesite="lax",
    )


def _clear_identity_cookies(response: Response) -> None:
    secure = _secure_cookies()
    response.delete_cookie(SHOP_COOKIE, path="/", secure=secure, samesite="lax")
    response.delete_cookie(SESSION_COOKIE, path="/", secure=secure, httponly=True, samesite="lax")


def _not_authenticated(**extra) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": "Not authenticated", **extra},
    )


# Request models

class MarkReadRequest(BaseModel):
    id: Optional[str] = None


class CreateNotificationRequest(BaseModel):
    message: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    scope: Optional[str] = None
    shopWide: bool = False


# ----------------------------------------------------------------------
# OAuth
# ----------------------------------------------------------------------

@router.get("/login")
async def login(shop: str = Query(""), return_url: Optional[str] = None):
    """Validate the shop and hand off to the install endpoint."""
    if not shop.strip():
        return JSONResponse(status_code=400, content={"error": "Shop parameter is required"})
    if not OAuthService.validate_shop_domain(shop):
        logger.warning("Invalid shop domain on login", extra={"shop": shop})
        return JSONResponse(status_code=400, content={"error": "Invalid shop domain"})

    url = f"/api/auth/shopify/install?shop={quote(shop.strip(), safe='')}"
    if return_url:
        url += f"&return_url={quote(return_url, safe='')}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/install")
async def install(
    shop: str = Query(""),
    return_url: Optional[str] = None,
    oauth: Optional[OAuthService] = Depends(get_oauth_service),
):
    """Redirect the merchant to Shopify's authorization screen."""
    if not OAuthService.validate_shop_domain(shop):
        return JSONResponse(status_code=400, content={"error": "Invalid shop domain"})
    if oauth is None:
        return JSONResponse(
            status_code=500,
            content={"error": "Shopify API configuration error. Please contact support."},
        )

    state = oauth.generate_state()
    if return_url:
        oauth.store_return_url(state, return_url)

    logger.info("Starting OAuth install", extra={"shop": shop})
    return RedirectResponse(
        oauth.create_authorization_url(shop.strip(), state),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = None,
    shop: Optional[str] = None,
    state: Optional[str] = None,
    hmac: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    oauth: Optional[OAuthService] = Depends(get_oauth_service),
    shop_service: ShopService = Depends(get_shop_service),
    privacy: DataPrivacyService = Depends(get_privacy_service),
):
    """
    Complete the OAuth install.

    Every outcome is a redirect to the frontend; failures carry
    ?error=<code>&error_message=<text>.
    """
    if error:
        logger.error("Shopify OAuth error", extra={"error": error, "description": error_description})
        return _error_redirect(
            "oauth_error",
            f"OAuth error: {error} - {error_description or 'Unknown error'}",
        )

    if not shop or not code:
        return _error_redirect(
            "missing_params",
            "Missing required parameters. Please try the installation process again.",
        )

    if not OAuthService.validate_shop_domain(shop):
        return _error_redirect(
            "oauth_error", "Invalid OAuth request. Please check your Shopify app configuration."
        )

    if oauth is None:
        return _error_redirect(
            "config_error", "Shopify API configuration error. Please contact support."
        )

    if oauth.is_code_used(code):
        logger.info("Authorization code already processed", extra={"shop": shop})
        return RedirectResponse(
            f"{_frontend_url()}/?shop={quote(shop, safe='')}",
            status_code=status.HTTP_302_FOUND,
        )

    if hmac is not None:
        try:
            oauth.require_valid_hmac(dict(request.query_params))
        except HMACVerificationError:
            logger.error("HMAC validation failed", extra={"shop": shop})
            return _error_redirect(
                "auth_failed",
                "Security validation failed. Please try the installation process again.",
            )

    try:
        access_token = await oauth.exchange_code_for_token(shop, code)
    except TokenExchangeNetworkError:
        return _error_redirect(
            "network_error",
            "Network error during authentication. Please check your connection and try again.",
        )
    except TokenExchangeError:
        return _error_redirect(
            "token_error", "Failed to obtain access token from Shopify. Please try again."
        )

    session_id = get_current_session_id(request) or secrets.token_urlsafe(32)
    shop_service.save_shop(shop, access_token, session_id, request)
    oauth.mark_code_used(code)
    privacy.log_data_access("SHOP_AUTHENTICATED", "OAuth install completed", shop, request)

    return_to = oauth.pop_return_url(state)
    target = unquote(return_to) if return_to else f"{_frontend_url()}/?shop={quote(shop, safe='')}"

    response = RedirectResponse(target, status_code=status.HTTP_302_FOUND)
    _set_identity_cookies(response, shop, session_id)
    logger.info("OAuth install completed", extra={"shop": shop})
    return response


# ----------------------------------------------------------------------
# Current shop
# ----------------------------------------------------------------------

@router.get("/me")
async def me(
    request: Request,
    shop_service: ShopService = Depends(get_shop_service),
):
    """
    Report the authenticated shop.

    With a shop cookie but no usable token the response carries a
    reauth_url the SPA can follow to restart OAuth.
    """
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated(shop=None)

    session_id = get_current_session_id(request)
    token = shop_service.get_token_for_shop(shop, session_id)
    if not token:
        logger.info("No token for shop session", extra={"shop": shop, "session_id": session_id})
        return _not_authenticated(shop=None, reauth_url=_reauth_url(shop))

    new_session = not session_id
    if new_session:
        # Recovered through the shop-level token; bind a fresh session
        session_id = secrets.token_urlsafe(32)
        shop_service.save_shop(shop, token, session_id, request)

    response = JSONResponse(content={"shop": shop, "authenticated": True, "sessionId": session_id})
    if new_session:
        _set_identity_cookies(response, shop, session_id)
    return response


@router.post("/refresh")
async def refresh(
    request: Request,
    shop_service: ShopService = Depends(get_shop_service),
):
    shop = get_current_shop(request)
    if not shop:
        return JSONResponse(status_code=400, content={"error": "No shop specified", "success": False})

    session_id = get_current_session_id(request)
    token = shop_service.get_token_for_shop(shop, session_id)
    if not token:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": "No valid authentication found",
                "success": False,
                "reauth_url": _reauth_url(shop),
            },
        )

    session_id = session_id or secrets.token_urlsafe(32)
    shop_service.save_shop(shop, token, session_id, request)
    response = JSONResponse(
        content={"success": True, "shop": shop, "message": "Authentication refreshed"}
    )
    _set_identity_cookies(response, shop, session_id)
    return response


@router.post("/profile/disconnect")
async def disconnect(
    request: Request,
    all_sessions: bool = Query(False, alias="all"),
    shop_service: ShopService = Depends(get_shop_service),
    privacy: DataPrivacyService = Depends(get_privacy_service),
):
    """Log out the current session, or every session of the shop with ?all=true."""
    shop = get_current_shop(request)
    if shop:
        session_id = get_current_session_id(request)
        if all_sessions or not session_id:
            removed = shop_service.remove_all_sessions_for_shop(shop)
        else:
            removed = int(shop_service.remove_session(shop, session_id))
        privacy.log_data_access("SHOP_DISCONNECTED", f"Removed {removed} session(s)", shop, request)
        logger.info("Shop disconnected", extra={"shop": shop, "sessions_removed": removed})

    response = JSONResponse(content={"status": "success"})
    _clear_identity_cookies(response)
    return response


@router.post("/profile/force-disconnect")
async def force_disconnect(
    request: Request,
    shop: Optional[str] = None,
    shop_service: ShopService = Depends(get_shop_service),
):
    target = shop or get_current_shop(request)
    if target:
        shop_service.remove_all_sessions_for_shop(target)
        logger.info("Shop force disconnected", extra={"shop": target})
    else:
        logger.warning("No shop provided for force disconnect")

    response = JSONResponse(
        content={"status": "force_disconnected", "message": "All cookies and tokens cleared"}
    )
    for name in request.cookies:
        response.delete_cookie(name, path="/")
    _clear_identity_cookies(response)
    return response


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------

@router.get("/export")
async def export_data(
    request: Request,
    type: Optional[str] = None,
    shop_service: ShopService = Depends(get_shop_service),
    client_factory: ShopifyClientFactory = Depends(get_shopify_client_factory),
):
    """Download raw products or orders JSON from Shopify as an attachment."""
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated()
    token = shop_service.get_token_for_shop(shop, get_current_session_id(request))
    if not token:
        return _not_authenticated()
    if type not in EXPORT_TYPES:
        return JSONResponse(status_code=400, content={"error": "type must be products or orders"})

    try:
        async with client_factory(shop, token) as client:
            data = await client.get_resource(type, EXPORT_TYPES[type])
    except ShopifyAPIError as e:
        logger.error("Export failed", extra={"shop": shop, "type": type, "status_code": e.status_code})
        return JSONResponse(
            status_code=e.status_code or status.HTTP_502_BAD_GATEWAY,
            content={"error": "Failed to export data"},
        )

    filename = f"{type}_{date.today().isoformat()}.json"
    return JSONResponse(
        content=data,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------

@router.get("/notifications")
async def get_notifications(
    request: Request,
    notifications: NotificationService = Depends(get_notification_service),
):
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated(notifications=[])

    try:
        items = notifications.get_notifications_with_cleanup(shop, get_current_session_id(request))
    except Exception as e:
        logger.error("Failed to fetch notifications", extra={"shop": shop, "error": str(e)}, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch notifications", "notifications": []},
        )
    return {"notifications": [n.to_dict() for n in items]}


@router.get("/notifications/unread-count")
async def get_unread_count(
    request: Request,
    notifications: NotificationService = Depends(get_notification_service),
):
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated(unreadCount=0)
    return {"unreadCount": notifications.get_unread_count(shop, get_current_session_id(request))}


@router.post("/notifications/mark-read")
async def mark_notification_read(
    request: Request,
    body: MarkReadRequest,
    notifications: NotificationService = Depends(get_notification_service),
):
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated()
    if not body.id:
        return JSONResponse(status_code=400, content={"error": "Notification ID is required"})

    try:
        notifications.mark_as_read(shop, body.id, get_current_session_id(request))
    except (NotificationNotFoundError, NotificationAccessError):
        return JSONResponse(status_code=404, content={"error": "Notification not found"})
    return {"status": "success"}


@router.post("/notifications", status_code=status.HTTP_201_CREATED)
async def create_notification(
    request: Request,
    body: CreateNotificationRequest,
    notifications: NotificationService = Depends(get_notification_service),
):
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated()
    if not body.message or not body.message.strip():
        return JSONResponse(status_code=400, content={"error": "Message is required"})

    if body.shopWide:
        notification = notifications.create_shop_wide_notification(
            shop, body.message, type=body.type, category=body.category
        )
    else:
        notification = notifications.create_notification(
            shop,
            body.message,
            type=body.type,
            session_id=get_current_session_id(request),
            category=body.category,
            scope=body.scope,
        )
    return notification.to_dict()


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    request: Request,
    notification_id: str,
    notifications: NotificationService = Depends(get_notification_service),
):
    shop = get_current_shop(request)
    if not shop:
        return _not_authenticated()

    try:
        notifications.soft_delete_notification(shop, notification_id, get_current_session_id(request))
    except (NotificationNotFoundError, NotificationAccessError):
        return JSONResponse(status_code=404, content={"error": "Notification not found"})
    return {"status": "success"}


@router.post("/notifications/cleanup")
async def cleanup_notifications(
    request: Request,
    notifications: NotificationService = Depends(get_notification_service),
):
    if not get_current_shop(request):
        return _not_authenticated()

    deleted = notifications.cleanup_old_notifications()
    return {
        "status": "success",
        "deletedCount": deleted,
        "message": "Cleanup completed successfully",
    }
