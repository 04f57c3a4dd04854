"""
Session management routes.

Lets a merchant see the browser sessions logged into their shop, end
other sessions, and keep the current one alive with heartbeats.
Every endpoint requires the `shop` cookie.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storesight.api.dependencies import get_current_session_id, get_current_shop, get_shop_service
from storesight.models.base import as_utc, utcnow
from storesight.models.shop_session import ShopSession
from storesight.services.shop_service import ShopService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class TerminateSessionRequest(BaseModel):
    sessionId: Optional[str] = None


def _no_shop() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "No shop authentication found"})


def _iso(value) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _session_summary(session: ShopSession, current_session_id: Optional[str]) -> dict:
    return {
        "sessionId": session.session_id,
        "createdAt": _iso(session.created_at),
        "lastAccessedAt": _iso(session.last_accessed_at),
        "expiresAt": _iso(session.expires_at),
        "ipAddress": session.ip_address,
        "userAgent": session.user_agent,
        "isExpired": session.is_expired(),
        "isCurrentSession": session.session_id == current_session_id,
    }


@router.get("/active")
async def active_sessions(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    current = get_current_session_id(request)
    sessions = shop_service.get_active_sessions_for_shop(shop)
    return {
        "success": True,
        "shop": shop,
        "currentSessionId": current,
        "activeSessionCount": len(sessions),
        "sessions": [_session_summary(s, current) for s in sessions],
    }


@router.get("/current")
async def current_session(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    session_id = get_current_session_id(request)
    session = shop_service.get_session_info(session_id)
    if session is None or session.shop is None or session.shop.shopify_domain != shop:
        return {"success": True, "sessionId": session_id, "shop": shop, "found": False}

    return {
        "success": True,
        "found": True,
        "shop": shop,
        "sessionId": session.session_id,
        "createdAt": _iso(session.created_at),
        "lastAccessedAt": _iso(session.last_accessed_at),
        "expiresAt": _iso(session.expires_at),
        "ipAddress": session.ip_address,
        "userAgent": session.user_agent,
        "isActive": session.is_active,
        "isExpired": session.is_expired(),
    }


@router.post("/terminate")
async def terminate_session(
    request: Request,
    body: TerminateSessionRequest,
    shop_service: ShopService = Depends(get_shop_service),
):
    """End another browser session of the same shop."""
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    target = (body.sessionId or "").strip()
    if not target:
        return JSONResponse(status_code=400, content={"error": "Session ID is required"})
    if target == get_current_session_id(request):
        return JSONResponse(
            status_code=400,
            content={"error": "Cannot terminate your own session. Use logout instead."},
        )

    if not shop_service.remove_session(shop, target):
        return JSONResponse(status_code=404, content={"error": "Session not found", "success": False})

    logger.info("Session terminated by merchant", extra={"shop": shop, "session_id": target})
    return {
        "success": True,
        "message": "Session terminated successfully",
        "terminatedSessionId": target,
    }


@router.post("/terminate-others")
async def terminate_other_sessions(
    request: Request, shop_service: ShopService = Depends(get_shop_service)
):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    current = get_current_session_id(request)
    terminated = shop_service.remove_other_sessions(shop, current)
    return {
        "success": True,
        "message": "Other sessions terminated successfully",
        "terminatedSessionsCount": terminated,
        "currentSessionId": current,
    }


@router.post("/heartbeat")
async def heartbeat(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    session_id = get_current_session_id(request)
    if not shop_service.update_session_heartbeat(shop, session_id):
        return JSONResponse(
            status_code=404,
            content={"error": "Session not found or inactive", "success": False},
        )

    return {
        "success": True,
        "message": "Session heartbeat recorded",
        "sessionId": session_id,
        "shop": shop,
        "timestamp": _timestamp_ms(),
        "activeSessionCount": len(shop_service.get_active_sessions_for_shop(shop)),
    }


@router.get("/stale-check")
async def stale_check(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    current = get_current_session_id(request)
    now = utcnow()
    stale = shop_service.get_stale_sessions_for_shop(shop)
    return {
        "success": True,
        "shop": shop,
        "currentSessionId": current,
        "staleSessionCount": len(stale),
        "staleSessions": [
            {
                "sessionId": s.session_id,
                "isCurrentSession": s.session_id == current,
                "lastAccessedAt": _iso(s.last_accessed_at),
                "minutesSinceLastAccess": int((now - as_utc(s.last_accessed_at)).total_seconds() // 60),
            }
            for s in stale
        ],
        "timestamp": _timestamp_ms(),
    }


@router.post("/terminate-current")
async def terminate_current(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    """Browser unload signal. Always 200; success is false without shop and session."""
    shop = get_current_shop(request)
    session_id = get_current_session_id(request)

    if not shop or not session_id:
        logger.info(
            "Session termination request missing shop or session",
            extra={"shop": shop, "session_id": session_id},
        )
        return {
            "success": False,
            "message": "Missing shop or session information",
            "timestamp": _timestamp_ms(),
        }

    shop_service.remove_session(shop, session_id)
    return {
        "success": True,
        "message": "Session terminated successfully",
        "sessionId": session_id,
        "shop": shop,
        "timestamp": _timestamp_ms(),
    }


@router.get("/limit-check")
async def limit_check(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    current = get_current_session_id(request)
    sessions = shop_service.get_active_sessions_for_shop(shop)
    max_sessions = shop_service.policy.max_per_shop
    return {
        "success": True,
        "shop": shop,
        "limitReached": len(sessions) >= max_sessions,
        "maxSessions": max_sessions,
        "currentSessionCount": len(sessions),
        "currentSessionId": current,
        "currentSessionFound": any(s.session_id == current for s in sessions),
        "sessions": [_session_summary(s, current) for s in sessions],
        "timestamp": _timestamp_ms(),
    }


@router.post("/can-create-session")
async def can_create_session(request: Request, shop_service: ShopService = Depends(get_shop_service)):
    shop = get_current_shop(request)
    if not shop:
        return _no_shop()

    current = get_current_session_id(request)
    sessions = shop_service.get_active_sessions_for_shop(shop)
    max_sessions = shop_service.policy.max_per_shop
    exists = any(s.session_id == current for s in sessions)
    return {
        "success": True,
        "shop": shop,
        "canCreate": exists or len(sessions) < max_sessions,
        "currentSessionExists": exists,
        "activeSessionCount": len(sessions),
        "maxSessions": max_sessions,
        "currentSessionId": current,
    }
