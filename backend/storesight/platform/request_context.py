"""
Request context helpers.

Extracts the caller's IP address, user agent and browser session id from
an incoming request. The shop identity itself travels in the `shop` cookie
and is read by the API dependencies.
"""

from typing import Optional

from starlette.requests import Request

SHOP_COOKIE = "shop"
SESSION_COOKIE = "SESSION_ID"
SESSION_HEADER = "X-Session-Id"


def _header_value(request: Request, name: str) -> Optional[str]:
    value = request.headers.get(name)
    if not value or value.strip().lower() == "unknown":
        return None
    return value.strip()


def get_client_ip(request: Request) -> Optional[str]:
    """
    Resolve the client IP address.

    Resolution order: first X-Forwarded-For entry, X-Real-IP, socket peer.
    """
    forwarded_for = _header_value(request, "X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = _header_value(request, "X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else None


def extract_client_info(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    """Return (ip_address, user_agent) for the request, or (None, None)."""
    if request is None:
        return None, None
    return get_client_ip(request), request.headers.get("User-Agent")


def get_session_id(request: Request) -> Optional[str]:
    """Browser session id from the session cookie or X-Session-Id header."""
    session_id = request.cookies.get(SESSION_COOKIE) or request.headers.get(SESSION_HEADER)
    if session_id and session_id.strip():
        return session_id.strip()
    return None


def get_shop_cookie(request: Request) -> Optional[str]:
    shop = request.cookies.get(SHOP_COOKIE)
    if shop and shop.strip():
        return shop.strip()
    return None
