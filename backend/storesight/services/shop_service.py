"""
Shop and session store.

Persists one access token per browser session per shop so a merchant can
be logged in from several devices at once. Tokens are cached with a TTL;
the database is the source of truth.

Cache layout:
- shop_token:{domain}:{session_id} -> session access token
- shop_token:{domain}              -> latest token for the shop (fallback)
- shop_session:{session_id}        -> shop domain
- active_sessions:{domain}         -> set of active session ids

Session lifecycle: created -> active -> (expired | deactivated) -> purged.
"""

import logging
import time
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session
from starlette.requests import Request

from storesight.config.retention_policy import SessionPolicy, get_retention_policy
from storesight.models.base import as_utc, utcnow
from storesight.models.shop import Shop
from storesight.models.shop_session import ShopSession
from storesight.platform.redis_cache import get_cache
from storesight.platform.request_context import extract_client_info
from storesight.repositories.shop_repo import ShopRepository, ShopSessionRepository

logger = logging.getLogger(__name__)

SHOP_TOKEN_PREFIX = "shop_token:"
SHOP_SESSION_PREFIX = "shop_session:"
ACTIVE_SESSIONS_PREFIX = "active_sessions:"

CACHE_TTL_SECONDS = 120 * 60
FALLBACK_TTL_SECONDS = 60 * 60
STALE_SESSION_MINUTES = 30


def generate_fallback_session_id(shop_domain: str) -> str:
    """Session id used when the caller has none."""
    return f"fallback_{int(time.time() * 1000)}_{abs(hash(shop_domain))}"


class ShopService:
    """Shop/session persistence with a token cache in front."""

    def __init__(
        self,
        db_session: Session,
        cache=None,
        policy: Optional[SessionPolicy] = None,
    ):
        self.db = db_session
        self.cache = cache if cache is not None else get_cache()
        self.policy = policy or get_retention_policy().sessions
        self.shops = ShopRepository(db_session)
        self.sessions = ShopSessionRepository(db_session)

    # ------------------------------------------------------------------
    # Cache keys
    # ------------------------------------------------------------------

    @staticmethod
    def _session_token_key(shop_domain: str, session_id: str) -> str:
        return f"{SHOP_TOKEN_PREFIX}{shop_domain}:{session_id}"

    @staticmethod
    def _shop_token_key(shop_domain: str) -> str:
        return f"{SHOP_TOKEN_PREFIX}{shop_domain}"

    @staticmethod
    def _active_sessions_key(shop_domain: str) -> str:
        return f"{ACTIVE_SESSIONS_PREFIX}{shop_domain}"

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def save_shop(
        self,
        shop_domain: str,
        access_token: str,
        session_id: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> ShopSession:
        """
        Record a successful OAuth login for one browser session.

        Creates the shop on first install, updates its token, enforces the
        per-shop session cap and creates or refreshes the session row.

        Args:
            shop_domain: Shop domain (e.g., "mystore.myshopify.com")
            access_token: Token returned by the OAuth exchange
            session_id: Browser session id; generated when blank
            request: Incoming request, used for user agent and IP

        Returns:
            The active ShopSession
        """
        if not session_id or not session_id.strip():
            session_id = generate_fallback_session_id(shop_domain)
            logger.info("Generated fallback session id", extra={"shop_domain": shop_domain})

        shop = self.shops.get_by_domain(shop_domain)
        if shop is None:
            shop = self.shops.create(shop_domain, access_token)
            logger.info("Created shop", extra={"shop_domain": shop_domain})
        else:
            shop.access_token = access_token

        self._enforce_session_limit(shop, session_id)
        session = self._create_or_update_session(shop, session_id, access_token, request)
        self.db.commit()

        self._post_save(shop_domain, session_id, access_token)

        logger.info(
            "Shop and session saved",
            extra={"shop_domain": shop_domain, "session_id": session_id},
        )
        return session

    def _enforce_session_limit(self, shop: Shop, current_session_id: str) -> List[ShopSession]:
        """Deactivate the least recently used sessions beyond the cap."""
        active = self.sessions.list_active_for_shop(shop.id)
        max_sessions = self.policy.max_per_shop
        if len(active) < max_sessions:
            return []

        current_exists = any(s.session_id == current_session_id for s in active)
        if current_exists:
            keep = [s for s in active if s.session_id == current_session_id]
            others = [s for s in active if s.session_id != current_session_id]
            to_deactivate = others[max_sessions - 1:]
        else:
            keep = []
            to_deactivate = active[max_sessions - 1:]

        for session in to_deactivate:
            session.deactivate()
            self.cache.delete(self._session_token_key(shop.shopify_domain, session.session_id))
            self.cache.srem(self._active_sessions_key(shop.shopify_domain), session.session_id)

        if to_deactivate:
            logger.info(
                "Enforced session limit",
                extra={
                    "shop_domain": shop.shopify_domain,
                    "deactivated": len(to_deactivate),
                    "kept_current": bool(keep),
                },
            )
        return to_deactivate

    def _create_or_update_session(
        self,
        shop: Shop,
        session_id: str,
        access_token: str,
        request: Optional[Request],
    ) -> ShopSession:
        ip_address, user_agent = extract_client_info(request)
        now = utcnow()

        session = self.sessions.get_by_session_id(session_id)
        if session is None:
            session = ShopSession(session_id=session_id, shop_id=shop.id)
            self.db.add(session)

        session.shop_id = shop.id
        session.access_token = access_token
        session.is_active = True
        session.last_accessed_at = now
        session.expires_at = now + timedelta(hours=self.policy.inactivity_hours)
        if user_agent:
            session.user_agent = user_agent[:500]
        if ip_address:
            session.ip_address = ip_address[:45]

        self.db.flush()
        return session

    def _post_save(self, shop_domain: str, session_id: str, access_token: str) -> None:
        self.cache.set(self._session_token_key(shop_domain, session_id), access_token, CACHE_TTL_SECONDS)
        self.cache.set(self._shop_token_key(shop_domain), access_token, FALLBACK_TTL_SECONDS)
        self.cache.set(f"{SHOP_SESSION_PREFIX}{session_id}", shop_domain, CACHE_TTL_SECONDS)
        self.cache.sadd(self._active_sessions_key(shop_domain), session_id, CACHE_TTL_SECONDS)

    # ------------------------------------------------------------------
    # Token lookup
    # ------------------------------------------------------------------

    def get_token_for_shop(self, shop_domain: str, session_id: Optional[str]) -> Optional[str]:
        """
        Resolve the access token for a request.

        Order: session cache, active session row, then the shop-level
        fallback. A session that exists but was deactivated or expired does
        not fall back; it was logged out.
        """
        if not shop_domain:
            return None

        if session_id:
            cached = self.cache.get(self._session_token_key(shop_domain, session_id))
            if cached:
                return cached

            session = self.sessions.get_active_by_domain_and_session_id(shop_domain, session_id)
            if session is not None and not session.is_expired():
                session.mark_as_accessed()
                self.db.commit()
                self.cache.set(
                    self._session_token_key(shop_domain, session_id),
                    session.access_token,
                    CACHE_TTL_SECONDS * 2,
                )
                return session.access_token

            if self.sessions.get_by_session_id(session_id) is not None:
                logger.info(
                    "Session is inactive or expired",
                    extra={"shop_domain": shop_domain, "session_id": session_id},
                )
                return None

        return self._get_fallback_token(shop_domain)

    def _get_fallback_token(self, shop_domain: str) -> Optional[str]:
        cached = self.cache.get(self._shop_token_key(shop_domain))
        if cached:
            return cached

        shop = self.shops.get_by_domain(shop_domain)
        if shop is None:
            return None

        recent = self.sessions.most_recent_active_for_shop(shop.id)
        if recent is not None and not recent.is_expired():
            self.cache.set(self._shop_token_key(shop_domain), recent.access_token, FALLBACK_TTL_SECONDS)
            return recent.access_token

        if shop.access_token:
            self.cache.set(self._shop_token_key(shop_domain), shop.access_token, FALLBACK_TTL_SECONDS)
        return shop.access_token

    # ------------------------------------------------------------------
    # Logout / session management
    # ------------------------------------------------------------------

    def remove_session(self, shop_domain: str, session_id: str) -> bool:
        """Deactivate one session. Returns False if it does not belong to the shop."""
        session = self.sessions.get_by_session_id(session_id)
        if session is None or session.shop is None or session.shop.shopify_domain != shop_domain:
            return False

        session.deactivate()
        self.db.commit()

        self.cache.delete(
            self._session_token_key(shop_domain, session_id),
            f"{SHOP_SESSION_PREFIX}{session_id}",
        )
        self.cache.srem(self._active_sessions_key(shop_domain), session_id)
        logger.info(
            "Session deactivated",
            extra={"shop_domain": shop_domain, "session_id": session_id},
        )
        return True

    def remove_all_sessions_for_shop(self, shop_domain: str) -> int:
        shop = self.shops.get_by_domain(shop_domain)
        if shop is None:
            return 0

        active = self.sessions.list_active_for_shop(shop.id)
        for session in active:
            session.deactivate()
        self.db.commit()

        self._clear_shop_cache(shop_domain, [s.session_id for s in active])
        logger.info(
            "All sessions deactivated",
            extra={"shop_domain": shop_domain, "count": len(active)},
        )
        return len(active)

    def remove_other_sessions(self, shop_domain: str, current_session_id: Optional[str]) -> int:
        count = 0
        for session in self.get_active_sessions_for_shop(shop_domain):
            if session.session_id != current_session_id:
                if self.remove_session(shop_domain, session.session_id):
                    count += 1
        return count

    def _clear_shop_cache(self, shop_domain: str, session_ids: List[str]) -> None:
        keys = [self._shop_token_key(shop_domain), self._active_sessions_key(shop_domain)]
        for sid in session_ids:
            keys.append(self._session_token_key(shop_domain, sid))
            keys.append(f"{SHOP_SESSION_PREFIX}{sid}")
        self.cache.delete(*keys)

    def get_active_sessions_for_shop(self, shop_domain: str) -> List[ShopSession]:
        """Active sessions only, most recently accessed first."""
        shop = self.shops.get_by_domain(shop_domain)
        if shop is None:
            return []
        return self.sessions.list_active_for_shop(shop.id)

    def get_session_info(self, session_id: Optional[str]) -> Optional[ShopSession]:
        if not session_id:
            return None
        return self.sessions.get_by_session_id(session_id)

    def update_session_heartbeat(self, shop_domain: str, session_id: Optional[str]) -> bool:
        """Mark the session accessed and slide its expiry. False if not active."""
        if not session_id:
            return False
        session = self.sessions.get_active_by_domain_and_session_id(shop_domain, session_id)
        if session is None:
            logger.warning(
                "Session not found for heartbeat",
                extra={"shop_domain": shop_domain, "session_id": session_id},
            )
            return False

        session.mark_as_accessed()
        session.expires_at = utcnow() + timedelta(hours=self.policy.inactivity_hours)
        self.db.commit()

        self.cache.set(
            self._session_token_key(shop_domain, session_id),
            session.access_token,
            CACHE_TTL_SECONDS,
        )
        return True

    def get_stale_sessions_for_shop(self, shop_domain: str) -> List[ShopSession]:
        """Active sessions with no access in the last STALE_SESSION_MINUTES."""
        threshold = utcnow() - timedelta(minutes=STALE_SESSION_MINUTES)
        return [
            s for s in self.get_active_sessions_for_shop(shop_domain)
            if as_utc(s.last_accessed_at) < threshold
        ]

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_expired_sessions(self) -> dict:
        """Deactivate expired sessions, then sweep inactive ones."""
        now = utcnow()
        expired = self.sessions.list_expired_active(now)
        for session in expired:
            session.deactivate()
            if session.shop is not None:
                self.cache.delete(self._session_token_key(session.shop.shopify_domain, session.session_id))
        self.db.commit()

        if expired:
            logger.info("Deactivated expired sessions", extra={"count": len(expired)})

        stats = self.cleanup_inactive_sessions()
        stats["expired_deactivated"] = len(expired)
        return stats

    def cleanup_inactive_sessions(self) -> dict:
        """
        Deactivate sessions idle for cleanup_days and delete inactive
        sessions untouched for twice that long.
        """
        now = utcnow()
        idle_cutoff = now - timedelta(days=self.policy.cleanup_days)
        delete_cutoff = now - timedelta(days=self.policy.cleanup_days * 2)

        idle = self.sessions.list_stale_active(idle_cutoff)
        for session in idle:
            session.deactivate()
            if session.shop is not None:
                self.cache.delete(self._session_token_key(session.shop.shopify_domain, session.session_id))
        self.db.flush()

        deleted = self.sessions.delete_inactive_older_than(delete_cutoff)
        self.db.commit()

        if idle or deleted:
            logger.info(
                "Cleaned up inactive sessions",
                extra={"idle_deactivated": len(idle), "deleted": deleted},
            )
        return {"idle_deactivated": len(idle), "deleted": deleted}
