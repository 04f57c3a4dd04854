"""
Shop and shop-session queries.

Active-session lookups only ever match rows with is_active = true; an
inactive row is never returned by them, whatever its expiry.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from storesight.models.shop import Shop
from storesight.models.shop_session import ShopSession


class ShopRepository:
    """Queries over the shops table."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_by_domain(self, shopify_domain: str) -> Optional[Shop]:
        return (
            self.db_session.query(Shop)
            .filter(Shop.shopify_domain == shopify_domain)
            .first()
        )

    def get_by_id(self, shop_id: int) -> Optional[Shop]:
        return self.db_session.get(Shop, shop_id)

    def list_all(self) -> List[Shop]:
        return self.db_session.query(Shop).order_by(Shop.id).all()

    def create(self, shopify_domain: str, access_token: Optional[str] = None) -> Shop:
        shop = Shop(shopify_domain=shopify_domain, access_token=access_token)
        self.db_session.add(shop)
        self.db_session.flush()
        return shop


class ShopSessionRepository:
    """Queries over the shop_sessions table."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_by_session_id(self, session_id: str) -> Optional[ShopSession]:
        return (
            self.db_session.query(ShopSession)
            .filter(ShopSession.session_id == session_id)
            .first()
        )

    def get_active_by_domain_and_session_id(
        self, shopify_domain: str, session_id: str
    ) -> Optional[ShopSession]:
        return (
            self.db_session.query(ShopSession)
            .join(Shop, ShopSession.shop_id == Shop.id)
            .filter(
                Shop.shopify_domain == shopify_domain,
                ShopSession.session_id == session_id,
                ShopSession.is_active.is_(True),
            )
            .first()
        )

    def list_for_shop(self, shop_id: int) -> List[ShopSession]:
        return (
            self.db_session.query(ShopSession)
            .filter(ShopSession.shop_id == shop_id)
            .all()
        )

    def list_active_for_shop(self, shop_id: int) -> List[ShopSession]:
        """Active sessions, most recently used first."""
        return (
            self.db_session.query(ShopSession)
            .filter(
                ShopSession.shop_id == shop_id,
                ShopSession.is_active.is_(True),
            )
            .order_by(ShopSession.last_accessed_at.desc(), ShopSession.id.desc())
            .all()
        )

    def most_recent_active_for_shop(self, shop_id: int) -> Optional[ShopSession]:
        sessions = self.list_active_for_shop(shop_id)
        return sessions[0] if sessions else None

    def list_expired_active(self, now: datetime) -> List[ShopSession]:
        return (
            self.db_session.query(ShopSession)
            .filter(
                ShopSession.is_active.is_(True),
                ShopSession.expires_at.isnot(None),
                ShopSession.expires_at < now,
            )
            .all()
        )

    def list_stale_active(self, cutoff: datetime) -> List[ShopSession]:
        """Active sessions not accessed since the cutoff."""
        return (
            self.db_session.query(ShopSession)
            .filter(
                ShopSession.is_active.is_(True),
                ShopSession.last_accessed_at < cutoff,
            )
            .all()
        )

    def delete_inactive_older_than(self, cutoff: datetime) -> int:
        result = self.db_session.execute(
            delete(ShopSession)
            .where(
                ShopSession.is_active.is_(False),
                ShopSession.updated_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
