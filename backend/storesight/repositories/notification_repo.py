"""
Notification queries.

Visibility rule for a (shop, session) read: rows of the shop whose
session_id equals the session OR is NULL (shop-wide), never soft-deleted,
newest first. Every list and count in this module excludes deleted rows.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, or_
from sqlalchemy.orm import Query, Session

from storesight.models.notification import Notification


class NotificationRepository:
    """Queries over the notifications table."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def _live(self, shop: str) -> Query:
        return self.db_session.query(Notification).filter(
            Notification.shop == shop,
            Notification.deleted.is_(False),
        )

    def _visible(self, shop: str, session_id: str) -> Query:
        return self._live(shop).filter(
            or_(
                Notification.session_id == session_id,
                Notification.session_id.is_(None),
            )
        )

    @staticmethod
    def _newest_first(query: Query) -> Query:
        return query.order_by(Notification.created_at.desc(), Notification.id.desc())

    def get_by_id(self, notification_id: str) -> Optional[Notification]:
        return self.db_session.get(Notification, notification_id)

    def add(self, notification: Notification) -> Notification:
        self.db_session.add(notification)
        self.db_session.flush()
        return notification

    def list_for_shop(self, shop: str) -> List[Notification]:
        return self._newest_first(self._live(shop)).all()

    def list_visible(self, shop: str, session_id: str) -> List[Notification]:
        return self._newest_first(self._visible(shop, session_id)).all()

    def list_session_only(self, shop: str, session_id: str) -> List[Notification]:
        query = self._live(shop).filter(Notification.session_id == session_id)
        return self._newest_first(query).all()

    def list_shop_wide(self, shop: str) -> List[Notification]:
        query = self._live(shop).filter(Notification.session_id.is_(None))
        return self._newest_first(query).all()

    def count_unread_visible(self, shop: str, session_id: str) -> int:
        return (
            self._visible(shop, session_id)
            .filter(Notification.read.is_(False))
            .with_entities(func.count(Notification.id))
            .scalar()
            or 0
        )

    def list_visible_by_category(
        self, shop: str, category: str, session_id: str
    ) -> List[Notification]:
        query = self._visible(shop, session_id).filter(Notification.category == category)
        return self._newest_first(query).all()

    def list_read_for_shop(self, shop: str) -> List[Notification]:
        query = self._live(shop).filter(Notification.read.is_(True))
        return self._newest_first(query).all()

    def list_unread_for_shop(self, shop: str) -> List[Notification]:
        query = self._live(shop).filter(Notification.read.is_(False))
        return self._newest_first(query).all()

    def distinct_shops(self) -> List[str]:
        rows = self.db_session.query(Notification.shop).distinct().all()
        return [row[0] for row in rows]

    def delete(self, notification: Notification) -> None:
        self.db_session.delete(notification)

    def delete_by_ids(self, ids: List[str]) -> int:
        if not ids:
            return 0
        result = self.db_session.execute(
            delete(Notification)
            .where(Notification.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def delete_by_session_id(self, session_id: str) -> int:
        result = self.db_session.execute(
            delete(Notification)
            .where(Notification.session_id == session_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def delete_created_before(self, cutoff: datetime) -> int:
        result = self.db_session.execute(
            delete(Notification)
            .where(Notification.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
