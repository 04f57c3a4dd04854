"""
Notification store.

Notifications belong to a shop and optionally to one browser session.
Visibility for a (shop, session) read: the session's own notifications plus
shop-wide ones (session_id NULL), excluding soft-deleted rows, newest first.

A blank session id means the caller cannot be tied to a session: list reads
fall back to every live notification of the shop, while counts and
category reads return empty results.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from storesight.config.retention_policy import NotificationPolicy, get_retention_policy
from storesight.models.base import utcnow
from storesight.models.notification import (
    DEFAULT_CATEGORY,
    DEFAULT_SCOPE,
    DEFAULT_TYPE,
    SHOP_SCOPE,
    Notification,
)
from storesight.repositories.notification_repo import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationNotFoundError(Exception):
    """Raised when a notification id does not exist."""
    pass


class NotificationAccessError(Exception):
    """Raised when a notification is not visible to the caller's shop/session."""
    pass


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class NotificationService:
    """Create, read and clean up shop notifications."""

    def __init__(self, db_session: Session, policy: Optional[NotificationPolicy] = None):
        self.db = db_session
        self.policy = policy or get_retention_policy().notifications
        self.repo = NotificationRepository(db_session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_notifications(self, shop: str, session_id: Optional[str] = None) -> List[Notification]:
        if _blank(session_id):
            return self.repo.list_for_shop(shop)
        return self.repo.list_visible(shop, session_id)

    def get_notifications_with_cleanup(
        self, shop: str, session_id: Optional[str] = None
    ) -> List[Notification]:
        """Read, running the retention cleanup first if the list has grown too large."""
        notifications = self.get_notifications(shop, session_id)
        if len(notifications) > self.policy.cleanup_threshold:
            logger.info(
                "Notification count above threshold, running cleanup",
                extra={"shop": shop, "count": len(notifications)},
            )
            self.cleanup_old_notifications()
            notifications = self.get_notifications(shop, session_id)
        return notifications

    def get_unread_count(self, shop: str, session_id: Optional[str]) -> int:
        if _blank(session_id):
            return 0
        return self.repo.count_unread_visible(shop, session_id)

    def get_by_category(
        self, shop: str, category: str, session_id: Optional[str]
    ) -> List[Notification]:
        if _blank(session_id):
            return []
        return self.repo.list_visible_by_category(shop, category, session_id)

    def get_session_only(self, shop: str, session_id: str) -> List[Notification]:
        return self.repo.list_session_only(shop, session_id)

    def get_shop_wide(self, shop: str) -> List[Notification]:
        return self.repo.list_shop_wide(shop)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_notification(
        self,
        shop: str,
        message: str,
        type: Optional[str] = None,
        session_id: Optional[str] = None,
        category: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> Notification:
        """
        Create a notification.

        A blank session_id makes the notification shop-wide.
        """
        if _blank(message):
            raise ValueError("message is required")

        notification = Notification(
            shop=shop,
            message=message,
            type=type or DEFAULT_TYPE,
            session_id=None if _blank(session_id) else session_id,
            category=category or DEFAULT_CATEGORY,
            scope=scope or DEFAULT_SCOPE,
            read=False,
            deleted=False,
        )
        self.repo.add(notification)
        self.db.commit()

        logger.info(
            "Notification created",
            extra={
                "notification_id": notification.id,
                "shop": shop,
                "session_id": notification.session_id,
                "category": notification.category,
            },
        )
        return notification

    def create_shop_wide_notification(
        self,
        shop: str,
        message: str,
        type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Notification:
        return self.create_notification(
            shop, message, type=type, session_id=None, category=category, scope=SHOP_SCOPE
        )

    def _get_accessible(
        self, shop: str, notification_id: str, session_id: Optional[str]
    ) -> Notification:
        notification = self.repo.get_by_id(notification_id)
        if notification is None or notification.deleted:
            raise NotificationNotFoundError(f"Notification not found: {notification_id}")

        if notification.shop != shop:
            logger.warning(
                "Notification shop mismatch",
                extra={"notification_id": notification_id, "shop": shop},
            )
            raise NotificationAccessError("Notification does not belong to this shop")

        if not notification.is_visible_to(None if _blank(session_id) else session_id):
            logger.warning(
                "Notification session mismatch",
                extra={"notification_id": notification_id, "session_id": session_id},
            )
            raise NotificationAccessError("Notification does not belong to this session")

        return notification

    def mark_as_read(self, shop: str, notification_id: str, session_id: Optional[str] = None) -> Notification:
        notification = self._get_accessible(shop, notification_id, session_id)
        notification.mark_read()
        self.db.commit()
        return notification

    def delete_notification(self, shop: str, notification_id: str, session_id: Optional[str] = None) -> None:
        """Hard delete."""
        notification = self._get_accessible(shop, notification_id, session_id)
        self.repo.delete(notification)
        self.db.commit()
        logger.info("Notification deleted", extra={"notification_id": notification_id, "shop": shop})

    def soft_delete_notification(
        self, shop: str, notification_id: str, session_id: Optional[str] = None
    ) -> Notification:
        """Mark deleted; the row stays for audit history but disappears from reads."""
        notification = self._get_accessible(shop, notification_id, session_id)
        notification.soft_delete()
        self.db.commit()
        logger.info(
            "Notification soft-deleted",
            extra={"notification_id": notification_id, "shop": shop},
        )
        return notification

    def delete_session_notifications(self, session_id: str) -> int:
        deleted = self.repo.delete_by_session_id(session_id)
        self.db.commit()
        return deleted

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_old_notifications(self) -> int:
        """
        Apply the retention policy.

        Deletes notifications older than retention_days, then trims each
        shop to at most max_read_per_shop read and max_unread_per_shop
        unread notifications, dropping the oldest first.

        Returns:
            Number of notifications deleted
        """
        if not self.policy.cleanup_enabled:
            logger.info("Notification cleanup disabled")
            return 0

        cutoff = utcnow() - timedelta(days=self.policy.retention_days)
        deleted = self.repo.delete_created_before(cutoff)

        for shop in self.repo.distinct_shops():
            read = self.repo.list_read_for_shop(shop)
            if len(read) > self.policy.max_read_per_shop:
                excess = [n.id for n in read[self.policy.max_read_per_shop:]]
                deleted += self.repo.delete_by_ids(excess)

            unread = self.repo.list_unread_for_shop(shop)
            if len(unread) > self.policy.max_unread_per_shop:
                excess = [n.id for n in unread[self.policy.max_unread_per_shop:]]
                deleted += self.repo.delete_by_ids(excess)

        self.db.commit()
        # Bulk deletes bypass the identity map
        self.db.expire_all()

        logger.info("Notification cleanup completed", extra={"deleted": deleted})
        return deleted
