"""
Notification model.

Notifications belong to a shop and optionally to a single browser session.
A NULL session_id makes the notification shop-wide: every session of the
shop sees it. Soft-deleted rows stay in the table but are excluded from
all reads.
"""

from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from storesight.db_base import Base
from storesight.models.base import generate_uuid, utcnow


DEFAULT_TYPE = "info"
DEFAULT_CATEGORY = "General"
DEFAULT_SCOPE = "personal"
SHOP_SCOPE = "shop"


class Notification(Base):
    """In-app notification for a shop or one of its sessions."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    shop = Column(String(255), nullable=False, index=True, comment="Shop domain")
    session_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Owning session; NULL means visible to every session of the shop"
    )

    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False, default=DEFAULT_TYPE)
    category = Column(String(100), nullable=False, default=DEFAULT_CATEGORY)
    scope = Column(String(50), nullable=False, default=DEFAULT_SCOPE)

    read = Column(Boolean, nullable=False, default=False)
    deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_notifications_shop_session", "shop", "session_id"),
        Index("ix_notifications_shop_deleted_created", "shop", "deleted", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, shop={self.shop}, "
            f"session_id={self.session_id}, read={self.read}, deleted={self.deleted})>"
        )

    @property
    def is_shop_wide(self) -> bool:
        return self.session_id is None

    def belongs_to_session(self, session_id: Optional[str]) -> bool:
        return session_id is not None and session_id == self.session_id

    def is_visible_to(self, session_id: Optional[str]) -> bool:
        """Shop-wide notifications are visible to every session."""
        return self.is_shop_wide or self.belongs_to_session(session_id)

    def mark_read(self) -> None:
        self.read = True

    def soft_delete(self) -> None:
        self.deleted = True
        self.deleted_at = utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message": self.message,
            "type": self.type,
            "read": self.read,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "category": self.category,
            "shop": self.shop,
            "sessionId": self.session_id,
            "scope": self.scope,
            "shopWide": self.is_shop_wide,
        }
