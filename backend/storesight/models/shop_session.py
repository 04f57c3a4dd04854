"""
ShopSession model.

Each browser session that completes OAuth gets its own row with its own
access token, so one merchant can be logged in from several devices at once.

Lifecycle: created -> active -> (expired | deactivated) -> purged by cleanup.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from storesight.db_base import Base
from storesight.models.base import TimestampMixin, as_utc, utcnow


class ShopSession(Base, TimestampMixin):
    """Per-browser-session access token for a shop."""

    __tablename__ = "shop_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    shop_id = Column(
        Integer,
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    session_id = Column(String(255), nullable=False, unique=True, index=True)
    access_token = Column(String(500), nullable=False)
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 max length

    last_accessed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Last request served with this session; last write wins"
    )
    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="NULL means the session never expires on its own"
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    shop = relationship("Shop", back_populates="sessions")

    __table_args__ = (
        Index("ix_shop_sessions_shop_active", "shop_id", "is_active"),
        Index("ix_shop_sessions_active_last_accessed", "is_active", "last_accessed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ShopSession(id={self.id}, shop_id={self.shop_id}, "
            f"session_id={self.session_id}, is_active={self.is_active})>"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True only when an expiry is set and has passed."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) > as_utc(self.expires_at)

    def mark_as_accessed(self) -> None:
        self.last_accessed_at = utcnow()

    def deactivate(self) -> None:
        self.is_active = False
