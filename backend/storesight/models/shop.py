"""
Shop model.

One row per installed Shopify store. The shop-level access_token is the
token from the most recent OAuth install; per-device tokens live on
ShopSession rows.
"""

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from storesight.db_base import Base
from storesight.models.base import TimestampMixin


class Shop(Base, TimestampMixin):
    """Installed Shopify store."""

    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, autoincrement=True)

    shopify_domain = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Shopify store domain (e.g., mystore.myshopify.com)"
    )

    access_token = Column(
        String(500),
        nullable=True,
        comment="Access token from the latest install; fallback when no session token exists"
    )

    sessions = relationship(
        "ShopSession",
        back_populates="shop",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Shop(id={self.id}, shopify_domain={self.shopify_domain})>"
