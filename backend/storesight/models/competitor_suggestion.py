"""
Competitor suggestion model.

A candidate competitor listing discovered for one of the shop's products.
Merchants approve a suggestion to start tracking it, or ignore it.
"""

import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from storesight.db_base import Base
from storesight.models.base import TimestampMixin, utcnow


class SuggestionSource(str, enum.Enum):
    """Where the suggestion was discovered."""
    GOOGLE_SHOPPING = "GOOGLE_SHOPPING"
    BING_SHOPPING = "BING_SHOPPING"
    ETSY = "ETSY"
    AMAZON = "AMAZON"
    MANUAL = "MANUAL"


class SuggestionStatus(str, enum.Enum):
    """Merchant review state."""
    NEW = "NEW"
    APPROVED = "APPROVED"
    IGNORED = "IGNORED"


class CompetitorSuggestion(Base, TimestampMixin):
    """Candidate competitor URL for a shop product."""

    __tablename__ = "competitor_suggestions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    suggested_url = Column(Text, nullable=False)
    title = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)

    source = Column(
        Enum(SuggestionSource, native_enum=False, length=50),
        nullable=False,
        default=SuggestionSource.GOOGLE_SHOPPING,
    )
    status = Column(
        Enum(SuggestionStatus, native_enum=False, length=20),
        nullable=False,
        default=SuggestionStatus.NEW,
    )
    discovered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "shop_id", "product_id", "suggested_url",
            name="uq_competitor_suggestions_shop_product_url",
        ),
        Index("ix_competitor_suggestions_shop_status", "shop_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<CompetitorSuggestion(id={self.id}, shop_id={self.shop_id}, "
            f"status={self.status.value if self.status else None})>"
        )

    def approve(self) -> None:
        self.status = SuggestionStatus.APPROVED

    def ignore(self) -> None:
        self.status = SuggestionStatus.IGNORED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "suggestedUrl": self.suggested_url,
            "title": self.title,
            "price": float(self.price) if self.price is not None else None,
            "source": self.source.value if self.source else None,
            "discoveredAt": self.discovered_at.isoformat() if self.discovered_at else None,
            "status": self.status.value if self.status else None,
        }
