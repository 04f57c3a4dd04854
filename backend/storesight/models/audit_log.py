"""
Privacy audit log model.

Records every access to merchant data for compliance reporting.
shop_id is nullable: when a shop is deleted its audit rows are kept and
shop_id is set to NULL, so history from uninstalled shops survives.
Rows are only removed by the retention job.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from storesight.db_base import Base
from storesight.models.base import utcnow


class AuditLog(Base):
    """Append-only data access record."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(
        Integer,
        ForeignKey("shops.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL when the shop has been deleted"
    )
    action = Column(String(100), nullable=False, index=True)
    details = Column(Text, nullable=True)
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_audit_logs_shop_created", "shop_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, shop_id={self.shop_id}, action={self.action})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "action": self.action,
            "details": self.details,
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
