"""
Audit log queries.

Paged queries use zero-based pages and return newest entries first.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func
from sqlalchemy.orm import Query, Session

from storesight.models.audit_log import AuditLog


class AuditLogRepository:
    """Queries over the audit_logs table."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    @staticmethod
    def _page(query: Query, page: int, size: int) -> List[AuditLog]:
        return (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(page * size)
            .limit(size)
            .all()
        )

    def add(self, audit_log: AuditLog) -> AuditLog:
        self.db_session.add(audit_log)
        self.db_session.flush()
        return audit_log

    def _for_shop(self, shop_id: int, action: Optional[str] = None) -> Query:
        query = self.db_session.query(AuditLog).filter(AuditLog.shop_id == shop_id)
        if action:
            query = query.filter(func.lower(AuditLog.action) == action.lower())
        return query

    def list_for_shop(
        self, shop_id: int, page: int, size: int, action: Optional[str] = None
    ) -> List[AuditLog]:
        return self._page(self._for_shop(shop_id, action), page, size)

    def count_for_shop(self, shop_id: int, action: Optional[str] = None) -> int:
        return self._for_shop(shop_id, action).count()

    def list_for_shop_between(
        self, shop_id: int, start: datetime, end: datetime
    ) -> List[AuditLog]:
        return (
            self.db_session.query(AuditLog)
            .filter(
                AuditLog.shop_id == shop_id,
                AuditLog.created_at >= start,
                AuditLog.created_at < end,
            )
            .order_by(AuditLog.created_at.desc())
            .all()
        )

    def list_recent_for_shop(self, shop_id: int, since: datetime) -> List[AuditLog]:
        return (
            self.db_session.query(AuditLog)
            .filter(AuditLog.shop_id == shop_id, AuditLog.created_at >= since)
            .order_by(AuditLog.created_at.desc())
            .all()
        )

    def list_recent(self, since: datetime) -> List[AuditLog]:
        return (
            self.db_session.query(AuditLog)
            .filter(AuditLog.created_at >= since)
            .order_by(AuditLog.created_at.desc())
            .all()
        )

    def list_from_deleted_shops(self, page: int, size: int) -> List[AuditLog]:
        query = self.db_session.query(AuditLog).filter(AuditLog.shop_id.is_(None))
        return self._page(query, page, size)

    def list_from_active_shops(self, page: int, size: int) -> List[AuditLog]:
        query = self.db_session.query(AuditLog).filter(AuditLog.shop_id.isnot(None))
        return self._page(query, page, size)

    def list_all(self, page: int, size: int) -> List[AuditLog]:
        return self._page(self.db_session.query(AuditLog), page, size)

    def delete_older_than(self, cutoff: datetime) -> int:
        result = self.db_session.execute(
            delete(AuditLog)
            .where(AuditLog.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
