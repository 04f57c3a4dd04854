"""Competitor suggestion queries."""

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from storesight.models.competitor_suggestion import CompetitorSuggestion, SuggestionStatus


class CompetitorSuggestionRepository:
    """Queries over the competitor_suggestions table."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_by_id(self, suggestion_id: int) -> Optional[CompetitorSuggestion]:
        return self.db_session.get(CompetitorSuggestion, suggestion_id)

    def page_by_shop_and_status(
        self,
        shop_id: int,
        status: SuggestionStatus,
        page: int,
        size: int,
    ) -> Tuple[List[CompetitorSuggestion], int]:
        """Return one page (newest discovery first) and the total match count."""
        query = self.db_session.query(CompetitorSuggestion).filter(
            CompetitorSuggestion.shop_id == shop_id,
            CompetitorSuggestion.status == status,
        )
        total = query.count()
        items = (
            query.order_by(
                CompetitorSuggestion.discovered_at.desc(),
                CompetitorSuggestion.id.desc(),
            )
            .offset(page * size)
            .limit(size)
            .all()
        )
        return items, total

    def count_by_shop_and_status(self, shop_id: int, status: SuggestionStatus) -> int:
        return (
            self.db_session.query(func.count(CompetitorSuggestion.id))
            .filter(
                CompetitorSuggestion.shop_id == shop_id,
                CompetitorSuggestion.status == status,
            )
            .scalar()
            or 0
        )
