"""
Competitor suggestion routes.

The shop is resolved from the `shop` cookie to its database id; suggestions
of other shops are reported as not found.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storesight.api.dependencies import get_competitor_service, get_current_shop
from storesight.database.session import get_db_session
from storesight.models.competitor_suggestion import SuggestionStatus
from storesight.repositories.shop_repo import ShopRepository
from storesight.services.competitor_service import CompetitorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/competitors", tags=["competitors"])


def get_current_shop_id(request: Request, db: Session = Depends(get_db_session)) -> Optional[int]:
    domain = get_current_shop(request)
    if not domain:
        return None
    shop = ShopRepository(db).get_by_domain(domain)
    return shop.id if shop else None


def _auth_required() -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Authentication required"})


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Suggestion not found"})


@router.get("/suggestions")
async def list_suggestions(
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1, le=100),
    status: str = Query(SuggestionStatus.NEW.value),
    shop_id: Optional[int] = Depends(get_current_shop_id),
    service: CompetitorService = Depends(get_competitor_service),
):
    if shop_id is None:
        return _auth_required()

    try:
        wanted = SuggestionStatus(status.strip().upper())
    except ValueError:
        return JSONResponse(status_code=400, content={"error": f"Invalid status: {status}"})

    return service.list_suggestions(shop_id, wanted, page, size)


@router.get("/suggestions/count")
async def suggestion_count(
    shop_id: Optional[int] = Depends(get_current_shop_id),
    service: CompetitorService = Depends(get_competitor_service),
):
    if shop_id is None:
        return _auth_required()
    return {"newSuggestions": service.get_new_count(shop_id)}


@router.post("/suggestions/refresh-count")
async def refresh_suggestion_count(
    shop_id: Optional[int] = Depends(get_current_shop_id),
    service: CompetitorService = Depends(get_competitor_service),
):
    """Drop the cached badge count so the next poll reads the database."""
    if shop_id is None:
        return _auth_required()
    service.refresh_count(shop_id)
    return {"message": "Suggestion count cache refreshed"}


@router.post("/suggestions/{suggestion_id}/approve")
async def approve_suggestion(
    suggestion_id: int,
    shop_id: Optional[int] = Depends(get_current_shop_id),
    service: CompetitorService = Depends(get_competitor_service),
):
    if shop_id is None:
        return _auth_required()
    if service.approve(shop_id, suggestion_id) is None:
        return _not_found()
    return {"message": "Suggestion approved and now being tracked"}


@router.post("/suggestions/{suggestion_id}/ignore")
async def ignore_suggestion(
    suggestion_id: int,
    shop_id: Optional[int] = Depends(get_current_shop_id),
    service: CompetitorService = Depends(get_competitor_service),
):
    if shop_id is None:
        return _auth_required()
    if service.ignore(shop_id, suggestion_id) is None:
        return _not_found()
    return {"message": "Suggestion ignored"}
