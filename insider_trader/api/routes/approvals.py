"""
Approval link endpoints.
Targets of the Approve / Reject buttons on the chat approval card.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from insider_trader.api.dependencies import get_recommendation_manager
from insider_trader.core.recommendation_manager import RecommendationManager

router = APIRouter()

def _missing_id() -> PlainTextResponse:
    return PlainTextResponse("Missing required query parameter: id", status_code=400)

@router.get("/approve", response_class=PlainTextResponse)
def approve(
    id: Optional[str] = Query(None, description="Recommendation id"),
    manager: RecommendationManager = Depends(get_recommendation_manager)
):
    """Approve a pending recommendation and place its order."""
    if not id or not id.strip():
        return _missing_id()
    result = manager.approve(id.strip())
    return PlainTextResponse(result.message, status_code=result.status_code)

@router.get("/reject", response_class=PlainTextResponse)
def reject(
    id: Optional[str] = Query(None, description="Recommendation id"),
    manager: RecommendationManager = Depends(get_recommendation_manager)
):
    """Reject a pending recommendation."""
    if not id or not id.strip():
        return _missing_id()
    result = manager.reject(id.strip())
    return PlainTextResponse(result.message, status_code=result.status_code)
