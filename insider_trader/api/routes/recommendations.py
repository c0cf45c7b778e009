"""
Recommendation endpoints (read-only; status changes go through the approval links).
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime
from insider_trader.models.base import get_db
from insider_trader.models.recommendations import Recommendation
from insider_trader.utils.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT

router = APIRouter()

class RecommendationResponse(BaseModel):
    rec_id: str
    ticker: str
    action: str
    reasoning: str
    signal_id: Optional[str]
    notional: float
    stop_price: Optional[float]
    take_profit_price: Optional[float]
    status: str
    created_at: datetime
    resolved_at: Optional[datetime]
    executed_at: Optional[datetime]
    broker_order_id: Optional[str]
    last_error: Optional[str]

    class Config:
        from_attributes = True

@router.get("/", response_model=List[RecommendationResponse])
def list_recommendations(
    status: Optional[str] = Query(None, description="Filter by status (PENDING, APPROVED, REJECTED, EXPIRED, EXECUTED)"),
    ticker: Optional[str] = Query(None, description="Filter by ticker"),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT, description="Maximum number of results"),
    db: Session = Depends(get_db)
):
    query = db.query(Recommendation)

    if status:
        query = query.filter(Recommendation.status == status.upper())
    if ticker:
        query = query.filter(Recommendation.ticker == ticker.upper())

    return query.order_by(desc(Recommendation.created_at)).limit(limit).all()

@router.get("/{rec_id}", response_model=RecommendationResponse)
def get_recommendation(rec_id: str, db: Session = Depends(get_db)):
    rec = db.query(Recommendation).filter(Recommendation.rec_id == rec_id).first()
    if not rec:
        raise HTTPException(status_code=404, detail="Recommendation not found")
    return rec
