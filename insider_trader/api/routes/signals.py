"""
Signal endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import List, Optional
from pydantic import BaseModel
from datetime import date, datetime
from insider_trader.models.base import get_db
from insider_trader.models.signals import Signal
from insider_trader.utils.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT

router = APIRouter()

class SignalResponse(BaseModel):
    signal_id: str
    ticker: str
    insider_name: str
    insider_role: Optional[str]
    transaction_date: date
    transaction_value: Optional[float]
    role_factor: int
    value_factor: int
    cluster_bonus: int
    recency_factor: int
    capped: Optional[bool]
    score: int
    breakdown_summary: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True

@router.get("/", response_model=List[SignalResponse])
def list_signals(
    ticker: Optional[str] = Query(None, description="Filter by ticker"),
    min_score: Optional[int] = Query(None, ge=0, le=100, description="Minimum score"),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT, description="Maximum number of results"),
    db: Session = Depends(get_db)
):
    """
    List scored signals, newest first.
    """
    query = db.query(Signal)

    if ticker:
        query = query.filter(Signal.ticker == ticker.upper())
    if min_score is not None:
        query = query.filter(Signal.score >= min_score)

    return query.order_by(desc(Signal.created_at), desc(Signal.score)).limit(limit).all()

@router.get("/{signal_id}", response_model=SignalResponse)
def get_signal(signal_id: str, db: Session = Depends(get_db)):
    signal = db.query(Signal).filter(Signal.signal_id == signal_id).first()
    if not signal:
        raise HTTPException(status_code=404, detail="Signal not found")
    return signal
