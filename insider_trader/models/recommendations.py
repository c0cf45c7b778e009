"""Recommendation database model."""
from sqlalchemy import Column, String, Numeric, TIMESTAMP, Integer, Text, ForeignKey
from insider_trader.models.base import Base
from insider_trader.utils.constants import STATUS_PENDING, utcnow

class Recommendation(Base):
    """
    Human-approvable trade proposal.

    Status moves forward only:
        PENDING -> APPROVED | REJECTED | EXPIRED
        APPROVED -> EXECUTED
    and is only ever changed through a conditional update on the current status.
    """
    __tablename__ = 'recommendations'

    # Primary key
    id = Column(Integer, primary_key=True)
    rec_id = Column(String(36), unique=True, nullable=False, index=True)

    # Proposal
    ticker = Column(String(10), nullable=False, index=True)
    action = Column(String(4), nullable=False)
    reasoning = Column(Text, nullable=False)
    signal_id = Column(String(64), ForeignKey('signals.signal_id'), nullable=True)
    notional = Column(Numeric(asdecimal=False), nullable=False)
    stop_price = Column(Numeric(asdecimal=False))
    take_profit_price = Column(Numeric(asdecimal=False))

    # State
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    resolved_at = Column(TIMESTAMP)
    executed_at = Column(TIMESTAMP)

    # Execution
    broker_order_id = Column(String(64))
    last_error = Column(Text)
