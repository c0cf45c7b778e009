"""Position database model."""
from sqlalchemy import Column, String, Numeric, TIMESTAMP, Integer, ForeignKey
from insider_trader.models.base import Base
from insider_trader.utils.constants import utcnow

class Position(Base):
    """
    Executed trades, one row per filled approval.
    Append-only: live holdings come from the broker, this table keeps the
    link back to the recommendation that opened or closed them.
    """
    __tablename__ = 'positions'

    # Primary key
    id = Column(Integer, primary_key=True)
    ticker = Column(String(10), nullable=False, index=True)
    side = Column(String(5), nullable=False)

    # Fill details
    qty = Column(Numeric(asdecimal=False), nullable=False)
    price = Column(Numeric(asdecimal=False))
    notional = Column(Numeric(asdecimal=False))
    broker_order_id = Column(String(64))

    # Origin
    recommendation_id = Column(String(36), ForeignKey('recommendations.rec_id'), nullable=False, index=True)

    # Timestamps
    executed_at = Column(TIMESTAMP, nullable=False, default=utcnow)
