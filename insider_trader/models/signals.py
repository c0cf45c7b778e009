"""Signal database model."""
from sqlalchemy import Column, String, Numeric, TIMESTAMP, Integer, Date, Boolean, Text
from insider_trader.models.base import Base
from insider_trader.utils.constants import utcnow

class Signal(Base):
    """
    Scored insider purchase signals.
    """
    __tablename__ = 'signals'

    # Primary key
    id = Column(Integer, primary_key=True)
    signal_id = Column(String(64), unique=True, nullable=False, index=True)

    # Filer information
    ticker = Column(String(10), nullable=False, index=True)
    insider_name = Column(String(255), nullable=False)
    insider_role = Column(String(255))
    transaction_date = Column(Date, nullable=False)

    # Transaction details
    shares = Column(Numeric(asdecimal=False))
    price = Column(Numeric(asdecimal=False))
    transaction_value = Column(Numeric(asdecimal=False))

    # Scoring factors
    role_factor = Column(Integer, nullable=False)
    value_factor = Column(Integer, nullable=False)
    cluster_bonus = Column(Integer, nullable=False)
    recency_factor = Column(Integer, nullable=False)
    raw_score = Column(Integer, nullable=False)
    capped = Column(Boolean, default=False)

    # Final score
    score = Column(Integer, nullable=False, index=True)
    breakdown_summary = Column(Text)

    # Audit
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
