"""Insider transaction database model."""
from sqlalchemy import Column, String, Numeric, TIMESTAMP, Integer, Date
from insider_trader.models.base import Base
from insider_trader.utils.constants import utcnow

class InsiderTransaction(Base):
    """
    Append-only log of every transaction record parsed from a filing,
    purchases and non-purchases alike.
    """
    __tablename__ = 'insider_transactions'

    # Primary key
    id = Column(Integer, primary_key=True)

    # Source filing
    accession_number = Column(String(64), index=True)
    lookback_days = Column(Integer)

    # Transaction details
    ticker = Column(String(10), nullable=False, index=True)
    insider_name = Column(String(255), nullable=False)
    insider_role = Column(String(255))
    transaction_date = Column(Date, nullable=False, index=True)
    transaction_code = Column(String(1), nullable=False)
    shares = Column(Numeric(asdecimal=False))
    price = Column(Numeric(asdecimal=False))
    transaction_value = Column(Numeric(asdecimal=False))

    # Audit
    ingested_at = Column(TIMESTAMP, nullable=False, default=utcnow)
