"""Scheduled job database model."""
from sqlalchemy import Column, String, TIMESTAMP, Integer, JSON, Text
from insider_trader.models.base import Base
from insider_trader.utils.constants import utcnow

class ScheduledJob(Base):
    """
    Durable timer entry. One-shot jobs (kind='delay') fire once at run_at;
    cron jobs (kind='cron') are advanced to their next fire time after each run.
    """
    __tablename__ = 'scheduled_jobs'

    # Primary key
    id = Column(Integer, primary_key=True)
    job_id = Column(String(32), unique=True, nullable=False, index=True)

    # What to run
    callback = Column(String(64), nullable=False, index=True)
    payload = Column(JSON)
    kind = Column(String(8), nullable=False)
    cron = Column(String(64))
    label = Column(String(255))

    # When to run
    run_at = Column(TIMESTAMP, nullable=False, index=True)
    locked_until = Column(TIMESTAMP)

    # State
    status = Column(String(12), nullable=False, default='ACTIVE', index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    last_run_at = Column(TIMESTAMP)

    # Timestamps
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)
