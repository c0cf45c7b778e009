"""Hash-chained audit trail of recommendation lifecycle events."""
from sqlalchemy import Column, String, TIMESTAMP, Integer, JSON, Index
from insider_trader.models.base import Base
from insider_trader.utils.constants import utcnow

class AuditLog(Base):
    """
    Append-only. Each row carries the hash of the row before it, so a deleted
    or edited row breaks the chain (see utils.hashing.verify_audit_chain).
    """
    __tablename__ = 'audit_log'
    __table_args__ = (
        Index('ix_audit_log_entity', 'entity_type', 'entity_id'),
    )

    id = Column(Integer, primary_key=True)
    occurred_at = Column(TIMESTAMP, nullable=False, default=utcnow, index=True)

    # RECOMMENDATION_CREATED, RECOMMENDATION_APPROVED, ...
    event_type = Column(String(50), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)

    # human, scheduler or system
    actor = Column(String(20), nullable=False)
    transition = Column(String(120), nullable=False)

    before_state = Column(JSON)
    after_state = Column(JSON)

    event_hash = Column(String(64), nullable=False, unique=True)
    previous_hash = Column(String(64))
