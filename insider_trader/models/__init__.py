"""Database models. Importing this package registers every table on Base.metadata."""
from insider_trader.models.base import Base
from insider_trader.models.transactions import InsiderTransaction
from insider_trader.models.signals import Signal
from insider_trader.models.recommendations import Recommendation
from insider_trader.models.positions import Position
from insider_trader.models.schedules import ScheduledJob
from insider_trader.models.audit_log import AuditLog

__all__ = [
    'Base',
    'InsiderTransaction',
    'Signal',
    'Recommendation',
    'Position',
    'ScheduledJob',
    'AuditLog',
]
