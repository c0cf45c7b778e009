"""
Application constants to replace magic numbers throughout the codebase.
"""
from datetime import datetime, timezone

# Transaction kinds (Form 4 transaction codes)
TRANSACTION_PURCHASE = 'P'
TRANSACTION_SALE = 'S'
TRANSACTION_AWARD = 'A'
TRANSACTION_DISPOSITION = 'D'
VALID_TRANSACTION_CODES = frozenset({
    TRANSACTION_PURCHASE,
    TRANSACTION_SALE,
    TRANSACTION_AWARD,
    TRANSACTION_DISPOSITION,
})

# Decision actions
ACTION_BUY = 'BUY'
ACTION_SELL = 'SELL'
ACTION_HOLD = 'HOLD'

# Recommendation statuses
STATUS_PENDING = 'PENDING'
STATUS_APPROVED = 'APPROVED'
STATUS_REJECTED = 'REJECTED'
STATUS_EXPIRED = 'EXPIRED'
STATUS_EXECUTED = 'EXECUTED'

# Scheduled job callbacks
CALLBACK_EXPIRE_RECOMMENDATION = 'expire_recommendation'
CALLBACK_RUN_PIPELINE = 'run_pipeline'

# Signal processing limits
DEFAULT_SIGNAL_LIMIT = 10
CLUSTER_WINDOW_DAYS = 5
MAX_SCORE = 100

# Scheduler
SCHEDULE_LEASE_SECONDS = 300
SCHEDULE_MAX_ATTEMPTS = 5

# Notification text limits
ERROR_PREVIEW_CHARS = 300
LLM_PREVIEW_CHARS = 400

# API timeouts
API_TIMEOUT_SHORT = 5
API_TIMEOUT_MEDIUM = 30
API_TIMEOUT_LONG = 120

# Database query limits
DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 500

# Scheduled job kinds and statuses
JOB_KIND_DELAY = 'delay'
JOB_KIND_CRON = 'cron'
JOB_ACTIVE = 'ACTIVE'
JOB_DONE = 'DONE'
JOB_CANCELLED = 'CANCELLED'
JOB_FAILED = 'FAILED'

def utcnow() -> datetime:
    """Naive UTC timestamp, matching how TIMESTAMP columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
