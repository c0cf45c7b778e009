"""Prometheus metrics exporters."""
from prometheus_client import Counter, Histogram, CollectorRegistry

# Create registry
registry = CollectorRegistry()

# ========== INGESTION METRICS ==========
filings_processed = Counter(
    'filings_processed_total',
    'Filing documents processed, by outcome',
    ['outcome'],
    registry=registry
)

transactions_ingested = Counter(
    'transactions_ingested_total',
    'Transaction records parsed from filings',
    ['transaction_code'],
    registry=registry
)

# ========== SIGNAL METRICS ==========
signals_scored = Counter(
    'signals_scored_total',
    'Total number of scored signals returned by the scorer',
    registry=registry
)

# ========== DECISION METRICS ==========
decisions_received = Counter(
    'decisions_received_total',
    'Decisions parsed from the reasoning service',
    ['action'],
    registry=registry
)

decisions_skipped = Counter(
    'decisions_skipped_total',
    'Decisions dropped by guard rules',
    ['reason'],
    registry=registry
)

# ========== RECOMMENDATION METRICS ==========
recommendations_created = Counter(
    'recommendations_created_total',
    'Recommendations created',
    ['action'],
    registry=registry
)

recommendation_transitions = Counter(
    'recommendation_transitions_total',
    'Recommendation status transitions',
    ['status', 'outcome'],
    registry=registry
)

# ========== ORDER METRICS ==========
orders_executed = Counter(
    'orders_executed_total',
    'Total number of orders submitted',
    ['side', 'status'],
    registry=registry
)

# ========== PIPELINE METRICS ==========
pipeline_runs = Counter(
    'pipeline_runs_total',
    'Pipeline runs, by outcome',
    ['outcome'],
    registry=registry
)

pipeline_duration = Histogram(
    'pipeline_run_seconds',
    'Wall time of one pipeline run',
    buckets=(5, 15, 30, 60, 120, 300, 600, 900),
    registry=registry
)

# ========== SCHEDULER METRICS ==========
schedule_jobs_dispatched = Counter(
    'schedule_jobs_dispatched_total',
    'Durable schedule jobs dispatched, by callback and outcome',
    ['callback', 'outcome'],
    registry=registry
)

# ========== HELPER FUNCTIONS ==========
def record_filing_processed(outcome: str):
    """Record one filing document outcome (ok / failed)."""
    filings_processed.labels(outcome=outcome).inc()

def record_transaction_ingested(transaction_code: str):
    """Record a parsed transaction record."""
    transactions_ingested.labels(transaction_code=transaction_code).inc()

def record_signals_scored(count: int):
    """Record scored signals."""
    signals_scored.inc(count)

def record_decision(action: str):
    """Record a decision received from the reasoning service."""
    decisions_received.labels(action=action).inc()

def record_decision_skipped(reason: str):
    """Record a decision dropped by a guard rule."""
    decisions_skipped.labels(reason=reason).inc()

def record_recommendation_created(action: str):
    """Record a new recommendation."""
    recommendations_created.labels(action=action).inc()

def record_transition(status: str, outcome: str):
    """Record a lifecycle transition attempt."""
    recommendation_transitions.labels(status=status, outcome=outcome).inc()

def record_order_executed(side: str, status: str):
    """Record an order submission."""
    orders_executed.labels(side=side, status=status).inc()

def record_pipeline_run(outcome: str, seconds: float):
    pipeline_runs.labels(outcome=outcome).inc()
    pipeline_duration.observe(seconds)

def record_job_dispatched(callback: str, outcome: str):
    schedule_jobs_dispatched.labels(callback=callback, outcome=outcome).inc()
