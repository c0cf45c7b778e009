"""
Multi-factor signal scoring engine.
Turns a batch of insider transactions into ranked purchase signals.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Set, Tuple
from insider_trader.data.transformers import TransactionRecord
from insider_trader.utils.constants import CLUSTER_WINDOW_DAYS, DEFAULT_SIGNAL_LIMIT, MAX_SCORE
from insider_trader.utils.logging import get_logger

logger = get_logger(__name__)

@dataclass(frozen=True)
class ScoreBreakdown:
    """The four additive factors behind a score."""
    role_factor: int
    value_factor: int
    cluster_bonus: int
    recency_factor: int
    raw_score: int
    capped: bool

@dataclass
class ScoredSignal:
    """A purchase transaction with its score. signal_id is attached once persisted."""
    record: TransactionRecord
    score: int
    breakdown: ScoreBreakdown
    breakdown_summary: str
    signal_id: Optional[str] = field(default=None, compare=False)

    @property
    def ticker(self) -> str:
        return self.record.ticker

def format_usd(value: float) -> str:
    """Compact dollar amount: $1.50M, $250K, $900."""
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.0f}K"
    return f"${value:.0f}"

class SignalScorer:
    """
    Scores insider purchases on a 0-100 scale.

    Scoring Process:
    1. Gate: only open-market purchases are scored
    2. Role: executive 40, director 25, other officer 15, unmatched 5
    3. Value: >$1M 20, >$100K 10, >$10K 5
    4. Cluster: +20 when a different insider bought the same ticker within 5 days
    5. Recency: +20 for today, +10 for yesterday (UTC)
    6. Cap at 100, sort descending, keep the top N

    Cluster detection is relative to the batch being scored, so the same
    record can score differently in a different batch.
    """

    # First match wins. Vice-president titles are folded to VP before matching,
    # so their "President" never reaches the executive pattern.
    VICE_PRESIDENT = re.compile(r'\bVICE[\s-]+PRES(?:IDENT)?\b', re.IGNORECASE)
    ROLE_PATTERNS = [
        (re.compile(
            r'\b(CEO|CHIEF\s+EXECUTIVE|CFO|CHIEF\s+FINANCIAL|PRESIDENT|COO'
            r'|CHIEF\s+OPERATING|CTO|CHIEF\s+TECHNOLOGY|CSO|CRO|CHAIRMAN)\b',
            re.IGNORECASE
        ), 40),
        (re.compile(r'\bDIRECTOR\b', re.IGNORECASE), 25),
        (re.compile(
            r'\b(VP|VICE[\s-]+PRES(?:IDENT)?|SVP|EVP|OFFICER|TREASURER|SECRETARY|CONTROLLER|COMPTROLLER)\b',
            re.IGNORECASE
        ), 15),
    ]
    DEFAULT_ROLE_POINTS = 5

    # (exclusive lower bound, points), highest first
    VALUE_TIERS = [
        (1_000_000, 20),
        (100_000, 10),
        (10_000, 5),
    ]

    CLUSTER_BONUS = 20
    RECENCY_TODAY = 20
    RECENCY_YESTERDAY = 10

    def __init__(self, today: Optional[date] = None):
        self.today = today or datetime.now(timezone.utc).date()

    def score_batch(self, records: Iterable[TransactionRecord], limit: int = DEFAULT_SIGNAL_LIMIT) -> List[ScoredSignal]:
        """
        Score a batch of transaction records.

        Args:
            records: Transaction records of any kind
            limit: Maximum number of signals to return

        Returns:
            Purchase signals sorted by score descending (ties keep input order)
        """
        purchases = [r for r in records if r.is_purchase]
        if not purchases:
            return []

        clustered = self._detect_clusters(purchases)
        signals = [self._build_signal(r, i in clustered) for i, r in enumerate(purchases)]

        # sorted() is stable, so equal scores keep batch order
        ranked = sorted(signals, key=lambda s: s.score, reverse=True)[:limit]

        logger.info(
            "Batch scored",
            purchases=len(purchases),
            clustered=len(clustered),
            returned=len(ranked),
            top_score=ranked[0].score
        )
        return ranked

    # ---------- Factors ----------

    def score_role(self, role: Optional[str]) -> int:
        text = self.VICE_PRESIDENT.sub('VP', role or '')
        for pattern, points in self.ROLE_PATTERNS:
            if pattern.search(text):
                return points
        return self.DEFAULT_ROLE_POINTS

    def score_value(self, transaction_value: float) -> int:
        for threshold, points in self.VALUE_TIERS:
            if transaction_value > threshold:
                return points
        return 0

    def score_recency(self, transaction_date: date) -> int:
        days_ago = (self.today - transaction_date).days
        if days_ago == 0:
            return self.RECENCY_TODAY
        if days_ago == 1:
            return self.RECENCY_YESTERDAY
        return 0

    @staticmethod
    def _detect_clusters(purchases: List[TransactionRecord]) -> Set[int]:
        """Indexes of records with a different-insider purchase of the same ticker nearby."""
        by_ticker = {}
        for index, record in enumerate(purchases):
            by_ticker.setdefault(record.ticker, []).append(index)

        clustered = set()
        for indexes in by_ticker.values():
            if len(indexes) < 2:
                continue
            for pos, i in enumerate(indexes):
                for j in indexes[pos + 1:]:
                    a, b = purchases[i], purchases[j]
                    if a.insider_name == b.insider_name:
                        continue
                    if abs((a.transaction_date - b.transaction_date).days) <= CLUSTER_WINDOW_DAYS:
                        clustered.add(i)
                        clustered.add(j)
        return clustered

    def _build_signal(self, record: TransactionRecord, in_cluster: bool) -> ScoredSignal:
        role_factor = self.score_role(record.insider_role)
        value_factor = self.score_value(record.transaction_value)
        cluster_bonus = self.CLUSTER_BONUS if in_cluster else 0
        recency_factor = self.score_recency(record.transaction_date)

        raw = role_factor + value_factor + cluster_bonus + recency_factor
        score = min(raw, MAX_SCORE)
        breakdown = ScoreBreakdown(
            role_factor=role_factor,
            value_factor=value_factor,
            cluster_bonus=cluster_bonus,
            recency_factor=recency_factor,
            raw_score=raw,
            capped=raw > MAX_SCORE
        )
        return ScoredSignal(
            record=record,
            score=score,
            breakdown=breakdown,
            breakdown_summary=self._summarize(record, breakdown, score)
        )

    @staticmethod
    def _summarize(record: TransactionRecord, breakdown: ScoreBreakdown, score: int) -> str:
        total = f"total={score}"
        if breakdown.capped:
            total += f" (capped from {breakdown.raw_score})"
        parts: Tuple[str, ...] = (
            f"role({record.insider_role})=+{breakdown.role_factor}",
            f"value({format_usd(record.transaction_value)})=+{breakdown.value_factor}",
            f"cluster={'+20' if breakdown.cluster_bonus else '0'}",
            f"recency({record.transaction_date.isoformat()})=+{breakdown.recency_factor}",
            total,
        )
        return " | ".join(parts)

def score_signals(
    records: Iterable[TransactionRecord],
    limit: int = DEFAULT_SIGNAL_LIMIT,
    today: Optional[date] = None
) -> List[ScoredSignal]:
    """Convenience wrapper around SignalScorer.score_batch."""
    return SignalScorer(today=today).score_batch(records, limit=limit)
