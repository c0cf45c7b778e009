"""
Filing scan step: ingest, persist, score.
"""
import uuid
from datetime import date
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from insider_trader.core.signal_scorer import ScoredSignal, SignalScorer
from insider_trader.data.sec_edgar import SECEdgarFetcher
from insider_trader.data.transformers import TransactionRecord
from insider_trader.models.signals import Signal
from insider_trader.models.transactions import InsiderTransaction
from insider_trader.utils.exceptions import FilingSourceError
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics
from config.settings import get_settings, get_data_sources_config

logger = get_logger(__name__)

class FilingScanner:
    """
    Two-tier lookback scan.

    Queries yesterday's filings first; when they hold no purchases (weekends,
    holidays) the window is widened to three days. If the widened query
    fails, the one-day result is kept.
    """

    def __init__(self, db: Session, fetcher: Optional[SECEdgarFetcher] = None, settings=None,
                 primary_lookback_days: Optional[int] = None, fallback_lookback_days: Optional[int] = None):
        self.db = db
        self.fetcher = fetcher or SECEdgarFetcher()
        self.settings = settings or get_settings()
        config = get_data_sources_config()['sec_edgar']
        self.primary_lookback_days = primary_lookback_days or config.get('primary_lookback_days', 1)
        self.fallback_lookback_days = fallback_lookback_days or config.get('fallback_lookback_days', 3)

    def fetch(self, today: Optional[date] = None):
        """
        Returns:
            (records, lookback_days actually used)

        Raises:
            FilingSourceError: the primary query failed
        """
        records = self.fetcher.fetch_transactions(self.primary_lookback_days, today)
        if any(r.is_purchase for r in records):
            return records, self.primary_lookback_days

        logger.info(
            "No purchases in primary window, widening",
            primary_days=self.primary_lookback_days,
            fallback_days=self.fallback_lookback_days
        )
        try:
            return self.fetcher.fetch_transactions(self.fallback_lookback_days, today), self.fallback_lookback_days
        except FilingSourceError as e:
            logger.warning("Widened query failed, keeping primary result", error=str(e))
            return records, self.primary_lookback_days

    def scan(self, today: Optional[date] = None) -> List[ScoredSignal]:
        """Fetch, persist and score one batch. Persisted signals carry their signal_id."""
        records, lookback_days = self.fetch(today)
        self._store_transactions(records, lookback_days)

        signals = SignalScorer(today=today).score_batch(records, limit=self.settings.SIGNAL_LIMIT)
        metrics.record_signals_scored(len(signals))

        for signal in signals:
            self._store_signal(signal)

        logger.info(
            "Scan complete",
            lookback_days=lookback_days,
            transactions=len(records),
            signals=len(signals),
            persisted=sum(1 for s in signals if s.signal_id)
        )
        return signals

    def _store_transactions(self, records: List[TransactionRecord], lookback_days: int):
        if not records:
            return
        try:
            self.db.add_all([
                InsiderTransaction(
                    accession_number=r.accession_number,
                    lookback_days=lookback_days,
                    ticker=r.ticker,
                    insider_name=r.insider_name,
                    insider_role=r.insider_role,
                    transaction_date=r.transaction_date,
                    transaction_code=r.transaction_code,
                    shares=r.shares,
                    price=r.price,
                    transaction_value=r.transaction_value
                )
                for r in records
            ])
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Transaction log write failed", count=len(records), error=str(e))

    def _store_signal(self, signal: ScoredSignal):
        """One transaction per signal, so one bad row does not drop the rest."""
        r = signal.record
        b = signal.breakdown
        signal_id = uuid.uuid4().hex
        try:
            self.db.add(Signal(
                signal_id=signal_id,
                ticker=r.ticker,
                insider_name=r.insider_name,
                insider_role=r.insider_role,
                transaction_date=r.transaction_date,
                shares=r.shares,
                price=r.price,
                transaction_value=r.transaction_value,
                role_factor=b.role_factor,
                value_factor=b.value_factor,
                cluster_bonus=b.cluster_bonus,
                recency_factor=b.recency_factor,
                raw_score=b.raw_score,
                capped=b.capped,
                score=signal.score,
                breakdown_summary=signal.breakdown_summary
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Signal write failed", ticker=r.ticker, insider=r.insider_name, error=str(e))
            return
        signal.signal_id = signal_id
