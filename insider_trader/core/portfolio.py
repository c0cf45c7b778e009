"""
Portfolio state used by the decision step.
Live holdings come from the broker; the entry thesis for each holding comes
from the executed-position history in the database.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from insider_trader.execution.base_broker import BaseBroker, BrokerPosition
from insider_trader.models.positions import Position
from insider_trader.models.recommendations import Recommendation
from insider_trader.models.signals import Signal
from insider_trader.utils.constants import ACTION_BUY, STATUS_APPROVED, STATUS_EXECUTED
from insider_trader.utils.logging import get_logger

logger = get_logger(__name__)

@dataclass
class PositionThesis:
    """Why a held position was entered."""
    ticker: str
    qty: float
    entry_price: Optional[float]
    notional: Optional[float]
    executed_at: datetime
    recommendation_id: str
    original_reasoning: str
    stop_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    insider_name: Optional[str] = None
    insider_role: Optional[str] = None
    signal_value: Optional[float] = None
    signal_score: Optional[int] = None

@dataclass
class PortfolioSnapshot:
    """Everything the decision step knows about the account for one run."""
    positions: List[BrokerPosition] = field(default_factory=list)
    buying_power: float = 0.0
    theses: List[PositionThesis] = field(default_factory=list)
    prices: Dict[str, float] = field(default_factory=dict)

    @property
    def held_tickers(self) -> set:
        return {p.symbol for p in self.positions}

    def position(self, ticker: str) -> Optional[BrokerPosition]:
        for p in self.positions:
            if p.symbol == ticker:
                return p
        return None

    def thesis_by_ticker(self) -> Dict[str, PositionThesis]:
        """Most recent thesis per ticker."""
        result = {}
        for thesis in self.theses:
            result.setdefault(thesis.ticker, thesis)
        return result

def get_positions_with_thesis(db: Session) -> List[PositionThesis]:
    """
    Executed entries of approved recommendations, with the recommendation's
    reasoning and, where still linked, the originating signal. Newest first.
    """
    rows = (
        db.query(Position, Recommendation, Signal)
        .join(Recommendation, Recommendation.rec_id == Position.recommendation_id)
        .outerjoin(Signal, Signal.signal_id == Recommendation.signal_id)
        .filter(Recommendation.status.in_([STATUS_APPROVED, STATUS_EXECUTED]))
        .filter(Position.side == ACTION_BUY)
        .order_by(Position.executed_at.desc(), Position.id.desc())
        .all()
    )

    return [
        PositionThesis(
            ticker=position.ticker,
            qty=position.qty,
            entry_price=position.price,
            notional=position.notional,
            executed_at=position.executed_at,
            recommendation_id=rec.rec_id,
            original_reasoning=rec.reasoning,
            stop_price=rec.stop_price,
            take_profit_price=rec.take_profit_price,
            insider_name=signal.insider_name if signal else None,
            insider_role=signal.insider_role if signal else None,
            signal_value=signal.transaction_value if signal else None,
            signal_score=signal.score if signal else None
        )
        for position, rec, signal in rows
    ]

def _safely(label: str, fn, default):
    try:
        return fn()
    except Exception as e:
        logger.error("Portfolio lookup failed, using default", lookup=label, error=str(e))
        return default

def load_portfolio_snapshot(broker: BaseBroker, db: Session) -> PortfolioSnapshot:
    """
    Fetch positions, buying power and stored theses concurrently.
    Each lookup degrades to an empty or zero default on failure.
    """
    with ThreadPoolExecutor(max_workers=3) as executor:
        positions_future = executor.submit(_safely, 'positions', broker.get_positions, [])
        buying_power_future = executor.submit(_safely, 'buying_power', broker.get_buying_power, 0.0)
        theses_future = executor.submit(_safely, 'theses', lambda: get_positions_with_thesis(db), [])

        positions = positions_future.result()
        buying_power = buying_power_future.result()
        theses = theses_future.result()

    symbols = [p.symbol for p in positions]
    prices = _safely('prices', lambda: broker.get_latest_prices(symbols), {}) if symbols else {}

    logger.info(
        "Portfolio snapshot loaded",
        positions=len(positions),
        priced=len(prices),
        buying_power=buying_power,
        theses=len(theses)
    )
    return PortfolioSnapshot(
        positions=positions,
        buying_power=buying_power,
        theses=theses,
        prices=prices
    )
