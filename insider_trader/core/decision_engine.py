"""
Decision orchestrator.

Merges scored signals with live portfolio state, asks the reasoning service
for BUY/SELL/HOLD decisions, validates its output and turns the actionable
ones into recommendations.
"""
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator
from sqlalchemy.orm import Session
from insider_trader.core.portfolio import PortfolioSnapshot, load_portfolio_snapshot
from insider_trader.core.signal_scorer import ScoredSignal, format_usd
from insider_trader.execution.base_broker import BaseBroker
from insider_trader.utils.constants import (
    ACTION_BUY, ACTION_HOLD, ACTION_SELL, ERROR_PREVIEW_CHARS, LLM_PREVIEW_CHARS, utcnow
)
from insider_trader.utils.exceptions import DecisionParseError, RecommendationPersistenceError
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics
from config.settings import get_settings

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a paper trading agent using SEC insider signals to make buy and sell decisions. "
    "You receive two sections of context:\n"
    "1. PORTFOLIO: currently held positions with live P&L, days held, and, crucially, "
    "the original thesis (why the position was entered and which insider triggered it).\n"
    "2. SIGNALS: new insider buy signals scored today.\n\n"
    "Decision rules:\n"
    "- BUY: only for tickers NOT already in the portfolio. Explain why the insider signal is compelling.\n"
    "  For every BUY you MUST include stopPrice and takeProfitPrice based on your assessment of the "
    "trade's risk/reward. Use the insider signal context, typical stock volatility, and the following "
    "guidelines as a starting point:\n"
    "    • stopPrice: entry price × (1 - stop_pct), where stop_pct is 5-12% depending on volatility.\n"
    "    • takeProfitPrice: entry price × (1 + target_pct), where target_pct is 10-25%.\n"
    "  Adjust these levels if the signal context suggests higher or lower conviction.\n"
    "- SELL: evaluate each held position against its original thesis. Recommend SELL if: "
    "(a) P&L has deteriorated significantly (worse than -10%), "
    "(b) the position has been held >30 days with no meaningful gain, or "
    "(c) the original insider thesis appears to have played out or been invalidated. "
    "Reference the original reasoning in your explanation.\n"
    "- HOLD: the thesis is intact and the position is within normal volatility.\n\n"
    "Output ONLY a JSON array, no prose outside the array:\n"
    '[{"action": "BUY"|"SELL"|"HOLD", "ticker": string, "reasoning": string, '
    '"notional"?: number, "qty"?: number, "stopPrice"?: number, "takeProfitPrice"?: number}]'
)

_FENCE = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')

class LlmDecision(BaseModel):
    """One decision as returned by the reasoning service, normalized."""
    action: Literal['BUY', 'SELL', 'HOLD']
    ticker: str = Field(min_length=1)
    reasoning: str = Field(min_length=1)
    notional: Optional[float] = Field(default=None, gt=0)
    qty: Optional[float] = Field(default=None, gt=0)
    stop_price: Optional[float] = Field(default=None, alias='stopPrice')
    take_profit_price: Optional[float] = Field(default=None, alias='takeProfitPrice')

    class Config:
        populate_by_name = True

    @field_validator('ticker')
    @classmethod
    def normalize_ticker(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError('ticker must not be blank')
        return value

    @field_validator('stop_price', 'take_profit_price')
    @classmethod
    def drop_non_positive(cls, value: Optional[float]) -> Optional[float]:
        # Zero or negative bracket levels mean "not provided"
        if value is None or value <= 0:
            return None
        return value

_DECISIONS = TypeAdapter(List[LlmDecision])

def extract_decisions(raw_text: str) -> List[LlmDecision]:
    """
    Pull the JSON array of decisions out of the reasoning service reply.

    The reply may be wrapped in a ```json fence and may carry prose around
    the array; everything from the first '[' to the last ']' is parsed.

    Raises:
        DecisionParseError: no array, invalid JSON, or a schema violation
    """
    fence = _FENCE.search(raw_text)
    candidate = fence.group(1).strip() if fence else raw_text

    start = candidate.find('[')
    end = candidate.rfind(']')
    if start == -1 or end == -1 or end <= start:
        raise DecisionParseError(
            f"Reasoning service did not return a JSON array. Preview: {raw_text[:ERROR_PREVIEW_CHARS]}"
        )

    try:
        parsed = json.loads(candidate[start:end + 1])
    except ValueError as e:
        raise DecisionParseError(
            f"Reasoning service output is not valid JSON: {e}\nPreview: {raw_text[:ERROR_PREVIEW_CHARS]}"
        ) from e

    try:
        return _DECISIONS.validate_python(parsed)
    except ValidationError as e:
        issues = "; ".join(
            f"[{'.'.join(str(p) for p in err['loc'])}] {err['msg']}" for err in e.errors()
        )
        raise DecisionParseError(f"Decision schema mismatch: {issues}") from e

# ---------- Context builders ----------

def build_portfolio_context(snapshot: PortfolioSnapshot, now: Optional[datetime] = None) -> str:
    """Buying power plus one block per open position with its original thesis."""
    now = now or utcnow()
    bp_line = f"Available buying power: ${snapshot.buying_power:,.2f}"
    if not snapshot.positions:
        return f"{bp_line}\nOpen Positions: none"

    theses = snapshot.thesis_by_ticker()
    lines = []
    for pos in snapshot.positions:
        price = snapshot.prices.get(pos.symbol)
        current = f"${price:.2f}" if price is not None else "N/A"
        pl_pct = pos.unrealized_pnl_pct * 100
        thesis = theses.get(pos.symbol)
        held = f"{(now - thesis.executed_at).days}" if thesis and thesis.executed_at else "?"

        lines.append(
            f"  {pos.symbol:<6}  entry=${pos.avg_entry_price:.2f}  current={current}"
            f"  P&L={'+' if pl_pct >= 0 else ''}{pl_pct:.2f}%  held={held}d"
        )
        if thesis:
            if thesis.insider_name:
                lines.append(
                    f"    Original signal: {thesis.insider_role} {thesis.insider_name} bought "
                    f"{format_usd(thesis.signal_value or 0)} (score={thesis.signal_score})"
                )
            lines.append(f"    Original reasoning: {thesis.original_reasoning}")

    return f"{bp_line}\nOpen Positions ({len(snapshot.positions)}):\n" + "\n".join(lines)

def build_signals_context(signals: List[ScoredSignal]) -> str:
    """Numbered signal list with each score breakdown."""
    if not signals:
        return "Insider Buy Signals: none"

    lines = []
    for i, signal in enumerate(signals, start=1):
        r = signal.record
        lines.append(
            f"  {i}. {r.ticker}  score={signal.score}  {r.insider_role}: {r.insider_name}"
            f"  {format_usd(r.transaction_value)} on {r.transaction_date.isoformat()}"
        )
        lines.append(f"     {signal.breakdown_summary}")
    return f"Insider Buy Signals ({len(signals)}):\n" + "\n".join(lines)

# ---------- Guard rules ----------

@dataclass
class RecommendationRequest:
    """An accepted decision, ready to become a PENDING recommendation."""
    ticker: str
    action: str
    reasoning: str
    notional: float
    signal_id: Optional[str] = None
    stop_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    current_price: Optional[float] = None

def plan_recommendations(
    decisions: List[LlmDecision],
    snapshot: PortfolioSnapshot,
    signals: List[ScoredSignal],
    default_notional: float
) -> List[RecommendationRequest]:
    """
    Apply guard rules in order and resolve notionals.

    HOLD is dropped, BUY of a held ticker is dropped, SELL of an unheld
    ticker is dropped, and BUY is dropped when its notional exceeds the
    buying power left after earlier BUYs of this run.
    """
    held = snapshot.held_tickers
    signal_id_by_ticker = {}
    for signal in signals:
        if signal.signal_id is not None:
            signal_id_by_ticker.setdefault(signal.ticker, signal.signal_id)
    # Weak link for decisions without a same-ticker signal
    fallback_signal_id = next((s.signal_id for s in signals if s.signal_id is not None), None)

    remaining_buying_power = snapshot.buying_power
    requests = []

    for decision in decisions:
        metrics.record_decision(decision.action)

        if decision.action == ACTION_HOLD:
            logger.info("HOLD, no action needed", ticker=decision.ticker)
            metrics.record_decision_skipped('hold')
            continue

        if decision.action == ACTION_BUY and decision.ticker in held:
            logger.info("Skipping BUY, already in portfolio", ticker=decision.ticker)
            metrics.record_decision_skipped('already_held')
            continue

        if decision.action == ACTION_SELL and decision.ticker not in held:
            logger.info("Skipping SELL, not in portfolio", ticker=decision.ticker)
            metrics.record_decision_skipped('not_held')
            continue

        current_price = snapshot.prices.get(decision.ticker)

        if decision.action == ACTION_BUY:
            notional = decision.notional or default_notional
            if notional > remaining_buying_power:
                logger.warning(
                    "Skipping BUY, notional exceeds remaining buying power",
                    ticker=decision.ticker,
                    notional=notional,
                    remaining_buying_power=remaining_buying_power
                )
                metrics.record_decision_skipped('insufficient_buying_power')
                continue
            remaining_buying_power -= notional
        else:
            position = snapshot.position(decision.ticker)
            if position.market_value:
                notional = position.market_value
            else:
                price = current_price or position.current_price or 0.0
                notional = position.quantity * price

        requests.append(RecommendationRequest(
            ticker=decision.ticker,
            action=decision.action,
            reasoning=decision.reasoning,
            notional=notional,
            signal_id=signal_id_by_ticker.get(decision.ticker, fallback_signal_id),
            stop_price=decision.stop_price,
            take_profit_price=decision.take_profit_price,
            current_price=current_price
        ))

    return requests

class DecisionEngine:
    """
    Runs one decision pass over a batch of scored signals.

    Sequence:
    1. Load the portfolio snapshot (three concurrent, fault-tolerant lookups)
    2. Render portfolio and signal contexts
    3. Invoke the reasoning service
    4. Parse and validate decisions (fatal on failure)
    5. Apply guard rules and create a recommendation per accepted decision
    """

    def __init__(self, db: Session, broker: BaseBroker, reasoning_client, recommendation_manager, settings=None):
        self.db = db
        self.broker = broker
        self.reasoning_client = reasoning_client
        self.recommendation_manager = recommendation_manager
        self.settings = settings or get_settings()

    def decide(self, signals: List[ScoredSignal]) -> list:
        """Returns the recommendations created in this run."""
        logger.info("Decision run started", signals=len(signals))

        snapshot = load_portfolio_snapshot(self.broker, self.db)
        portfolio_context = build_portfolio_context(snapshot)
        signals_context = build_signals_context(signals)

        raw_output = self.reasoning_client.invoke(SYSTEM_PROMPT, portfolio_context, signals_context)
        logger.info("Reasoning output received", preview=raw_output[:LLM_PREVIEW_CHARS])

        decisions = extract_decisions(raw_output)
        logger.info("Decisions parsed", count=len(decisions))

        requests = plan_recommendations(decisions, snapshot, signals, self.settings.POSITION_SIZE_USD)

        created = []
        for request in requests:
            try:
                created.append(self.recommendation_manager.create(request))
            except RecommendationPersistenceError as e:
                logger.error("Recommendation not created", ticker=request.ticker, action=request.action, error=str(e))

        logger.info("Decision run complete", decisions=len(decisions), recommendations=len(created))
        return created
