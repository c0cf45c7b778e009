"""
Tests for the decision orchestrator.

Covers:
  - extract_decisions: fenced and bare arrays, prose around the array,
    normalization of tickers and bracket levels, fatal parse failures
  - plan_recommendations: guard rules, buying power counter, SELL notional,
    signal linkage
  - DecisionEngine.decide: end to end against the paper broker
  - Context rendering
"""

from datetime import date, datetime

import pytest

from insider_trader.core.decision_engine import (
    DecisionEngine,
    LlmDecision,
    build_portfolio_context,
    build_signals_context,
    extract_decisions,
    plan_recommendations,
)
from insider_trader.core.portfolio import PortfolioSnapshot, PositionThesis
from insider_trader.core.recommendation_manager import RecommendationManager
from insider_trader.core.signal_scorer import score_signals
from insider_trader.execution.base_broker import BrokerPosition
from insider_trader.models.recommendations import Recommendation
from insider_trader.models.schedules import ScheduledJob
from insider_trader.utils.exceptions import DecisionParseError, RecommendationPersistenceError
from config.settings import get_settings
from tests.conftest import FakeReasoningClient


def _position(symbol="HELD", qty=100, entry=20.0, price=22.0) -> BrokerPosition:
    return BrokerPosition(
        symbol=symbol,
        quantity=qty,
        avg_entry_price=entry,
        market_value=qty * price,
        unrealized_pnl=(price - entry) * qty,
        unrealized_pnl_pct=(price - entry) / entry,
        current_price=price,
    )


def _decision(action, ticker, **kwargs) -> LlmDecision:
    return LlmDecision(action=action, ticker=ticker, reasoning=f"{action} {ticker}", **kwargs)


# ── Parsing ────────────────────────────────────────────────────────────────────

class TestExtractDecisions:
    def test_bare_array(self):
        decisions = extract_decisions('[{"action": "BUY", "ticker": "acme", "reasoning": "CEO buying"}]')
        assert decisions[0].action == "BUY"
        assert decisions[0].ticker == "ACME"

    def test_json_fence_with_prose(self):
        raw = (
            "Here are my decisions:\n```json\n"
            '[{"action": "SELL", "ticker": " xyz ", "reasoning": "thesis broken"}]\n'
            "```\nLet me know."
        )
        assert extract_decisions(raw)[0].ticker == "XYZ"

    def test_plain_fence(self):
        raw = '```\n[{"action": "HOLD", "ticker": "ABC", "reasoning": "intact"}]\n```'
        assert extract_decisions(raw)[0].action == "HOLD"

    def test_prose_around_unfenced_array(self):
        raw = 'Decisions: [{"action": "HOLD", "ticker": "ABC", "reasoning": "ok"}] done'
        assert len(extract_decisions(raw)) == 1

    def test_bracket_levels_use_camel_case_and_drop_non_positive(self):
        raw = (
            '[{"action": "BUY", "ticker": "A", "reasoning": "r", "stopPrice": 9.5, "takeProfitPrice": 12},'
            ' {"action": "BUY", "ticker": "B", "reasoning": "r", "stopPrice": 0, "takeProfitPrice": -1}]'
        )
        first, second = extract_decisions(raw)
        assert (first.stop_price, first.take_profit_price) == (9.5, 12.0)
        assert (second.stop_price, second.take_profit_price) == (None, None)

    def test_empty_array(self):
        assert extract_decisions("[]") == []

    @pytest.mark.parametrize("raw", [
        "I cannot decide today.",
        "[{not json}]",
        '[{"action": "SHORT", "ticker": "A", "reasoning": "r"}]',
        '[{"action": "BUY", "ticker": "   ", "reasoning": "r"}]',
        '[{"action": "BUY", "reasoning": "r"}]',
        '[{"action": "BUY", "ticker": "A", "reasoning": "r", "notional": -5}]',
        '{"action": "BUY", "ticker": "A", "reasoning": "r"}',
    ])
    def test_invalid_output_is_fatal(self, raw):
        with pytest.raises(DecisionParseError):
            extract_decisions(raw)


# ── Guard rules ────────────────────────────────────────────────────────────────

class TestPlanRecommendations:
    def test_hold_and_ownership_guards(self):
        snapshot = PortfolioSnapshot(positions=[_position("HELD")], buying_power=50_000)
        requests = plan_recommendations(
            [
                _decision("HOLD", "HELD"),
                _decision("BUY", "HELD"),
                _decision("SELL", "NOPE"),
                _decision("SELL", "HELD"),
                _decision("BUY", "NEW"),
            ],
            snapshot, [], default_notional=10_000,
        )
        assert [(r.action, r.ticker) for r in requests] == [("SELL", "HELD"), ("BUY", "NEW")]

    def test_buying_power_counter(self):
        snapshot = PortfolioSnapshot(buying_power=15_000)
        requests = plan_recommendations(
            [
                _decision("BUY", "AAA", notional=10_000),
                _decision("BUY", "BBB"),
                _decision("BUY", "CCC", notional=5_000),
                _decision("BUY", "DDD", notional=1),
            ],
            snapshot, [], default_notional=10_000,
        )
        # BBB exceeds the 5,000 left and does not decrement the counter
        assert [(r.ticker, r.notional) for r in requests] == [("AAA", 10_000), ("CCC", 5_000)]

    def test_sell_notional_is_market_value(self):
        snapshot = PortfolioSnapshot(positions=[_position("HELD", qty=100, price=22.0)])
        request = plan_recommendations([_decision("SELL", "HELD")], snapshot, [], 10_000)[0]
        assert request.notional == pytest.approx(2_200.0)

    def test_sell_without_market_value_uses_held_quantity(self):
        held = _position("HELD", qty=100, price=22.0)
        held.market_value = 0.0
        snapshot = PortfolioSnapshot(positions=[held], prices={"HELD": 25.0})
        request = plan_recommendations([_decision("SELL", "HELD", qty=10)], snapshot, [], 10_000)[0]
        assert request.notional == pytest.approx(2_500.0)

    def test_current_price_and_brackets_are_carried(self):
        snapshot = PortfolioSnapshot(buying_power=50_000, prices={"NEW": 40.0})
        request = plan_recommendations(
            [_decision("BUY", "NEW", stop_price=36.0, take_profit_price=48.0)], snapshot, [], 10_000
        )[0]
        assert request.current_price == 40.0
        assert (request.stop_price, request.take_profit_price) == (36.0, 48.0)

    def test_signal_linkage(self, make_record):
        signals = score_signals(
            [make_record(ticker="AAA", insider_name="A"), make_record(ticker="BBB", insider_name="B")],
            today=date(2026, 3, 17),
        )
        for s in signals:
            s.signal_id = f"sig-{s.ticker}"

        snapshot = PortfolioSnapshot(buying_power=100_000)
        requests = plan_recommendations(
            [_decision("BUY", "BBB"), _decision("BUY", "ZZZ")], snapshot, signals, 10_000
        )
        assert requests[0].signal_id == "sig-BBB"
        # No same-ticker signal: first persisted signal of the batch
        assert requests[1].signal_id == "sig-AAA"

    def test_unpersisted_signals_leave_no_link(self, make_record):
        signals = score_signals([make_record(ticker="AAA")], today=date(2026, 3, 17))
        requests = plan_recommendations([_decision("BUY", "AAA")], PortfolioSnapshot(buying_power=50_000), signals, 10_000)
        assert requests[0].signal_id is None


# ── Context rendering ──────────────────────────────────────────────────────────

class TestContexts:
    def test_empty_portfolio(self):
        text = build_portfolio_context(PortfolioSnapshot(buying_power=1234.5))
        assert "Available buying power: $1,234.50" in text
        assert "Open Positions: none" in text

    def test_position_with_thesis(self):
        thesis = PositionThesis(
            ticker="HELD", qty=100, entry_price=20.0, notional=2_000.0,
            executed_at=datetime(2026, 3, 1, 15, 0), recommendation_id="rec-1",
            original_reasoning="CEO bought $2M", insider_name="Jane Doe",
            insider_role="CEO", signal_value=2_000_000, signal_score=80,
        )
        snapshot = PortfolioSnapshot(
            positions=[_position("HELD")], buying_power=10_000, theses=[thesis], prices={"HELD": 22.0}
        )
        text = build_portfolio_context(snapshot, now=datetime(2026, 3, 17, 15, 0))
        assert "HELD" in text
        assert "held=16d" in text
        assert "P&L=+10.00%" in text
        assert "Original reasoning: CEO bought $2M" in text
        assert "CEO Jane Doe bought $2.00M (score=80)" in text

    def test_signals_context(self, make_record):
        signals = score_signals([make_record(ticker="AAA", insider_role="CEO")], today=date(2026, 3, 17))
        text = build_signals_context(signals)
        assert text.startswith("Insider Buy Signals (1):")
        assert "AAA" in text and "role(CEO)=+40" in text

    def test_no_signals(self):
        assert build_signals_context([]) == "Insider Buy Signals: none"


# ── End to end ─────────────────────────────────────────────────────────────────

class TestDecisionEngine:
    @pytest.fixture
    def manager(self, db, notifier):
        return RecommendationManager(db, notifier=notifier, settings=get_settings())

    def test_creates_recommendations_for_accepted_decisions(self, db, paper_broker, notifier, manager, make_record):
        paper_broker.cash = 15_000
        paper_broker.positions["HELD"] = _position("HELD")
        reply = """```json
        [
          {"action": "BUY", "ticker": "aaa", "reasoning": "cluster buy", "notional": 10000, "stopPrice": 45, "takeProfitPrice": 60},
          {"action": "BUY", "ticker": "BBB", "reasoning": "too big"},
          {"action": "HOLD", "ticker": "HELD", "reasoning": "thesis intact"},
          {"action": "SELL", "ticker": "HELD", "reasoning": "target reached"}
        ]
        ```"""
        client = FakeReasoningClient(reply)
        engine = DecisionEngine(db, paper_broker, client, manager, get_settings())
        signals = score_signals([make_record(ticker="AAA")], today=date(2026, 3, 17))

        created = engine.decide(signals)

        assert [(r.action, r.ticker) for r in created] == [("BUY", "AAA"), ("SELL", "HELD")]
        assert db.query(Recommendation).count() == 2
        assert all(r.status == "PENDING" for r in db.query(Recommendation))
        assert db.query(ScheduledJob).count() == 2
        assert len(notifier.approvals) == 2

        system, portfolio_context, signals_context = client.calls[0]
        assert "JSON array" in system
        assert "Available buying power: $15,000.00" in portfolio_context
        assert "AAA" in signals_context

    def test_malformed_reply_is_fatal(self, db, paper_broker, manager, make_record):
        engine = DecisionEngine(db, paper_broker, FakeReasoningClient("no decisions"), manager, get_settings())
        with pytest.raises(DecisionParseError):
            engine.decide(score_signals([make_record()], today=date(2026, 3, 17)))
        assert db.query(Recommendation).count() == 0

    def test_persistence_failure_skips_only_that_recommendation(self, db, paper_broker, make_record):
        class FlakyManager:
            def __init__(self):
                self.created = []

            def create(self, request):
                if request.ticker == "BAD":
                    raise RecommendationPersistenceError("disk full")
                self.created.append(request.ticker)
                return request

        reply = (
            '[{"action": "BUY", "ticker": "BAD", "reasoning": "r", "notional": 100},'
            ' {"action": "BUY", "ticker": "GOOD", "reasoning": "r", "notional": 100}]'
        )
        manager = FlakyManager()
        engine = DecisionEngine(db, paper_broker, FakeReasoningClient(reply), manager, get_settings())

        created = engine.decide(score_signals([make_record()], today=date(2026, 3, 17)))

        assert manager.created == ["GOOD"]
        assert len(created) == 1

    def test_broker_failure_degrades_to_empty_portfolio(self, db, manager, make_record):
        class DownBroker:
            def get_positions(self):
                raise RuntimeError("broker down")

            def get_buying_power(self):
                raise RuntimeError("broker down")

            def get_latest_prices(self, symbols):
                return {}

        client = FakeReasoningClient("[]")
        engine = DecisionEngine(db, DownBroker(), client, manager, get_settings())

        assert engine.decide(score_signals([make_record()], today=date(2026, 3, 17))) == []
        assert "Available buying power: $0.00" in client.calls[0][1]
