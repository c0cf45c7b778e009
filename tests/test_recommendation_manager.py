"""
Tests for the recommendation lifecycle.

Covers:
  - create: PENDING row, expiry job and audit row in one commit, prompt after
  - approve: order placement, position log, EXECUTED; bracket vs plain orders
  - approve past the expiry window, approve after the timer fired
  - reject, double actions, unknown ids
  - expiry timer no-op once resolved, dispatch through the durable scheduler
  - order failure keeps APPROVED with last_error
  - a malformed broker order reply is reported like any other order failure
  - two sessions racing approve against expire
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from insider_trader.core.decision_engine import RecommendationRequest
from insider_trader.core.recommendation_manager import RecommendationManager, TransitionOutcome
from insider_trader.execution.order_manager import OrderManager
from insider_trader.models.audit_log import AuditLog
from insider_trader.models.positions import Position
from insider_trader.models.recommendations import Recommendation
from insider_trader.models.schedules import ScheduledJob
from insider_trader.scheduler.timers import DurableScheduler
from insider_trader.utils.constants import CALLBACK_EXPIRE_RECOMMENDATION
from insider_trader.utils.exceptions import RecommendationPersistenceError
from insider_trader.utils.hashing import verify_audit_chain
from config.settings import get_settings
from insider_trader.execution.alpaca_broker import AlpacaBroker
from tests.conftest import FakeHttpSession, FakeNotifier, FakeResponse


T0 = datetime(2026, 3, 17, 23, 40)


def _request(ticker="ACME", action="BUY", notional=10_000.0, stop=None, target=None) -> RecommendationRequest:
    return RecommendationRequest(
        ticker=ticker,
        action=action,
        reasoning=f"{action} {ticker} on insider cluster",
        notional=notional,
        stop_price=stop,
        take_profit_price=target,
        current_price=50.0,
    )


@pytest.fixture
def manager(db, notifier, paper_broker) -> RecommendationManager:
    paper_broker.set_price("ACME", 50.0)
    return RecommendationManager(
        db,
        notifier=notifier,
        order_manager=OrderManager(paper_broker),
        settings=get_settings(),
    )


# ── Create ─────────────────────────────────────────────────────────────────────

class TestCreate:
    def test_pending_with_expiry_job(self, db, manager, notifier):
        rec = manager.create(_request(), now=T0)

        stored = db.query(Recommendation).filter_by(rec_id=rec.rec_id).one()
        assert stored.status == "PENDING"
        assert stored.created_at == T0

        job = db.query(ScheduledJob).one()
        assert job.callback == CALLBACK_EXPIRE_RECOMMENDATION
        assert job.payload == {"rec_id": rec.rec_id}
        assert job.run_at == T0 + timedelta(hours=23)
        assert job.status == "ACTIVE"

        assert notifier.approvals == [(rec.rec_id, 50.0)]

    def test_audit_row_written(self, db, manager):
        rec = manager.create(_request(), now=T0)
        row = db.query(AuditLog).one()
        assert row.event_type == "RECOMMENDATION_CREATED"
        assert row.entity_id == rec.rec_id
        assert row.after_state["status"] == "PENDING"

    def test_persistence_failure_sends_nothing(self, db, notifier):
        class BrokenScheduler:
            def schedule(self, *args, **kwargs):
                raise OperationalError("INSERT INTO scheduled_jobs", {}, Exception("database is locked"))

        manager = RecommendationManager(db, scheduler=BrokenScheduler(), notifier=notifier, settings=get_settings())
        with pytest.raises(RecommendationPersistenceError):
            manager.create(_request(), now=T0)

        assert db.query(Recommendation).count() == 0
        assert notifier.approvals == []

    def test_prompt_failure_keeps_recommendation(self, db):
        manager = RecommendationManager(db, notifier=FakeNotifier(fail=True), settings=get_settings())
        rec = manager.create(_request(), now=T0)
        assert db.query(Recommendation).filter_by(rec_id=rec.rec_id).one().status == "PENDING"


# ── Approve ────────────────────────────────────────────────────────────────────

class TestApprove:
    def test_executes_buy(self, db, manager, paper_broker):
        rec = manager.create(_request(), now=T0)

        result = manager.approve(rec.rec_id, now=T0 + timedelta(hours=1))

        assert result.ok
        assert result.outcome == TransitionOutcome.APPLIED
        assert result.message == "Trade executed: BUY ACME"
        stored = db.query(Recommendation).filter_by(rec_id=rec.rec_id).one()
        assert stored.status == "EXECUTED"
        assert stored.broker_order_id
        assert stored.resolved_at == T0 + timedelta(hours=1)

        assert paper_broker.get_position("ACME").quantity == 200
        position = db.query(Position).one()
        assert (position.ticker, position.side, position.qty) == ("ACME", "BUY", 200)
        assert position.recommendation_id == rec.rec_id

    def test_bracket_order_when_levels_straddle_price(self, manager, paper_broker):
        rec = manager.create(_request(stop=45.0, target=60.0), now=T0)
        manager.approve(rec.rec_id, now=T0 + timedelta(minutes=5))
        assert paper_broker.brackets["ACME"] == {"stop_price": 45.0, "take_profit_price": 60.0}

    def test_plain_order_when_levels_are_inverted(self, db, manager, paper_broker):
        rec = manager.create(_request(stop=55.0, target=60.0), now=T0)
        result = manager.approve(rec.rec_id, now=T0 + timedelta(minutes=5))
        assert result.ok
        assert "ACME" not in paper_broker.brackets

    def test_sell_closes_full_position(self, db, manager, paper_broker):
        buy = manager.create(_request(), now=T0)
        manager.approve(buy.rec_id, now=T0 + timedelta(minutes=1))

        sell = manager.create(_request(action="SELL", notional=10_000.0), now=T0 + timedelta(days=1))
        result = manager.approve(sell.rec_id, now=T0 + timedelta(days=1, minutes=1))

        assert result.ok
        assert paper_broker.get_position("ACME") is None

    def test_past_expiry_window_expires_instead(self, db, manager, paper_broker):
        rec = manager.create(_request(), now=T0)

        result = manager.approve(rec.rec_id, now=T0 + timedelta(hours=23))

        assert result.status_code == 400
        assert result.outcome == TransitionOutcome.EXPIRED
        assert result.message == "This recommendation expired after 23 hours and can no longer be approved."
        assert db.query(Recommendation).filter_by(rec_id=rec.rec_id).one().status == "EXPIRED"
        assert paper_broker.get_positions() == []

    def test_after_timer_fired(self, manager):
        rec = manager.create(_request(), now=T0)
        assert manager.expire(rec.rec_id, now=T0 + timedelta(hours=23)) == TransitionOutcome.APPLIED

        result = manager.approve(rec.rec_id, now=T0 + timedelta(hours=1))

        assert result.status_code == 400
        assert result.outcome == TransitionOutcome.ALREADY_RESOLVED
        assert result.message == "Recommendation is already expired and cannot be actioned again."

    def test_twice(self, manager):
        rec = manager.create(_request(), now=T0)
        manager.approve(rec.rec_id, now=T0 + timedelta(minutes=1))

        again = manager.approve(rec.rec_id, now=T0 + timedelta(minutes=2))

        assert again.status_code == 400
        assert again.message == "Recommendation is already executed and cannot be actioned again."

    def test_unknown_id(self, manager):
        result = manager.approve("does-not-exist")
        assert result.status_code == 400
        assert result.outcome == TransitionOutcome.NOT_FOUND
        assert result.message == 'Recommendation "does-not-exist" not found.'


class TestOrderFailure:
    def test_no_price_keeps_approved_with_error(self, db, manager, notifier):
        rec = manager.create(_request(ticker="NOPRICE"), now=T0)

        result = manager.approve(rec.rec_id, now=T0 + timedelta(minutes=1))

        assert result.status_code == 500
        assert result.message.startswith("Order submission failed: Cannot place order for NOPRICE")
        stored = db.query(Recommendation).filter_by(rec_id=rec.rec_id).one()
        assert stored.status == "APPROVED"
        assert "current price unavailable" in stored.last_error
        assert any("Order Failed" in text for text, _ in notifier.messages)
        assert db.query(Position).count() == 0

    def test_notional_below_one_share(self, db, manager):
        rec = manager.create(_request(notional=10.0), now=T0)
        result = manager.approve(rec.rec_id, now=T0 + timedelta(minutes=1))
        assert result.status_code == 500
        assert "too small to buy 1 share" in result.message

    def test_sell_without_position(self, db, manager):
        rec = manager.create(_request(action="SELL"), now=T0)
        result = manager.approve(rec.rec_id, now=T0 + timedelta(minutes=1))
        assert result.status_code == 500
        assert "no open position" in result.message

    @pytest.mark.parametrize("order_body", [
        {"status": "accepted"},
        {"id": "ord-9", "status": "accepted", "filled_qty": "n/a"},
    ])
    def test_malformed_order_reply_is_reported(self, db, notifier, order_body):
        settings = get_settings()
        session = FakeHttpSession({
            f"{settings.ALPACA_DATA_URL}/v2/stocks/snapshots": FakeResponse(200, {"ACME": {"latestTrade": {"p": 50.0}}}),
            f"{settings.ALPACA_BASE_URL}/v2/orders": FakeResponse(200, order_body),
        })
        manager = RecommendationManager(
            db, notifier=notifier, order_manager=OrderManager(AlpacaBroker(settings, session=session)), settings=settings,
        )
        rec = manager.create(_request(), now=T0)

        result = manager.approve(rec.rec_id, now=T0 + timedelta(minutes=1))

        assert result.status_code == 500
        assert "order response shape mismatch" in result.message
        stored = db.query(Recommendation).filter_by(rec_id=rec.rec_id).one()
        assert stored.status == "APPROVED"
        assert "shape mismatch" in stored.last_error
        assert any("Order Failed" in text for text, _ in notifier.messages)
        assert db.query(Position).count() == 0


# ── Reject ─────────────────────────────────────────────────────────────────────

class TestReject:
    def test_reject(self, db, manager, paper_broker):
        rec = manager.create(_request(), now=T0)

        result = manager.reject(rec.rec_id, now=T0 + timedelta(hours=2))

        assert result.ok
        assert result.message == "Recommendation rejected."
        stored = db.query(Recommendation).filter_by(rec_id=rec.rec_id).one()
        assert stored.status == "REJECTED"
        assert stored.resolved_at == T0 + timedelta(hours=2)
        assert paper_broker.get_positions() == []

    def test_reject_twice(self, manager):
        rec = manager.create(_request(), now=T0)
        manager.reject(rec.rec_id)
        again = manager.reject(rec.rec_id)
        assert again.status_code == 400
        assert again.message == "Recommendation is already rejected and cannot be actioned again."

    def test_unknown_id(self, manager):
        assert manager.reject("nope").outcome == TransitionOutcome.NOT_FOUND


# ── Expiry ─────────────────────────────────────────────────────────────────────

class TestExpiry:
    def test_noop_after_reject(self, db, manager):
        rec = manager.create(_request(), now=T0)
        manager.reject(rec.rec_id)

        assert manager.expire(rec.rec_id) == TransitionOutcome.ALREADY_RESOLVED
        assert db.query(Recommendation).filter_by(rec_id=rec.rec_id).one().status == "REJECTED"

    def test_unknown_id(self, manager):
        assert manager.expire("nope") == TransitionOutcome.NOT_FOUND

    def test_fires_through_scheduler(self, db, manager):
        rec = manager.create(_request(), now=T0)
        due = T0 + timedelta(hours=23)
        callbacks = {CALLBACK_EXPIRE_RECOMMENDATION: lambda payload: manager.expire(payload["rec_id"], now=due)}
        scheduler = DurableScheduler(db)

        assert scheduler.dispatch_due(callbacks, now=due - timedelta(minutes=1)) == 0
        assert scheduler.dispatch_due(callbacks, now=due) == 1

        assert db.query(Recommendation).filter_by(rec_id=rec.rec_id).one().status == "EXPIRED"
        assert db.query(ScheduledJob).one().status == "DONE"

    def test_audit_chain_links_every_transition(self, db, manager):
        rec = manager.create(_request(), now=T0)
        manager.approve(rec.rec_id, now=T0 + timedelta(minutes=1))

        rows = db.query(AuditLog).order_by(AuditLog.id).all()
        assert [r.event_type for r in rows] == [
            "RECOMMENDATION_CREATED", "RECOMMENDATION_APPROVED", "RECOMMENDATION_EXECUTED",
        ]
        assert verify_audit_chain(rows)

    def test_edited_audit_row_breaks_chain(self, db, manager):
        rec = manager.create(_request(), now=T0)
        manager.reject(rec.rec_id, now=T0 + timedelta(minutes=5))

        rows = db.query(AuditLog).order_by(AuditLog.id).all()
        rows[0].after_state = {**rows[0].after_state, "notional": 1.0}
        assert not verify_audit_chain(rows)


# ── Concurrency ────────────────────────────────────────────────────────────────

class TestRace:
    def test_expire_wins_then_approve_sees_resolved(self, file_engine, paper_broker):
        Session = sessionmaker(bind=file_engine, autoflush=False)
        approver_db, timer_db = Session(), Session()
        paper_broker.set_price("ACME", 50.0)
        try:
            approver = RecommendationManager(
                approver_db, notifier=FakeNotifier(), order_manager=OrderManager(paper_broker),
                settings=get_settings(),
            )
            timer = RecommendationManager(timer_db, settings=get_settings())

            rec = approver.create(_request(), now=T0)
            # The approver has the row loaded as PENDING before the timer fires
            assert approver.get(rec.rec_id).status == "PENDING"

            assert timer.expire(rec.rec_id, now=T0 + timedelta(hours=23)) == TransitionOutcome.APPLIED
            result = approver.approve(rec.rec_id, now=T0 + timedelta(hours=1))

            assert result.outcome == TransitionOutcome.ALREADY_RESOLVED
            assert result.status_code == 400
            assert result.message == "Recommendation is already expired and cannot be actioned again."
            assert paper_broker.get_positions() == []
        finally:
            approver_db.close()
            timer_db.close()

    def test_approve_wins_then_timer_is_noop(self, file_engine, paper_broker):
        Session = sessionmaker(bind=file_engine, autoflush=False)
        approver_db, timer_db = Session(), Session()
        paper_broker.set_price("ACME", 50.0)
        try:
            approver = RecommendationManager(
                approver_db, notifier=FakeNotifier(), order_manager=OrderManager(paper_broker),
                settings=get_settings(),
            )
            timer = RecommendationManager(timer_db, settings=get_settings())

            rec = approver.create(_request(), now=T0)
            assert approver.approve(rec.rec_id, now=T0 + timedelta(hours=1)).ok

            assert timer.expire(rec.rec_id) == TransitionOutcome.ALREADY_RESOLVED
            assert timer.get(rec.rec_id).status == "EXECUTED"
        finally:
            approver_db.close()
            timer_db.close()
