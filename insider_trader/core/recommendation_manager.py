"""
Recommendation lifecycle.

    PENDING -> APPROVED | REJECTED | EXPIRED
    APPROVED -> EXECUTED

Every transition is a conditional UPDATE on the current status, so when an
approval races the expiry timer exactly one of them changes the row and the
other sees zero rows affected. That loser outcome is ALREADY_RESOLVED, which
is reported to the caller and is never an error.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from insider_trader.models.audit_log import AuditLog
from insider_trader.models.positions import Position
from insider_trader.models.recommendations import Recommendation
from insider_trader.scheduler.timers import DurableScheduler
from insider_trader.utils.constants import (
    CALLBACK_EXPIRE_RECOMMENDATION, ERROR_PREVIEW_CHARS,
    STATUS_APPROVED, STATUS_EXECUTED, STATUS_EXPIRED, STATUS_PENDING, STATUS_REJECTED, utcnow
)
from insider_trader.utils.exceptions import BrokerError, RecommendationPersistenceError
from insider_trader.utils.hashing import create_event_hash, json_default
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics
from config.settings import get_settings

logger = get_logger(__name__)

class TransitionOutcome(str, Enum):
    APPLIED = "APPLIED"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"

@dataclass
class ApprovalResult:
    """Outcome of a human approve/reject action, with the text shown back to them."""
    outcome: TransitionOutcome
    message: str
    status_code: int
    recommendation: Optional[Recommendation] = None
    order_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code == 200

class RecommendationManager:
    """Creates recommendations and moves them through their lifecycle."""

    def __init__(self, db: Session, scheduler: Optional[DurableScheduler] = None, notifier=None,
                 order_manager=None, settings=None):
        self.db = db
        self.scheduler = scheduler or DurableScheduler(db)
        self.notifier = notifier
        self.order_manager = order_manager
        self.settings = settings or get_settings()

    @property
    def expiry(self) -> timedelta:
        return timedelta(hours=self.settings.APPROVAL_EXPIRY_HOURS)

    def get(self, rec_id: str) -> Optional[Recommendation]:
        return self.db.query(Recommendation).filter(Recommendation.rec_id == rec_id).first()

    # ---------- Create ----------

    def create(self, request, now: Optional[datetime] = None) -> Recommendation:
        """
        Persist a PENDING recommendation and its expiry job in one transaction,
        then send the approval prompt.

        The prompt goes out only after the expiry job is committed, so nothing
        a human has been shown can stay PENDING forever. A failed prompt is
        logged and otherwise ignored.

        Raises:
            RecommendationPersistenceError: the write failed; nothing was sent
        """
        now = now or utcnow()
        rec = Recommendation(
            rec_id=str(uuid.uuid4()),
            ticker=request.ticker,
            action=request.action,
            reasoning=request.reasoning,
            signal_id=request.signal_id,
            notional=request.notional,
            stop_price=request.stop_price,
            take_profit_price=request.take_profit_price,
            status=STATUS_PENDING,
            created_at=now
        )

        try:
            self.db.add(rec)
            self.db.flush()
            self.scheduler.schedule(
                CALLBACK_EXPIRE_RECOMMENDATION,
                payload={'rec_id': rec.rec_id},
                delay_seconds=self.expiry.total_seconds(),
                label=f"expire {rec.action} {rec.ticker}",
                now=now
            )
            self._audit(rec.rec_id, 'RECOMMENDATION_CREATED', 'system', f"create {rec.action} {rec.ticker}",
                        before=None, after=self._state(rec), now=now)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecommendationPersistenceError(f"Could not persist {request.action} {request.ticker}: {e}") from e

        metrics.record_recommendation_created(rec.action)
        logger.info(
            "Recommendation created",
            rec_id=rec.rec_id,
            action=rec.action,
            ticker=rec.ticker,
            notional=rec.notional,
            signal_id=rec.signal_id
        )

        if self.notifier is not None:
            try:
                self.notifier.send_approval_request(rec, request.current_price)
            except Exception as e:
                logger.error("Approval prompt not delivered", rec_id=rec.rec_id, error=str(e))

        return rec

    # ---------- Transitions ----------

    def _transition(self, rec_id: str, from_status: str, to_status: str, actor: str,
                    now: Optional[datetime] = None, values: Optional[Dict] = None) -> TransitionOutcome:
        """Conditional status update; commits the change and its audit row together."""
        now = now or utcnow()
        changes = {'status': to_status}
        if from_status == STATUS_PENDING:
            changes['resolved_at'] = now
        changes.update(values or {})

        updated = (
            self.db.query(Recommendation)
            .filter(Recommendation.rec_id == rec_id, Recommendation.status == from_status)
            .update(changes, synchronize_session=False)
        )

        if updated == 0:
            self.db.rollback()
            exists = self.db.query(Recommendation.id).filter(Recommendation.rec_id == rec_id).first()
            outcome = TransitionOutcome.ALREADY_RESOLVED if exists else TransitionOutcome.NOT_FOUND
            metrics.record_transition(to_status, outcome.value)
            logger.info("Transition not applied", rec_id=rec_id, to_status=to_status, outcome=outcome.value)
            return outcome

        self._audit(rec_id, f"RECOMMENDATION_{to_status}", actor, f"{from_status} -> {to_status}",
                    before={'status': from_status}, after=changes, now=now)
        self.db.commit()

        metrics.record_transition(to_status, TransitionOutcome.APPLIED.value)
        logger.info("Recommendation transitioned", rec_id=rec_id, from_status=from_status, to_status=to_status)
        return TransitionOutcome.APPLIED

    def expire(self, rec_id: str, now: Optional[datetime] = None) -> TransitionOutcome:
        """Timer callback. A recommendation that already left PENDING is left alone."""
        return self._transition(rec_id, STATUS_PENDING, STATUS_EXPIRED, actor='scheduler', now=now)

    def mark_executed(self, rec_id: str, broker_order_id: str, now: Optional[datetime] = None) -> TransitionOutcome:
        now = now or utcnow()
        return self._transition(
            rec_id, STATUS_APPROVED, STATUS_EXECUTED, actor='system', now=now,
            values={'executed_at': now, 'broker_order_id': broker_order_id, 'last_error': None}
        )

    def reject(self, rec_id: str, now: Optional[datetime] = None) -> ApprovalResult:
        rec = self.get(rec_id)
        precheck = self._precheck(rec_id, rec)
        if precheck is not None:
            return precheck

        outcome = self._transition(rec_id, STATUS_PENDING, STATUS_REJECTED, actor='human', now=now)
        if outcome != TransitionOutcome.APPLIED:
            return self._lost_race(rec_id, outcome)
        return ApprovalResult(outcome, "Recommendation rejected.", 200, self.get(rec_id))

    def approve(self, rec_id: str, now: Optional[datetime] = None) -> ApprovalResult:
        """
        Approve and place the order.

        An approval at or past the expiry window expires the recommendation
        instead, even if the expiry timer has not fired yet. Order failures
        leave the recommendation APPROVED with last_error set.
        """
        now = now or utcnow()
        rec = self.get(rec_id)
        precheck = self._precheck(rec_id, rec)
        if precheck is not None:
            return precheck

        if now - rec.created_at >= self.expiry:
            outcome = self._transition(rec_id, STATUS_PENDING, STATUS_EXPIRED, actor='human', now=now)
            if outcome != TransitionOutcome.APPLIED:
                return self._lost_race(rec_id, outcome)
            return ApprovalResult(
                TransitionOutcome.EXPIRED,
                f"This recommendation expired after {self.settings.APPROVAL_EXPIRY_HOURS:g} hours "
                f"and can no longer be approved.",
                400,
                self.get(rec_id)
            )

        outcome = self._transition(rec_id, STATUS_PENDING, STATUS_APPROVED, actor='human', now=now)
        if outcome != TransitionOutcome.APPLIED:
            return self._lost_race(rec_id, outcome)

        rec = self.get(rec_id)
        return self._execute(rec)

    def _execute(self, rec: Recommendation) -> ApprovalResult:
        try:
            response = self.order_manager.execute(rec)
        except BrokerError as e:
            message = str(e)
            logger.error("Order submission failed", rec_id=rec.rec_id, ticker=rec.ticker, error=message)
            self.db.query(Recommendation).filter(Recommendation.rec_id == rec.rec_id).update(
                {'last_error': message}, synchronize_session=False
            )
            self.db.commit()
            self._notify_failure(rec, message)
            return ApprovalResult(
                TransitionOutcome.APPLIED,
                f"Order submission failed: {message}",
                500,
                self.get(rec.rec_id),
                order_error=message
            )

        self._log_position(rec, response)
        self.mark_executed(rec.rec_id, response.broker_order_id)
        return ApprovalResult(
            TransitionOutcome.APPLIED,
            f"Trade executed: {rec.action} {rec.ticker}",
            200,
            self.get(rec.rec_id)
        )

    def _log_position(self, rec: Recommendation, response):
        qty = response.filled_qty or response.quantity
        price = response.filled_avg_price or 0.0
        notional = price * qty if price and qty else rec.notional
        try:
            self.db.add(Position(
                ticker=rec.ticker,
                side=rec.action,
                qty=qty,
                price=price,
                notional=notional,
                broker_order_id=response.broker_order_id,
                recommendation_id=rec.rec_id,
                executed_at=utcnow()
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            # The order is placed; the position log is best effort
            self.db.rollback()
            logger.error("Position log failed", rec_id=rec.rec_id, broker_order_id=response.broker_order_id, error=str(e))

    def _notify_failure(self, rec: Recommendation, message: str):
        if self.notifier is None:
            return
        try:
            self.notifier.send_message(
                f"⚠️ *Order Failed*\n\n{rec.action} {rec.ticker} was approved but the order "
                f"could not be placed:\n`{message[:ERROR_PREVIEW_CHARS]}`"
            )
        except Exception as e:
            logger.error("Order failure notice not delivered", rec_id=rec.rec_id, error=str(e))

    # ---------- Helpers ----------

    def _precheck(self, rec_id: str, rec: Optional[Recommendation]) -> Optional[ApprovalResult]:
        if rec is None:
            return ApprovalResult(TransitionOutcome.NOT_FOUND, f'Recommendation "{rec_id}" not found.', 400)
        if rec.status != STATUS_PENDING:
            return self._already_resolved(rec)
        return None

    def _lost_race(self, rec_id: str, outcome: TransitionOutcome) -> ApprovalResult:
        rec = self.get(rec_id)
        if outcome == TransitionOutcome.NOT_FOUND or rec is None:
            return ApprovalResult(TransitionOutcome.NOT_FOUND, f'Recommendation "{rec_id}" not found.', 400)
        return self._already_resolved(rec)

    @staticmethod
    def _already_resolved(rec: Recommendation) -> ApprovalResult:
        return ApprovalResult(
            TransitionOutcome.ALREADY_RESOLVED,
            f"Recommendation is already {rec.status.lower()} and cannot be actioned again.",
            400,
            rec
        )

    @staticmethod
    def _state(rec: Recommendation) -> Dict:
        return {
            'rec_id': rec.rec_id,
            'ticker': rec.ticker,
            'action': rec.action,
            'notional': rec.notional,
            'stop_price': rec.stop_price,
            'take_profit_price': rec.take_profit_price,
            'signal_id': rec.signal_id,
            'status': rec.status,
        }

    def _audit(self, entity_id: str, event_type: str, actor: str, transition: str,
               before: Optional[Dict], after: Dict, now: datetime):
        """Append a hash-chained audit row to the current transaction."""
        previous = self.db.query(AuditLog.event_hash).order_by(AuditLog.id.desc()).first()
        previous_hash = previous[0] if previous else None
        # JSON columns take datetimes as ISO strings
        after_state = {k: json_default(v) if isinstance(v, datetime) else v for k, v in after.items()}

        self.db.add(AuditLog(
            occurred_at=now,
            event_type=event_type,
            entity_type='recommendation',
            entity_id=entity_id,
            actor=actor,
            transition=transition,
            before_state=before,
            after_state=after_state,
            event_hash=create_event_hash(now, event_type, entity_id, after_state, previous_hash),
            previous_hash=previous_hash
        ))
