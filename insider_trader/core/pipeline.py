"""
End-to-end pipeline: scan -> decide -> recommend.
Also the wiring that builds the production collaborators.
"""
import time
from typing import Dict
from sqlalchemy.orm import Session
from insider_trader.core.decision_engine import DecisionEngine
from insider_trader.core.recommendation_manager import RecommendationManager
from insider_trader.core.scanner import FilingScanner
from insider_trader.execution.broker_factory import create_broker
from insider_trader.execution.order_manager import OrderManager
from insider_trader.notifications.telegram import TelegramNotifier
from insider_trader.scheduler.timers import DurableScheduler
from insider_trader.utils.anthropic_client import ReasoningClient
from insider_trader.utils.constants import ERROR_PREVIEW_CHARS
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics
from config.settings import get_settings

logger = get_logger(__name__)

def build_recommendation_manager(db: Session, broker=None, notifier=None, settings=None) -> RecommendationManager:
    settings = settings or get_settings()
    broker = broker or create_broker(settings)
    return RecommendationManager(
        db,
        scheduler=DurableScheduler(db),
        notifier=notifier or TelegramNotifier(settings),
        order_manager=OrderManager(broker),
        settings=settings
    )

class PipelineRunner:
    """
    One full run. Fatal errors are posted to the operator chat and re-raised
    so the calling task records the failure.
    """

    def __init__(self, scanner: FilingScanner, engine: DecisionEngine, notifier=None):
        self.scanner = scanner
        self.engine = engine
        self.notifier = notifier

    @classmethod
    def from_settings(cls, db: Session, settings=None) -> 'PipelineRunner':
        settings = settings or get_settings()
        broker = create_broker(settings)
        notifier = TelegramNotifier(settings)
        manager = build_recommendation_manager(db, broker=broker, notifier=notifier, settings=settings)
        engine = DecisionEngine(db, broker, ReasoningClient(settings), manager, settings)
        return cls(FilingScanner(db, settings=settings), engine, notifier)

    def run(self) -> Dict:
        step = 'Scan'
        started = time.monotonic()
        try:
            signals = self.scanner.scan()
            if not signals:
                self._notify(
                    "📭 *Daily Scan Complete*\n\n"
                    "No open-market insider purchases found in the last 3 days. No trades to evaluate today."
                )
                metrics.record_pipeline_run('no_signals', time.monotonic() - started)
                return {'signals': 0, 'recommendations': 0}

            step = 'Decision'
            recommendations = self.engine.decide(signals)
            if not recommendations:
                self._notify(
                    f"✅ *Pipeline Complete*\n\nEvaluated {len(signals)} signal(s). "
                    "All decisions were HOLD or filtered out, nothing to approve."
                )
        except Exception as e:
            logger.error("Pipeline failed", step=step, error=str(e), exc_info=True)
            self._notify(f"🚨 *Pipeline Error*\n\n{step} step failed:\n`{str(e)[:ERROR_PREVIEW_CHARS]}`")
            metrics.record_pipeline_run('failed', time.monotonic() - started)
            raise

        metrics.record_pipeline_run('completed', time.monotonic() - started)
        logger.info("Pipeline complete", signals=len(signals), recommendations=len(recommendations))
        return {
            'signals': len(signals),
            'recommendations': len(recommendations),
            'recommendation_ids': [r.rec_id for r in recommendations],
        }

    def _notify(self, text: str):
        if self.notifier is None:
            return
        try:
            self.notifier.send_message(text)
        except Exception as e:
            logger.error("Pipeline notice not delivered", error=str(e))
