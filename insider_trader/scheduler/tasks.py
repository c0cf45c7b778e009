"""
Celery background tasks.
"""
from celery import Task
from celery.signals import worker_process_init
from insider_trader.scheduler.celery_app import app
from insider_trader.models.base import SessionLocal
from insider_trader.core.pipeline import PipelineRunner
from insider_trader.core.recommendation_manager import RecommendationManager
from insider_trader.scheduler.timers import DurableScheduler
from insider_trader.utils.constants import CALLBACK_EXPIRE_RECOMMENDATION, CALLBACK_RUN_PIPELINE
from insider_trader.utils.logging import configure_logging, get_logger
from config.settings import get_settings

logger = get_logger(__name__)


@worker_process_init.connect
def _init_worker_logging(**kwargs):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)


class DatabaseTask(Task):
    """Base task with database session management."""
    _db = None

    @property
    def db(self):
        if self._db is None:
            self._db = SessionLocal()
        return self._db

    def after_return(self, *args, **kwargs):
        if self._db is not None:
            self._db.close()
            self._db = None


@app.task(base=DatabaseTask, bind=True)
def run_pipeline(self):
    """
    Scan EDGAR, score, decide and send approval requests.
    Triggered by the recurring schedule, the chat bot or the API.
    """
    logger.info("Starting pipeline run")

    try:
        return PipelineRunner.from_settings(self.db).run()
    except Exception as e:
        logger.error("Pipeline run failed", error=str(e))
        raise


# ---------- Durable schedule callbacks ----------

def expire_recommendation(payload):
    """Expiry timer callback; already-resolved recommendations are a no-op."""
    db = SessionLocal()
    try:
        outcome = RecommendationManager(db).expire(payload['rec_id'])
        logger.info("Expiry timer fired", rec_id=payload['rec_id'], outcome=outcome.value)
    finally:
        db.close()


def enqueue_pipeline(payload):
    """Recurring schedule callback; the run itself happens in its own task."""
    run_pipeline.delay()
    logger.info("Pipeline run enqueued", label=payload.get('label'))


CALLBACKS = {
    CALLBACK_EXPIRE_RECOMMENDATION: expire_recommendation,
    CALLBACK_RUN_PIPELINE: enqueue_pipeline,
}


@app.task(base=DatabaseTask, bind=True)
def dispatch_due_schedules(self):
    """
    Run every durable job that is due.
    Beat calls this every SCHEDULE_DISPATCH_SECONDS.
    """
    try:
        ran = DurableScheduler(self.db).dispatch_due(CALLBACKS)
        if ran:
            logger.info("Dispatched due schedules", count=ran)
        return ran
    except Exception as e:
        logger.error("Schedule dispatch failed", error=str(e))
        raise
