"""
FastAPI dependencies for the external collaborators.
Tests swap these out through app.dependency_overrides.
"""
from fastapi import Depends
from sqlalchemy.orm import Session
from insider_trader.models.base import get_db
from insider_trader.core.pipeline import build_recommendation_manager
from insider_trader.core.recommendation_manager import RecommendationManager
from insider_trader.execution.base_broker import BaseBroker
from insider_trader.execution.broker_factory import create_broker
from insider_trader.notifications.telegram import TelegramNotifier
from config.settings import get_settings

def get_broker() -> BaseBroker:
    return create_broker(get_settings())

def get_notifier() -> TelegramNotifier:
    return TelegramNotifier(get_settings())

def get_recommendation_manager(
    db: Session = Depends(get_db),
    broker: BaseBroker = Depends(get_broker),
    notifier: TelegramNotifier = Depends(get_notifier)
) -> RecommendationManager:
    return build_recommendation_manager(db, broker=broker, notifier=notifier, settings=get_settings())

def get_pipeline_trigger():
    """Callable that starts a pipeline run in the background and returns its task id."""
    from insider_trader.scheduler.tasks import run_pipeline

    def trigger() -> str:
        return run_pipeline.delay().id

    return trigger
