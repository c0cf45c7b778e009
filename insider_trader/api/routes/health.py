"""
Health check and metrics endpoints.
"""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from sqlalchemy import text
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
import redis
from insider_trader.models.base import get_db
from insider_trader.utils.constants import utcnow, API_TIMEOUT_SHORT
from insider_trader.utils.metrics import registry
from config.settings import get_settings

router = APIRouter()

@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Verifies database connectivity.
    """
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "database": "connected"
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "timestamp": utcnow().isoformat(),
            "database": "disconnected",
            "error": str(e)
        }

@router.get("/celery/status")
def celery_status():
    """
    Broker reachability and a rough count of worker activity.
    """
    settings = get_settings()
    try:
        r = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            socket_timeout=API_TIMEOUT_SHORT,
            decode_responses=True
        )
        r.ping()
        task_results = len(r.keys('celery-task-meta-*') or [])
        queued = r.llen('celery')

        return {
            "status": "healthy" if task_results > 0 else "idle",
            "task_results": task_results,
            "queued": queued,
            "timestamp": utcnow().isoformat()
        }
    except redis.RedisError as e:
        return {
            "status": "unhealthy",
            "timestamp": utcnow().isoformat(),
            "error": str(e)
        }

@router.get("/metrics")
def metrics():
    """Prometheus exposition of the pipeline counters."""
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
