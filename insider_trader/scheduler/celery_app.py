"""
Celery app for the pipeline worker and the schedule dispatcher.

Beat carries a single entry that polls the durable schedule table. Expiry
timers and the operator's recurring pipeline run are rows in that table,
so they survive worker and beat restarts.
"""
from celery import Celery
from config.settings import get_settings

settings = get_settings()
redis_url = f'redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/0'

app = Celery(
    'insider_trader',
    broker=redis_url,
    backend=redis_url,
    include=['insider_trader.scheduler.tasks']
)

app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    result_expires=24 * 3600,
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    # EDGAR fan-out plus one reasoning call fits well inside this
    task_time_limit=15 * 60,
    worker_prefetch_multiplier=1,
)

app.conf.beat_schedule = {
    'dispatch-due-schedules': {
        'task': 'insider_trader.scheduler.tasks.dispatch_due_schedules',
        'schedule': float(settings.SCHEDULE_DISPATCH_SECONDS),
    },
}
