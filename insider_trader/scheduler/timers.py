"""
Durable timer facility.

One-shot and cron jobs live in the scheduled_jobs table, so a restart of the
API or the Celery worker loses nothing. Celery beat calls dispatch_due() on
a short fixed interval; each due job is claimed with a conditional lease
update so that only one worker runs it.
"""
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from celery.schedules import crontab_parser, ParseException
from sqlalchemy import or_
from sqlalchemy.orm import Session
from insider_trader.models.schedules import ScheduledJob
from insider_trader.utils.constants import (
    JOB_ACTIVE, JOB_CANCELLED, JOB_DONE, JOB_FAILED, JOB_KIND_CRON, JOB_KIND_DELAY,
    SCHEDULE_LEASE_SECONDS, SCHEDULE_MAX_ATTEMPTS, utcnow
)
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics

logger = get_logger(__name__)

# Search horizon for the next cron fire time
_MAX_CRON_LOOKAHEAD_DAYS = 366 * 5

def parse_cron(expression: str) -> Dict[str, set]:
    """
    Expand a five-field cron expression (minute hour day-of-month month day-of-week).
    Day-of-week 0 is Sunday.

    Raises:
        ValueError: wrong field count or an unparseable field
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression needs 5 fields, got {len(fields)}: {expression!r}")

    minute, hour, day_of_month, month, day_of_week = fields
    try:
        return {
            'minute': crontab_parser(60).parse(minute),
            'hour': crontab_parser(24).parse(hour),
            'day_of_month': crontab_parser(31, 1).parse(day_of_month),
            'month': crontab_parser(12, 1).parse(month),
            'day_of_week': crontab_parser(7).parse(day_of_week),
            'dom_restricted': day_of_month != '*',
            'dow_restricted': day_of_week != '*',
        }
    except (ParseException, ValueError) as e:
        raise ValueError(f"Invalid cron expression {expression!r}: {e}") from e

def next_cron_fire(expression: str, after: datetime) -> datetime:
    """First minute strictly after `after` matching the expression (UTC, naive)."""
    spec = parse_cron(expression)
    hours = sorted(spec['hour'])
    minutes = sorted(spec['minute'])
    start = after.replace(second=0, microsecond=0)

    day = start.date()
    for _ in range(_MAX_CRON_LOOKAHEAD_DAYS):
        if day.month in spec['month'] and _day_matches(spec, day):
            for hour in hours:
                for minute in minutes:
                    candidate = datetime(day.year, day.month, day.day, hour, minute)
                    if candidate > after:
                        return candidate
        day += timedelta(days=1)

    raise ValueError(f"Cron expression {expression!r} never fires")

def _day_matches(spec: Dict, day) -> bool:
    dom_ok = day.day in spec['day_of_month']
    # date.weekday() is Monday=0; cron is Sunday=0
    dow_ok = (day.weekday() + 1) % 7 in spec['day_of_week']
    # Classic cron: when both day fields are restricted, either may match
    if spec['dom_restricted'] and spec['dow_restricted']:
        return dom_ok or dow_ok
    return dom_ok and dow_ok

class DurableScheduler:
    """
    Schedule, cancel and dispatch durable jobs.

    schedule(), cancel() and replace_cron() only stage changes in the given
    session; the caller commits, so a job can be written in the same
    transaction as the row it refers to. dispatch_due() commits its own work.
    """

    def __init__(self, db: Session, lease_seconds: int = SCHEDULE_LEASE_SECONDS,
                 max_attempts: int = SCHEDULE_MAX_ATTEMPTS):
        self.db = db
        self.lease_seconds = lease_seconds
        self.max_attempts = max_attempts

    def schedule(
        self,
        callback: str,
        payload: Optional[Dict] = None,
        delay_seconds: Optional[float] = None,
        cron: Optional[str] = None,
        label: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Register a one-shot (delay_seconds) or recurring (cron) job.

        Returns:
            Job handle
        """
        if (delay_seconds is None) == (cron is None):
            raise ValueError("Pass exactly one of delay_seconds or cron")

        now = now or utcnow()
        if cron is not None:
            kind = JOB_KIND_CRON
            run_at = next_cron_fire(cron, now)
        else:
            kind = JOB_KIND_DELAY
            run_at = now + timedelta(seconds=delay_seconds)

        job = ScheduledJob(
            job_id=uuid.uuid4().hex,
            callback=callback,
            payload=payload or {},
            kind=kind,
            cron=cron,
            label=label,
            run_at=run_at,
            status=JOB_ACTIVE,
            attempts=0
        )
        self.db.add(job)
        self.db.flush()

        logger.info("Job scheduled", job_id=job.job_id, callback=callback, kind=kind, run_at=run_at.isoformat())
        return job.job_id

    def cancel(self, job_id: str) -> bool:
        """Cancel an active job. Returns False if it was not active."""
        updated = (
            self.db.query(ScheduledJob)
            .filter(ScheduledJob.job_id == job_id, ScheduledJob.status == JOB_ACTIVE)
            .update({'status': JOB_CANCELLED, 'updated_at': utcnow()}, synchronize_session=False)
        )
        if updated:
            logger.info("Job cancelled", job_id=job_id)
        return bool(updated)

    def list_active(self, callback: Optional[str] = None, kind: Optional[str] = None) -> List[ScheduledJob]:
        query = self.db.query(ScheduledJob).filter(ScheduledJob.status == JOB_ACTIVE)
        if callback:
            query = query.filter(ScheduledJob.callback == callback)
        if kind:
            query = query.filter(ScheduledJob.kind == kind)
        return query.order_by(ScheduledJob.run_at).all()

    def replace_cron(self, callback: str, cron: str, payload: Optional[Dict] = None,
                     label: Optional[str] = None) -> str:
        """Cancel every active cron job for callback, then schedule the new one."""
        # Validate before cancelling anything
        parse_cron(cron)
        for job in self.list_active(callback=callback, kind=JOB_KIND_CRON):
            self.cancel(job.job_id)
        return self.schedule(callback, payload=payload, cron=cron, label=label)

    def cancel_all(self, callback: str, kind: Optional[str] = None) -> int:
        cancelled = 0
        for job in self.list_active(callback=callback, kind=kind):
            if self.cancel(job.job_id):
                cancelled += 1
        return cancelled

    # ---------- Dispatch ----------

    def _claim(self, job_id: str, now: datetime) -> bool:
        claimed = (
            self.db.query(ScheduledJob)
            .filter(
                ScheduledJob.job_id == job_id,
                ScheduledJob.status == JOB_ACTIVE,
                or_(ScheduledJob.locked_until.is_(None), ScheduledJob.locked_until < now)
            )
            .update(
                {'locked_until': now + timedelta(seconds=self.lease_seconds)},
                synchronize_session=False
            )
        )
        self.db.commit()
        return claimed == 1

    def dispatch_due(self, callbacks: Dict[str, Callable[[Dict], None]],
                     now: Optional[datetime] = None, limit: int = 100) -> int:
        """
        Run every job whose time has come.

        One-shot jobs are marked DONE on success. Cron jobs move to their next
        fire time whether or not the callback succeeded. A failing one-shot is
        retried on later ticks and marked FAILED after max_attempts.

        Returns:
            Number of jobs whose callback ran
        """
        now = now or utcnow()
        due_ids = [
            job_id for (job_id,) in (
                self.db.query(ScheduledJob.job_id)
                .filter(ScheduledJob.status == JOB_ACTIVE, ScheduledJob.run_at <= now)
                .order_by(ScheduledJob.run_at)
                .limit(limit)
                .all()
            )
        ]

        ran = 0
        for job_id in due_ids:
            if not self._claim(job_id, now):
                continue

            job = self.db.query(ScheduledJob).filter(ScheduledJob.job_id == job_id).one()
            handler = callbacks.get(job.callback)
            error = None

            if handler is None:
                error = f"No handler registered for callback {job.callback!r}"
            else:
                ran += 1
                try:
                    handler(dict(job.payload or {}))
                except Exception as e:
                    error = f"{type(e).__name__}: {e}"
                    logger.error("Scheduled job failed", job_id=job_id, callback=job.callback, error=error)

            self._record_result(job, now, error, unknown_callback=handler is None)
            metrics.record_job_dispatched(job.callback, 'ok' if error is None else 'failed')

        return ran

    def _record_result(self, job: ScheduledJob, now: datetime, error: Optional[str], unknown_callback: bool):
        job.locked_until = None
        job.last_run_at = now

        if job.kind == JOB_KIND_CRON:
            job.run_at = next_cron_fire(job.cron, now)
            job.last_error = error
            job.attempts = job.attempts + 1 if error else 0
        elif error is None:
            job.status = JOB_DONE
            job.last_error = None
        else:
            job.attempts += 1
            job.last_error = error
            if unknown_callback or job.attempts >= self.max_attempts:
                job.status = JOB_FAILED

        self.db.commit()
        logger.info(
            "Job dispatched",
            job_id=job.job_id,
            callback=job.callback,
            status=job.status,
            next_run=job.run_at.isoformat() if job.status == JOB_ACTIVE else None,
            error=error
        )
