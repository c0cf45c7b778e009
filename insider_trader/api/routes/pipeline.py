"""
Pipeline trigger and recurring schedule endpoints.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from insider_trader.api.dependencies import get_pipeline_trigger
from insider_trader.models.base import get_db
from insider_trader.scheduler.timers import DurableScheduler
from insider_trader.utils.constants import CALLBACK_RUN_PIPELINE, JOB_KIND_CRON
from insider_trader.utils.logging import get_logger
from config.settings import get_settings

logger = get_logger(__name__)

router = APIRouter()

class ScheduleRequest(BaseModel):
    cron: str
    label: Optional[str] = None

class ScheduleResponse(BaseModel):
    job_id: str
    cron: Optional[str]
    label: Optional[str]
    run_at: datetime
    last_run_at: Optional[datetime]

    class Config:
        from_attributes = True

class CancelResponse(BaseModel):
    cancelled: int

@router.post("/run", response_class=PlainTextResponse, status_code=202)
def run_pipeline_now(
    secret: Optional[str] = Query(None, description="Shared trigger secret"),
    trigger_pipeline=Depends(get_pipeline_trigger)
):
    """Start a pipeline run in the background."""
    expected = get_settings().PIPELINE_TRIGGER_SECRET
    if not expected or secret != expected:
        return PlainTextResponse("Forbidden", status_code=403)

    task_id = trigger_pipeline()
    logger.info("Pipeline run triggered via API", task_id=task_id)
    return PlainTextResponse("Pipeline triggered — check Telegram for results.", status_code=202)

@router.get("/schedule", response_model=List[ScheduleResponse])
def list_schedules(db: Session = Depends(get_db)):
    return DurableScheduler(db).list_active(callback=CALLBACK_RUN_PIPELINE, kind=JOB_KIND_CRON)

@router.post("/schedule", response_model=ScheduleResponse)
def set_schedule(request: ScheduleRequest, db: Session = Depends(get_db)):
    """Replace the recurring pipeline schedule with a single cron (UTC)."""
    scheduler = DurableScheduler(db)
    try:
        job_id = scheduler.replace_cron(
            CALLBACK_RUN_PIPELINE,
            request.cron,
            payload={'label': request.label},
            label=request.label
        )
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    logger.info("Pipeline schedule set via API", cron=request.cron, job_id=job_id)
    return next(job for job in scheduler.list_active(callback=CALLBACK_RUN_PIPELINE) if job.job_id == job_id)

@router.delete("/schedule", response_model=CancelResponse)
def cancel_schedules(db: Session = Depends(get_db)):
    cancelled = DurableScheduler(db).cancel_all(CALLBACK_RUN_PIPELINE, kind=JOB_KIND_CRON)
    db.commit()
    return CancelResponse(cancelled=cancelled)
