from __future__ import annotations
import asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo
import structlog

from .config import settings
from .errors import IngestError
from .pipeline.orchestrator import run_daily_ingest

_log = structlog.get_logger()
_scheduler: AsyncIOScheduler | None = None

DAILY_JOB_ID = "daily_ingest"

def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=ZoneInfo(settings.local_tz))
    return _scheduler

def schedule_jobs(sched: AsyncIOScheduler | None = None, start: bool = True) -> AsyncIOScheduler:
    sched = sched or get_scheduler()
    tz = ZoneInfo(settings.local_tz)
    # Weekdays only; DTS is published for business days
    sched.add_job(
        run_daily,
        CronTrigger(day_of_week="mon-fri", hour=settings.daily_fetch_hour, minute=settings.daily_fetch_minute, timezone=tz),
        id=DAILY_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if start:
        sched.start()
        _log.info("scheduler_started", jobs=[job.id for job in sched.get_jobs()])
    return sched

def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None

async def run_daily():
    try:
        await asyncio.to_thread(run_daily_ingest)
    except IngestError as exc:
        _log.error("scheduled_daily_ingest_failed", **exc.to_dict())
