# rentalindex/scheduler.py
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from . import config
from .errors import PipelineError
from .events import JobReporter
from .jobs.orchestrator import run_job
from .utils import logger

scheduler: Optional[BackgroundScheduler] = None


def scheduled_refresh():
    """run-all over every enabled source, then the stale sweep."""
    reporter = JobReporter(stage="scheduler")
    try:
        result = run_job("run-all", reporter=reporter)
        logger.info("Scheduled run-all finished: %s", result.dump())
    except PipelineError as e:
        logger.error("Scheduled run-all failed: %s", e)
    # stale marking only looks at last_seen_at, so it runs even after a failed refresh
    result = run_job("mark-stale", reporter=reporter)
    logger.info("Scheduled mark-stale finished: %s", result.dump())
    # nobody drains this channel
    reporter.channel.drain()


def start_scheduler() -> BackgroundScheduler:
    global scheduler
    if scheduler is not None and scheduler.running:
        return scheduler
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        scheduled_refresh, "interval", hours=config.SCHEDULE_HOURS,
        id="rental-refresh", max_instances=1, coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started (every %sh)", config.SCHEDULE_HOURS)
    return scheduler


def shutdown_scheduler():
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None
