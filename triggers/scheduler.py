"""
Scan Scheduler — AsyncIOScheduler running the full document scan on the
SCAN_INTERVAL crontab, plus once at startup.

Runs on the uvicorn event loop; started and stopped by the dashboard's
startup/shutdown events.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from config.settings import ScanConfig
from orchestrator.pipeline import IntakePipeline

logger = logging.getLogger("scribe.scheduler")


def _job_listener(event):
    """Log job execution results."""
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed: {event.exception}",
            exc_info=event.traceback,
        )
    else:
        logger.info(f"Job {event.job_id} completed successfully")


class ScanScheduler:

    def __init__(self, pipeline: IntakePipeline, settings: ScanConfig):
        self.pipeline = pipeline
        self.settings = settings
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        """Create and start the scheduler. Idempotent — safe to call twice."""
        if self.running:
            logger.warning("Scheduler already running — skipping start")
            return

        self._scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            }
        )
        self._scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        self._scheduler.add_job(
            self.pipeline.scan_documents,
            CronTrigger.from_crontab(self.settings.interval),
            id="document_scan", name="Document scan",
            replace_existing=True,
        )
        logger.info(f"Registered: document_scan (cron '{self.settings.interval}')")

        if self.settings.run_on_startup:
            self._scheduler.add_job(
                self.pipeline.scan_documents,
                DateTrigger(run_date=datetime.now(timezone.utc)),
                id="startup_scan", name="Initial document scan",
                replace_existing=True,
            )
            logger.info("Registered: startup_scan (once)")

        self._scheduler.start()
        logger.info(f"AsyncIOScheduler started with {len(self._scheduler.get_jobs())} jobs")

    def stop(self):
        """Graceful shutdown. Idempotent."""
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("AsyncIOScheduler stopped")
        self._scheduler = None

    def status(self) -> dict:
        """Scheduler health for /api/scheduler-status."""
        if not self.running:
            return {"running": False, "jobs": [], "job_count": 0}

        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })

        return {
            "running": True,
            "job_count": len(jobs),
            "jobs": jobs,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
