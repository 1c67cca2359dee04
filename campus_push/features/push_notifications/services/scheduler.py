"""
Notification job scheduler.

Registers every job in the JobTable with an APScheduler AsyncIOScheduler.
Each cron tick runs the job's dispatch pipeline; a failed tick is logged
and never takes the scheduler (or other jobs) down with it.
"""

import asyncio
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from campus_push.features.push_notifications.jobs.job_table import JobTable
from campus_push.features.push_notifications.jobs.notification_job import NotificationJobRunner
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MISFIRE_GRACE_SECONDS = 60


class JobScheduler:
    """Drives the notification jobs on their cron schedules (UTC)."""

    def __init__(
        self,
        job_table: JobTable,
        runner: NotificationJobRunner,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.job_table = job_table
        self.runner = runner
        self._scheduler = scheduler
        self.started_at: datetime | None = None
        self._started = False

    @property
    def running(self) -> bool:
        return self._started and self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register all jobs and start ticking. Must be called inside a running event loop."""
        if self.running:
            logger.warning("Notification scheduler already running")
            return

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")

        for job in self.job_table:
            self._scheduler.add_job(
                self._tick,
                trigger=CronTrigger.from_crontab(job.schedule.cron_expr, timezone="UTC"),
                args=[job.name],
                id=job.name,
                name=job.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=MISFIRE_GRACE_SECONDS,
            )

        self._scheduler.start()
        self._started = True
        self.started_at = datetime.now(UTC)
        logger.info("Notification scheduler started", jobs=self.job_table.names())

    async def shutdown(self, wait: bool = False) -> None:
        """Stop ticking; returns once the scheduler has actually stopped."""
        if not self.running:
            return
        self._started = False
        self._scheduler.shutdown(wait=wait)
        # AsyncIOScheduler.shutdown runs on the next loop iteration
        await asyncio.sleep(0)
        logger.info("Notification scheduler stopped")

    async def _tick(self, job_name: str) -> None:
        """Scheduled entry point; swallows failures so the next tick still runs."""
        try:
            await self.run_now(job_name)
        except Exception as e:
            logger.error(
                "Scheduled notification tick failed",
                job_name=job_name,
                phase=getattr(e, "phase", "unknown"),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def run_now(self, job_name: str) -> dict:
        """
        Run one tick of job_name immediately, outside the cron schedule.

        Raises:
            KeyError: If job_name is not in the job table
            NotificationJobError: If the tick was aborted
        """
        job = self.job_table[job_name]
        return await self.runner.run_once(job)

    async def run_all(self) -> dict[str, dict]:
        """Run one tick of every job in table order; a failed job does not stop the rest."""
        results: dict[str, dict] = {}
        for job in self.job_table:
            try:
                results[job.name] = await self.run_now(job.name)
            except Exception as e:
                results[job.name] = {"job_name": job.name, "error": str(e)}
        return results

    def next_run_time(self, job_name: str) -> datetime | None:
        if self._scheduler is None:
            return None
        scheduled = self._scheduler.get_job(job_name)
        return getattr(scheduled, "next_run_time", None) if scheduled else None

    def get_status(self) -> dict:
        jobs = []
        for job in self.job_table:
            status = self.runner.get_job_status(job.name)
            next_run = self.next_run_time(job.name)
            status.update(
                {
                    "level": job.level.value,
                    "cron_expr": job.schedule.cron_expr,
                    "target_local_hour": job.schedule.target_local_hour,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
            jobs.append(status)

        return {
            "scheduler_running": self.running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "jobs": jobs,
        }

    def health_check(self) -> dict:
        """Healthy when running and no job's most recent tick was aborted."""
        try:
            status = self.get_status()
            failing = [
                job["job_name"]
                for job in status["jobs"]
                if (job.get("last_run_metrics") or {}).get("error")
            ]
            health = {
                "healthy": status["scheduler_running"] and not failing,
                "service": "notification_scheduler",
                "scheduler_running": status["scheduler_running"],
                "job_count": len(status["jobs"]),
            }
            if failing:
                health["failing_jobs"] = failing
            return health
        except Exception as e:
            logger.error("Notification scheduler health check failed", error=str(e))
            return {"healthy": False, "service": "notification_scheduler", "error": str(e)}
