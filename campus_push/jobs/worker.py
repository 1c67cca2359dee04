"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and runs it:

    notification_scheduler  run the cron scheduler until stopped
    notification_tick       run every notification job once and exit
"""

import asyncio
import os
import sys
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from campus_push.config import settings
from campus_push.db.pool import db_pool
from campus_push.features.push_notifications.services.engine import PushEngine
from campus_push.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


@asynccontextmanager
async def engine_session() -> AsyncGenerator[PushEngine, None]:
    """Database pool plus a configured engine, torn down in reverse order."""
    await db_pool.initialize()
    try:
        engine = PushEngine.from_settings(settings)
        try:
            yield engine
        finally:
            await engine.close()
    finally:
        await db_pool.close()


async def start_notification_scheduler() -> None:
    async with engine_session() as engine:
        engine.scheduler.start()
        logger.info("Notification scheduler worker running", jobs=engine.job_table.names())
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            logger.info("Notification scheduler worker stopped")
            raise


async def run_notification_tick() -> None:
    async with engine_session() as engine:
        results = await engine.scheduler.run_all()
        for metrics in results.values():
            logger.info("Notification tick result", **metrics)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "notification_scheduler": start_notification_scheduler,
    "notification_tick": run_notification_tick,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "notification_scheduler").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=not settings.debug)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
