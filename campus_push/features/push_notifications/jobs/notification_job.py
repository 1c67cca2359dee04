"""
Notification job runner.

One call to run_once() is one scheduler tick for one job:
load directory -> eligibility -> dedup -> batched dispatch -> apply results.
Results are applied batch by batch so a failure late in the tick never
loses watermarks or pruning for batches that already went out.
"""

from collections import defaultdict
from datetime import UTC, datetime

from campus_push.features.push_notifications.domain import DispatchResult, JobDefinition
from campus_push.features.push_notifications.pipeline.dedup import dedupe
from campus_push.features.push_notifications.pipeline.dispatcher import BatchDispatcher
from campus_push.features.push_notifications.pipeline.eligibility import EligibilityFilter
from campus_push.features.push_notifications.pipeline.result_processor import (
    DeliveryResultProcessor,
)
from campus_push.features.push_notifications.pipeline.time_window import Clock, SystemClock
from campus_push.features.push_notifications.repository.directory_repository import (
    DirectoryService,
)
from campus_push.infrastructure.observability.logging import bind_job_context, get_logger

logger = get_logger(__name__)


class NotificationJobError(Exception):
    """A job tick was aborted."""

    def __init__(self, message: str, job_name: str, phase: str, recoverable: bool = True):
        super().__init__(message)
        self.job_name = job_name
        self.phase = phase
        self.recoverable = recoverable


class NotificationJobMetrics:
    """Counters for a single job tick."""

    def __init__(self, job_name: str, start_time: datetime | None = None):
        self.job_name = job_name
        self.start_time = start_time or datetime.now(UTC)
        self.users_loaded = 0
        self.candidates = 0
        self.unique_tokens = 0
        self.tokens_sent = 0
        self.tokens_pruned = 0
        self.transient_failures = 0
        self.batches_sent = 0
        self.batches_failed = 0
        self.watermarks_updated = 0
        self.rows_removed = 0
        self.total_duration_seconds = 0.0
        self.error: str | None = None
        self.failed_phase: str | None = None

    def record_dispatch(self, result: DispatchResult) -> None:
        self.tokens_sent = len(result.success_tokens)
        self.tokens_pruned = len(result.failed_tokens)
        self.transient_failures = len(result.transient_tokens)
        self.batches_sent = result.batches_sent
        self.batches_failed = result.batches_failed

    def record_failure(self, phase: str, error: str) -> None:
        self.failed_phase = phase
        self.error = error

    def finalize(self) -> None:
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        data = {
            "job_name": self.job_name,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "users_loaded": self.users_loaded,
            "candidates": self.candidates,
            "unique_tokens": self.unique_tokens,
            "tokens_sent": self.tokens_sent,
            "tokens_pruned": self.tokens_pruned,
            "transient_failures": self.transient_failures,
            "batches_sent": self.batches_sent,
            "batches_failed": self.batches_failed,
            "watermarks_updated": self.watermarks_updated,
            "rows_removed": self.rows_removed,
        }
        if self.error:
            data["error"] = self.error
            data["failed_phase"] = self.failed_phase
        return data


class NotificationJobRunner:
    """
    Runs the dispatch pipeline for any job definition.

    Holds no per-job lock: concurrent ticks of the same job are safe because
    eligibility re-reads the watermarks and every directory write is an
    idempotent bulk update.
    """

    def __init__(
        self,
        directory: DirectoryService,
        dispatcher: BatchDispatcher,
        *,
        result_processor: DeliveryResultProcessor | None = None,
        eligibility_filter: EligibilityFilter | None = None,
        clock: Clock | None = None,
    ):
        self.directory = directory
        self.dispatcher = dispatcher
        self.result_processor = result_processor or DeliveryResultProcessor(directory)
        self.eligibility_filter = eligibility_filter or EligibilityFilter()
        self.clock = clock or SystemClock()
        self._running: dict[str, int] = defaultdict(int)
        self._last_run: dict[str, NotificationJobMetrics] = {}

    async def run_once(self, job: JobDefinition) -> dict:
        """
        Run a single tick of job.

        Returns:
            dict: Tick metrics

        Raises:
            NotificationJobError: If the tick was aborted (directory unavailable,
                unexpected failure). Partial results already applied stand.
        """
        with bind_job_context(job_name=job.name, job_level=job.level.value):
            return await self._run(job)

    async def _run(self, job: JobDefinition) -> dict:
        now = self.clock.now()
        metrics = NotificationJobMetrics(job.name, start_time=now)
        phase = "load"
        self._running[job.name] += 1

        logger.info("Starting notification job", job_name=job.name, level=job.level.value)

        try:
            records = await self.directory.find_recipients_with_tokens()
            metrics.users_loaded = len(records)

            if not records:
                logger.info("No users with device tokens", job_name=job.name)
                return self._finish(metrics)

            phase = "eligibility"
            candidates = self.eligibility_filter.candidates(job, records, now)
            metrics.candidates = len(candidates)

            phase = "dedup"
            token_map = dedupe(candidates)
            metrics.unique_tokens = len(token_map)

            if not token_map:
                logger.info("No eligible recipients", job_name=job.name)
                return self._finish(metrics)

            owners_by_token: dict[str, set[str]] = defaultdict(set)
            for candidate in candidates:
                owners_by_token[candidate.token].add(candidate.owner_user_id)

            async def apply_batch(batch: list[str], batch_result: DispatchResult) -> None:
                nonlocal phase
                phase = "apply"
                applied = await self.result_processor.apply(
                    job.name,
                    batch_result.success_tokens,
                    batch_result.failed_tokens,
                    now,
                    level=job.level,
                    owners_by_token=owners_by_token,
                )
                metrics.watermarks_updated += applied.watermarks_updated
                metrics.rows_removed += applied.tokens_removed
                phase = "dispatch"

            phase = "dispatch"
            result = await self.dispatcher.dispatch(
                token_map, job.message, on_batch=apply_batch, job_name=job.name
            )
            metrics.record_dispatch(result)

            return self._finish(metrics)

        except Exception as e:
            metrics.record_failure(phase, str(e))
            self._finish(metrics, completed=False)
            logger.error(
                "Notification job failed",
                job_name=job.name,
                phase=phase,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise NotificationJobError(
                f"{job.name} failed during {phase}: {e}", job_name=job.name, phase=phase
            ) from e

        finally:
            self._running[job.name] -= 1

    def _finish(self, metrics: NotificationJobMetrics, completed: bool = True) -> dict:
        metrics.finalize()
        self._last_run[metrics.job_name] = metrics
        data = metrics.to_dict()
        if completed:
            logger.info("Notification job completed", **data)
        return data

    def get_job_status(self, job_name: str) -> dict:
        last = self._last_run.get(job_name)
        return {
            "job_name": job_name,
            "state": "running" if self._running.get(job_name) else "idle",
            "last_run_time": last.start_time.isoformat() if last else None,
            "last_run_metrics": last.to_dict() if last else None,
        }
