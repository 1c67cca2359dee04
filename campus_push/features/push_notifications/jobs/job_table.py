"""
Notification job definitions.

The JobTable is built once at startup, validated, and handed to the
scheduler; it is never mutated afterwards. Jobs come from the built-in
defaults, the test-mode set, or a JSON file (NOTIFICATION_JOBS_FILE):

    [
      {
        "name": "EndOfDay",
        "level": "device",
        "cron_expr": "0 * * * *",
        "target_local_hour": 20,
        "message": {"title": "...", "body": "...", "data": {"screen": "home"}},
        "eligibility": {"kind": "not_opened_today"}
      }
    ]
"""

import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Literal

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, ValidationError, model_validator

from campus_push.config import Settings
from campus_push.features.push_notifications.domain import (
    AlwaysDue,
    Custom,
    EligibilityCondition,
    JobDefinition,
    JobLevel,
    LocalWindow,
    NotificationMessage,
    NotOpenedToday,
    Schedule,
)
from campus_push.features.push_notifications.pipeline.eligibility import EligibilityRules
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

HOURLY = "0 * * * *"


class JobConfigurationError(Exception):
    """Invalid job definitions; the process should refuse to start."""

    def __init__(self, message: str, job_name: str | None = None):
        super().__init__(message)
        self.job_name = job_name


class JobTable:
    """Immutable, name-indexed set of job definitions."""

    def __init__(self, jobs: Iterable[JobDefinition], rules: EligibilityRules | None = None):
        table: dict[str, JobDefinition] = {}
        for job in jobs:
            if job.name in table:
                raise JobConfigurationError(f"Duplicate job name '{job.name}'", job.name)
            validate_job(job, rules)
            table[job.name] = job
        self._jobs = table

    def __getitem__(self, name: str) -> JobDefinition:
        return self._jobs[name]

    def __contains__(self, name: str) -> bool:
        return name in self._jobs

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)

    def names(self) -> list[str]:
        return list(self._jobs)


def validate_job(job: JobDefinition, rules: EligibilityRules | None = None) -> None:
    if not job.name:
        raise JobConfigurationError("Job name is required")

    schedule = job.schedule
    if schedule.target_local_hour is not None and schedule.window is not None:
        raise JobConfigurationError("Use either target_local_hour or window, not both", job.name)
    if schedule.target_local_hour is not None and not 0 <= schedule.target_local_hour <= 23:
        raise JobConfigurationError("target_local_hour must be within 0-23", job.name)
    if schedule.window is not None and not 0 <= schedule.window.start < schedule.window.end <= 24:
        raise JobConfigurationError("window must satisfy 0 <= start < end <= 24", job.name)

    try:
        CronTrigger.from_crontab(schedule.cron_expr, timezone="UTC")
    except ValueError as e:
        raise JobConfigurationError(f"Invalid cron expression: {e}", job.name) from e

    if isinstance(job.eligibility, Custom) and (rules is None or job.eligibility.rule_id not in rules):
        raise JobConfigurationError(
            f"Unknown eligibility rule '{job.eligibility.rule_id}'", job.name
        )


def default_jobs() -> list[JobDefinition]:
    """Daily streak reminders, evaluated hourly across all timezones."""
    return [
        JobDefinition(
            name="StartOfDay",
            level=JobLevel.DEVICE,
            schedule=Schedule(cron_expr=HOURLY, target_local_hour=8),
            message=NotificationMessage(
                title="🔥 Keep your streak!",
                body="Don't forget to log today!",
            ),
            eligibility=AlwaysDue(),
        ),
        JobDefinition(
            name="EndOfDay",
            level=JobLevel.DEVICE,
            schedule=Schedule(cron_expr=HOURLY, target_local_hour=20),
            message=NotificationMessage(
                title="Missed something today?",
                body="You haven't opened the app today. Check new updates now! 💡",
            ),
            eligibility=NotOpenedToday(),
        ),
    ]


def quick_cycle_jobs() -> list[JobDefinition]:
    """Same jobs on a two-minute cadence with no local-hour gate."""
    every_two_minutes = "*/2 * * * *"
    return [
        JobDefinition(
            name="StartOfDay",
            level=JobLevel.DEVICE,
            schedule=Schedule(cron_expr=every_two_minutes),
            message=NotificationMessage(
                title="🔥 TEST: Keep your streak!",
                body="Test notification - Don't forget to log today!",
            ),
            eligibility=Custom("even_local_minute"),
        ),
        JobDefinition(
            name="EndOfDay",
            level=JobLevel.DEVICE,
            schedule=Schedule(cron_expr=every_two_minutes),
            message=NotificationMessage(
                title="TEST: Missed something today?",
                body="Test notification - Check new updates now! 💡",
            ),
            eligibility=NotOpenedToday(),
        ),
    ]


class MessageConfig(BaseModel):
    title: str
    body: str
    data: dict[str, str | int | float | bool] = Field(default_factory=dict)


class WindowConfig(BaseModel):
    start: int
    end: int


class EligibilityConfig(BaseModel):
    kind: Literal["always_due", "not_opened_today", "custom"] = "always_due"
    rule_id: str | None = None

    @model_validator(mode="after")
    def _rule_required_for_custom(self):
        if self.kind == "custom" and not self.rule_id:
            raise ValueError("rule_id is required for custom eligibility")
        return self

    def to_condition(self) -> EligibilityCondition:
        if self.kind == "not_opened_today":
            return NotOpenedToday()
        if self.kind == "custom":
            return Custom(self.rule_id)
        return AlwaysDue()


class JobConfig(BaseModel):
    name: str
    level: JobLevel = JobLevel.DEVICE
    cron_expr: str = HOURLY
    target_local_hour: int | None = None
    window: WindowConfig | None = None
    message: MessageConfig
    eligibility: EligibilityConfig = Field(default_factory=EligibilityConfig)

    def to_definition(self) -> JobDefinition:
        return JobDefinition(
            name=self.name,
            level=self.level,
            schedule=Schedule(
                cron_expr=self.cron_expr,
                target_local_hour=self.target_local_hour,
                window=LocalWindow(self.window.start, self.window.end) if self.window else None,
            ),
            message=NotificationMessage(
                title=self.message.title,
                body=self.message.body,
                data=self.message.data,
            ),
            eligibility=self.eligibility.to_condition(),
        )


def load_jobs_file(path: str | Path) -> list[JobDefinition]:
    """Parse a JSON list of job configs."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise JobConfigurationError(f"Cannot read jobs file {path}: {e}") from e

    if not isinstance(raw, list):
        raise JobConfigurationError(f"Jobs file {path} must contain a JSON list")

    try:
        return [JobConfig.model_validate(item).to_definition() for item in raw]
    except ValidationError as e:
        raise JobConfigurationError(f"Invalid jobs file {path}: {e}") from e


def load_job_table(settings: Settings, rules: EligibilityRules) -> JobTable:
    """Build the process-wide job table from settings."""
    if settings.NOTIFICATION_JOBS_FILE:
        jobs = load_jobs_file(settings.NOTIFICATION_JOBS_FILE)
        source = "file"
    elif settings.NOTIFICATION_TEST_MODE:
        jobs = quick_cycle_jobs()
        source = "test_mode"
    else:
        jobs = default_jobs()
        source = "defaults"

    table = JobTable(jobs, rules)
    for job in table:
        logger.info(
            "Registered notification job",
            job_name=job.name,
            level=job.level.value,
            cron_expr=job.schedule.cron_expr,
            target_local_hour=job.schedule.target_local_hour,
            source=source,
        )
    return table
