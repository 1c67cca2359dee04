"""
Domain models for the push notification engine.

Directory records and device tokens mirror the rows the repository loads;
job definitions, messages and eligibility conditions are immutable values
built once at startup. Recipients and dispatch results are per-tick and
thrown away after the directory has been updated.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType

PERMANENT_ERROR_CLASSES = frozenset(
    {
        "invalid-registration-token",
        "registration-token-not-registered",
    }
)


class JobLevel(str, Enum):
    """Granularity at which eligibility and watermarks are tracked."""

    USER = "user"
    DEVICE = "device"


@dataclass(slots=True)
class DeviceTokenRecord:
    """One registered app installation under a user's directory entry."""

    token: str
    timezone: str | None = None
    last_opened_app_at: datetime | None = None
    user_agent: str | None = None
    last_sent: dict[str, datetime] = field(default_factory=dict)


@dataclass(slots=True)
class DirectoryRecord:
    """A user with their registered devices and user-level watermarks."""

    id: str
    device_tokens: list[DeviceTokenRecord] = field(default_factory=list)
    last_sent: dict[str, datetime] = field(default_factory=dict)

    @property
    def timezone(self) -> str | None:
        """Timezone of the first device that reported one."""
        for device in self.device_tokens:
            if device.timezone:
                return device.timezone
        return None

    @property
    def last_opened_app_at(self) -> datetime | None:
        """Most recent app open across all of the user's devices."""
        opened = [d.last_opened_app_at for d in self.device_tokens if d.last_opened_app_at]
        return max(opened) if opened else None


@dataclass(slots=True, frozen=True)
class Recipient:
    """A deduplicated dispatch target: one per physical token."""

    token: str
    owner_user_id: str
    last_opened_app_at: datetime | None = None


@dataclass(frozen=True)
class NotificationMessage:
    """Title/body plus an opaque string-to-string data payload."""

    title: str
    body: str
    data: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        coerced = {str(k): str(v) for k, v in dict(self.data or {}).items()}
        object.__setattr__(self, "data", MappingProxyType(coerced))


# Eligibility conditions are plain data; evaluation lives in pipeline.eligibility


@dataclass(frozen=True)
class AlwaysDue:
    """No condition beyond the schedule window and daily watermark."""


@dataclass(frozen=True)
class NotOpenedToday:
    """Only recipients that have not opened the app since local midnight."""


@dataclass(frozen=True)
class Custom:
    """A named rule looked up in the EligibilityRules registry."""

    rule_id: str


EligibilityCondition = AlwaysDue | NotOpenedToday | Custom


@dataclass(frozen=True)
class LocalWindow:
    """Local-hour window [start, end)."""

    start: int
    end: int


@dataclass(frozen=True)
class Schedule:
    """
    When a job fires (cron_expr, evaluated in UTC) and which local time it
    gates on. At most one of target_local_hour/window is set; with neither,
    every tick is inside the window.
    """

    cron_expr: str = "0 * * * *"
    target_local_hour: int | None = None
    window: LocalWindow | None = None


@dataclass(frozen=True)
class JobDefinition:
    """A recurring notification job. Immutable once registered."""

    name: str
    level: JobLevel
    schedule: Schedule
    message: NotificationMessage
    eligibility: EligibilityCondition = AlwaysDue()


@dataclass(slots=True, frozen=True)
class SendOutcome:
    """Per-token result reported by the push gateway."""

    success: bool
    error_class: str | None = None

    @property
    def is_permanent_failure(self) -> bool:
        return not self.success and self.error_class in PERMANENT_ERROR_CLASSES


@dataclass(slots=True)
class DispatchResult:
    """Aggregated outcome of one or more dispatched batches."""

    success_tokens: set[str] = field(default_factory=set)
    failed_tokens: set[str] = field(default_factory=set)
    transient_tokens: dict[str, str] = field(default_factory=dict)
    batches_sent: int = 0
    batches_failed: int = 0
    batch_errors: list[str] = field(default_factory=list)

    def merge(self, other: "DispatchResult") -> None:
        self.success_tokens |= other.success_tokens
        self.failed_tokens |= other.failed_tokens
        self.transient_tokens.update(other.transient_tokens)
        self.batches_sent += other.batches_sent
        self.batches_failed += other.batches_failed
        self.batch_errors.extend(other.batch_errors)
