"""
Local-time evaluation for scheduled notifications.

Every device carries an IANA timezone; a job tick is a single UTC instant
which is converted into each device's wall-clock time before any hour or
calendar-day comparison. Conversion always goes through zoneinfo so DST
shifts are handled by the tz database rather than by fixed offsets.
"""

from datetime import UTC, datetime, tzinfo
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from campus_push.features.push_notifications.domain import Schedule


class UnknownTimezoneError(ValueError):
    """Raised when a device reports a timezone the tz database doesn't know."""

    def __init__(self, timezone: str):
        super().__init__(f"Unknown timezone: {timezone!r}")
        self.timezone = timezone


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock pinned to a given instant (manual replays and tests)."""

    def __init__(self, instant: datetime):
        self.instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self.instant


class TimezoneConverter(Protocol):
    def to_local(self, instant: datetime, timezone: str) -> datetime: ...


@lru_cache(maxsize=512)
def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise UnknownTimezoneError(name) from e


class ZoneInfoConverter:
    """Converts UTC instants to wall-clock time in an IANA zone."""

    def to_local(self, instant: datetime, timezone: str) -> datetime:
        return ensure_utc(instant).astimezone(_zone(timezone))


def ensure_utc(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC (how the directory stores them)."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def local_date(instant: datetime, tz: tzinfo) -> tuple[int, int, int]:
    """Calendar date of an instant in the given zone as (year, month, day)."""
    local = ensure_utc(instant).astimezone(tz)
    return (local.year, local.month, local.day)


def effective_target_hour(local_now: datetime, hour: int) -> int:
    """
    Local hour that target hour occupies on local_now's date.

    Normally hour itself. When a spring-forward gap swallows it (02:00 in
    America/New_York on the March transition day), the first wall-clock hour
    after the gap, so the job still fires once that day.
    """
    wall = local_now.replace(hour=hour, minute=0, second=0, microsecond=0, fold=0)
    return wall.astimezone(UTC).astimezone(local_now.tzinfo).hour


def is_within_schedule(local_now: datetime, schedule: Schedule) -> bool:
    """Hour gate on an already-converted local time."""
    if schedule.target_local_hour is not None:
        return local_now.hour == effective_target_hour(local_now, schedule.target_local_hour)
    if schedule.window is not None:
        return schedule.window.start <= local_now.hour < schedule.window.end
    return True


def is_due(
    now_utc: datetime,
    timezone: str,
    schedule: Schedule,
    converter: TimezoneConverter | None = None,
) -> bool:
    """
    Whether now_utc falls inside the schedule's local window for timezone.

    target_local_hour matches the whole clock hour (HH:00-HH:59) so sub-hourly
    or slightly late ticks still land; window matches local hour in [start, end).
    """
    converter = converter or ZoneInfoConverter()
    return is_within_schedule(converter.to_local(now_utc, timezone), schedule)


def already_sent_today(last_sent: datetime | None, local_now: datetime) -> bool:
    """True iff last_sent falls on local_now's calendar date in local_now's zone."""
    if last_sent is None:
        return False
    if local_now.tzinfo is None:
        raise ValueError("local_now must be timezone-aware")
    return local_date(last_sent, local_now.tzinfo) == (
        local_now.year,
        local_now.month,
        local_now.day,
    )


def start_of_local_day(local_now: datetime) -> datetime:
    """Local midnight for local_now's calendar date, in the same zone."""
    return local_now.replace(hour=0, minute=0, second=0, microsecond=0)
