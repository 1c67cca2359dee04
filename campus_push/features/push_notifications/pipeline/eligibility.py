"""
Eligibility evaluation for notification jobs.

A recipient is eligible when the tick is inside the job's local window, the
job hasn't already been delivered on the recipient's local calendar day, and
the job's condition holds. Conditions are data (AlwaysDue, NotOpenedToday,
Custom(rule_id)); Custom rules are plain functions registered by id.
"""

from collections.abc import Callable, Iterator, Mapping
from datetime import datetime
from typing import Any

from campus_push.features.push_notifications.domain import (
    AlwaysDue,
    Custom,
    DirectoryRecord,
    EligibilityCondition,
    JobDefinition,
    JobLevel,
    NotOpenedToday,
    Recipient,
)
from campus_push.features.push_notifications.pipeline.time_window import (
    TimezoneConverter,
    UnknownTimezoneError,
    ZoneInfoConverter,
    already_sent_today,
    ensure_utc,
    is_due,
    start_of_local_day,
)
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# (subject, local_now) -> bool; subject is a DeviceTokenRecord or DirectoryRecord
RuleFunc = Callable[[Any, datetime], bool]


class UnknownEligibilityRuleError(KeyError):
    """Raised when a Custom condition references an unregistered rule."""


class EligibilityRules:
    """Registry of named custom eligibility rules."""

    def __init__(self, rules: Mapping[str, RuleFunc] | None = None):
        self._rules: dict[str, RuleFunc] = dict(rules or {})

    def register(self, rule_id: str, func: RuleFunc) -> None:
        if rule_id in self._rules:
            raise ValueError(f"Eligibility rule '{rule_id}' already registered")
        self._rules[rule_id] = func

    def get(self, rule_id: str) -> RuleFunc:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise UnknownEligibilityRuleError(rule_id) from None

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self._rules


def not_opened_today(subject: Any, local_now: datetime) -> bool:
    """True if the app was never opened, or last opened before local midnight."""
    last_opened = getattr(subject, "last_opened_app_at", None)
    if last_opened is None:
        return True
    return ensure_utc(last_opened) < start_of_local_day(local_now)


def default_rules() -> EligibilityRules:
    """Built-in custom rules, usable from job config files."""
    return EligibilityRules(
        {
            "even_local_minute": lambda subject, local_now: local_now.minute % 2 == 0,
            "odd_local_minute": lambda subject, local_now: local_now.minute % 2 == 1,
        }
    )


def evaluate_condition(
    condition: EligibilityCondition,
    subject: Any,
    local_now: datetime,
    rules: EligibilityRules | None = None,
) -> bool:
    """Interpret an eligibility condition for one subject."""
    if isinstance(condition, AlwaysDue):
        return True
    if isinstance(condition, NotOpenedToday):
        return not_opened_today(subject, local_now)
    if isinstance(condition, Custom):
        if rules is None:
            raise UnknownEligibilityRuleError(condition.rule_id)
        return bool(rules.get(condition.rule_id)(subject, local_now))
    raise TypeError(f"Unsupported eligibility condition: {condition!r}")


def eligible(
    job: JobDefinition,
    subject: Any,
    now_utc: datetime,
    timezone: str,
    last_sent: datetime | None,
    rules: EligibilityRules | None = None,
    converter: TimezoneConverter | None = None,
) -> bool:
    """
    is_due AND NOT already-sent-today AND job condition.

    Raises:
        UnknownTimezoneError: If timezone is not in the tz database
    """
    converter = converter or ZoneInfoConverter()
    if not is_due(now_utc, timezone, job.schedule, converter):
        return False
    local_now = converter.to_local(now_utc, timezone)
    if already_sent_today(last_sent, local_now):
        return False
    return evaluate_condition(job.eligibility, subject, local_now, rules)


class EligibilityFilter:
    """Turns directory records into dispatch candidates for one job tick."""

    def __init__(
        self,
        rules: EligibilityRules | None = None,
        converter: TimezoneConverter | None = None,
    ):
        self.rules = rules or default_rules()
        self.converter = converter or ZoneInfoConverter()

    def _eligible(
        self,
        job: JobDefinition,
        subject: Any,
        now_utc: datetime,
        timezone: str | None,
        last_sent: datetime | None,
    ) -> bool:
        if not timezone:
            return False
        try:
            return eligible(job, subject, now_utc, timezone, last_sent, self.rules, self.converter)
        except UnknownTimezoneError:
            logger.debug("Skipping recipient with unknown timezone", timezone=timezone)
            return False

    def device_candidates(
        self, job: JobDefinition, records: list[DirectoryRecord], now_utc: datetime
    ) -> Iterator[Recipient]:
        for record in records:
            for device in record.device_tokens:
                if not device.token:
                    continue
                last_sent = device.last_sent.get(job.name)
                if self._eligible(job, device, now_utc, device.timezone, last_sent):
                    yield Recipient(
                        token=device.token,
                        owner_user_id=record.id,
                        last_opened_app_at=device.last_opened_app_at,
                    )

    def user_candidates(
        self, job: JobDefinition, records: list[DirectoryRecord], now_utc: datetime
    ) -> Iterator[Recipient]:
        for record in records:
            last_sent = record.last_sent.get(job.name)
            if not self._eligible(job, record, now_utc, record.timezone, last_sent):
                continue
            for device in record.device_tokens:
                if device.token:
                    yield Recipient(
                        token=device.token,
                        owner_user_id=record.id,
                        last_opened_app_at=device.last_opened_app_at,
                    )

    def candidates(
        self, job: JobDefinition, records: list[DirectoryRecord], now_utc: datetime
    ) -> list[Recipient]:
        if job.level is JobLevel.USER:
            return list(self.user_candidates(job, records, now_utc))
        return list(self.device_candidates(job, records, now_utc))
