"""
Tests for eligibility conditions and candidate selection.
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from campus_push.features.push_notifications.domain import (
    AlwaysDue,
    Custom,
    JobDefinition,
    JobLevel,
    NotificationMessage,
    NotOpenedToday,
    Schedule,
)
from campus_push.features.push_notifications.pipeline.eligibility import (
    EligibilityFilter,
    EligibilityRules,
    UnknownEligibilityRuleError,
    default_rules,
    eligible,
    evaluate_condition,
    not_opened_today,
)
from campus_push.features.push_notifications.pipeline.time_window import UnknownTimezoneError

NEW_YORK = ZoneInfo("America/New_York")
MESSAGE = NotificationMessage(title="t", body="b")

# 20:15 local in New York on 2024-06-03
NOW = datetime(2024, 6, 4, 0, 15, tzinfo=UTC)
LOCAL_NOW = NOW.astimezone(NEW_YORK)

END_OF_DAY = JobDefinition(
    name="EndOfDay",
    level=JobLevel.DEVICE,
    schedule=Schedule(target_local_hour=20),
    message=MESSAGE,
    eligibility=NotOpenedToday(),
)


def test_not_opened_today_yesterday_is_true(make_device):
    device = make_device("t1", last_opened_app_at=datetime(2024, 6, 2, 10, tzinfo=NEW_YORK))
    assert not_opened_today(device, LOCAL_NOW) is True


def test_not_opened_today_this_morning_is_false(make_device):
    device = make_device("t1", last_opened_app_at=datetime(2024, 6, 3, 6, tzinfo=NEW_YORK))
    assert not_opened_today(device, LOCAL_NOW) is False


def test_not_opened_today_never_opened_is_true(make_device):
    assert not_opened_today(make_device("t1"), LOCAL_NOW) is True


def test_not_opened_today_exactly_midnight_counts_as_today(make_device):
    device = make_device("t1", last_opened_app_at=datetime(2024, 6, 3, 0, 0, tzinfo=NEW_YORK))
    assert not_opened_today(device, LOCAL_NOW) is False


def test_evaluate_always_due(make_device):
    assert evaluate_condition(AlwaysDue(), make_device("t1"), LOCAL_NOW) is True


def test_evaluate_custom_rule(make_device):
    rules = default_rules()
    even = LOCAL_NOW.replace(minute=16)
    odd = LOCAL_NOW.replace(minute=17)
    assert evaluate_condition(Custom("even_local_minute"), make_device("t1"), even, rules)
    assert not evaluate_condition(Custom("even_local_minute"), make_device("t1"), odd, rules)
    assert evaluate_condition(Custom("odd_local_minute"), make_device("t1"), odd, rules)


def test_evaluate_unknown_custom_rule_raises(make_device):
    with pytest.raises(UnknownEligibilityRuleError):
        evaluate_condition(Custom("nope"), make_device("t1"), LOCAL_NOW, default_rules())


def test_register_duplicate_rule_rejected():
    rules = EligibilityRules()
    rules.register("weekday", lambda subject, local_now: local_now.weekday() < 5)
    assert "weekday" in rules
    with pytest.raises(ValueError):
        rules.register("weekday", lambda subject, local_now: True)


def test_eligible_requires_window_and_watermark(make_device):
    device = make_device("t1", last_opened_app_at=datetime(2024, 6, 2, 10, tzinfo=NEW_YORK))

    tz = "America/New_York"
    an_hour_early = datetime(2024, 6, 3, 23, 15, tzinfo=UTC)

    assert eligible(END_OF_DAY, device, NOW, tz, None) is True
    assert eligible(END_OF_DAY, device, an_hour_early, tz, None) is False
    assert eligible(END_OF_DAY, device, NOW, tz, NOW.replace(minute=5)) is False
    # Sent yesterday evening (local) does not block today
    assert eligible(END_OF_DAY, device, NOW, tz, datetime(2024, 6, 3, 0, 5, tzinfo=UTC)) is True


def test_eligible_rejects_unknown_timezone(make_device):
    with pytest.raises(UnknownTimezoneError):
        eligible(END_OF_DAY, make_device("t1"), NOW, "Not/AZone", None)


def test_device_candidates_skip_missing_and_unknown_timezones(make_device, make_record):
    records = [
        make_record(
            "u1",
            make_device("ok"),
            make_device("no-tz", timezone=None),
            make_device("bad-tz", timezone="Not/AZone"),
        )
    ]

    candidates = EligibilityFilter().candidates(END_OF_DAY, records, NOW)

    assert [c.token for c in candidates] == ["ok"]
    assert candidates[0].owner_user_id == "u1"


def test_device_candidates_use_each_device_timezone(make_device, make_record):
    records = [
        make_record(
            "u1",
            make_device("ny", timezone="America/New_York"),
            make_device("la", timezone="America/Los_Angeles"),
        )
    ]

    candidates = EligibilityFilter().candidates(END_OF_DAY, records, NOW)

    assert [c.token for c in candidates] == ["ny"]


def test_device_candidates_respect_device_watermark(make_device, make_record):
    sent_today = datetime(2024, 6, 4, 0, 1, tzinfo=UTC)
    records = [
        make_record(
            "u1",
            make_device("done", last_sent={"EndOfDay": sent_today}),
            make_device("other-job", last_sent={"StartOfDay": sent_today}),
        )
    ]

    candidates = EligibilityFilter().candidates(END_OF_DAY, records, NOW)

    assert [c.token for c in candidates] == ["other-job"]


def test_user_level_uses_first_timezone_and_user_watermark(make_device, make_record):
    job = JobDefinition(
        name="Digest",
        level=JobLevel.USER,
        schedule=Schedule(target_local_hour=20),
        message=MESSAGE,
    )
    records = [
        make_record("u1", make_device("a", timezone=None), make_device("b"), make_device("c")),
        make_record("u2", make_device("d"), last_sent={"Digest": datetime(2024, 6, 4, tzinfo=UTC)}),
        make_record("u3", make_device("e", timezone="Europe/Paris")),
    ]

    candidates = EligibilityFilter().candidates(job, records, NOW)

    # u1 resolves New York from its second device and sends to every device
    assert [(c.owner_user_id, c.token) for c in candidates] == [("u1", "a"), ("u1", "b"), ("u1", "c")]


def test_user_level_not_opened_today_uses_latest_open(make_device, make_record):
    job = JobDefinition(
        name="Nudge",
        level=JobLevel.USER,
        schedule=Schedule(target_local_hour=20),
        message=MESSAGE,
        eligibility=NotOpenedToday(),
    )
    records = [
        make_record(
            "u1",
            make_device("a", last_opened_app_at=datetime(2024, 6, 1, 9, tzinfo=NEW_YORK)),
            make_device("b", last_opened_app_at=datetime(2024, 6, 3, 9, tzinfo=NEW_YORK)),
        )
    ]

    assert EligibilityFilter().candidates(job, records, NOW) == []
