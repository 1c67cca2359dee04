from datetime import UTC, datetime

from campus_push.features.push_notifications.domain import Recipient
from campus_push.features.push_notifications.pipeline.dedup import dedupe, recipients_from_records

T1 = datetime(2024, 6, 1, 10, tzinfo=UTC)
T2 = datetime(2024, 6, 2, 10, tzinfo=UTC)


def test_shared_token_goes_to_most_recent_owner():
    token_map = dedupe(
        [
            Recipient("shared", "alice", T1),
            Recipient("shared", "bob", T2),
        ]
    )
    assert token_map["shared"].owner_user_id == "bob"

    # Order of arrival doesn't matter
    token_map = dedupe(
        [
            Recipient("shared", "bob", T2),
            Recipient("shared", "alice", T1),
        ]
    )
    assert token_map["shared"].owner_user_id == "bob"


def test_missing_timestamp_never_wins():
    token_map = dedupe([Recipient("shared", "alice", T1), Recipient("shared", "bob", None)])
    assert token_map["shared"].owner_user_id == "alice"

    token_map = dedupe([Recipient("shared", "bob", None), Recipient("shared", "alice", T1)])
    assert token_map["shared"].owner_user_id == "alice"


def test_tie_keeps_first_seen():
    token_map = dedupe([Recipient("shared", "alice", T1), Recipient("shared", "bob", T1)])
    assert token_map["shared"].owner_user_id == "alice"


def test_unique_tokens_in_first_seen_order():
    token_map = dedupe(
        [
            Recipient("b", "u1"),
            Recipient("a", "u2"),
            Recipient("b", "u3"),
            Recipient("", "u4"),
        ]
    )
    assert list(token_map) == ["b", "a"]


def test_recipients_from_records(make_device, make_record):
    records = [
        make_record("u1", make_device("a", last_opened_app_at=T1), make_device("b")),
        make_record("u2", make_device("a", last_opened_app_at=T2)),
    ]

    recipients = recipients_from_records(records)

    assert [(r.owner_user_id, r.token) for r in recipients] == [("u1", "a"), ("u1", "b"), ("u2", "a")]
    assert dedupe(recipients)["a"].owner_user_id == "u2"
