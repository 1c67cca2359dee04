"""
Collapse (user, token) pairs into a single recipient per device token.

The same token can be registered under several accounts (re-installs,
shared devices). The owner who opened the app most recently wins; a missing
timestamp never overrides an existing entry and ties keep the first seen.
"""

from collections.abc import Iterable

from campus_push.features.push_notifications.domain import DirectoryRecord, Recipient
from campus_push.features.push_notifications.pipeline.time_window import ensure_utc


def _is_more_recent(candidate: Recipient, existing: Recipient) -> bool:
    if candidate.last_opened_app_at is None:
        return False
    if existing.last_opened_app_at is None:
        return True
    return ensure_utc(candidate.last_opened_app_at) > ensure_utc(existing.last_opened_app_at)


def dedupe(candidates: Iterable[Recipient]) -> dict[str, Recipient]:
    """Map each unique token to its canonical recipient, in first-seen order."""
    token_map: dict[str, Recipient] = {}
    for candidate in candidates:
        if not candidate.token:
            continue
        existing = token_map.get(candidate.token)
        if existing is None or _is_more_recent(candidate, existing):
            token_map[candidate.token] = candidate
    return token_map


def recipients_from_records(records: Iterable[DirectoryRecord]) -> list[Recipient]:
    """Every (owner, token) pair in the given records, unfiltered."""
    return [
        Recipient(
            token=device.token,
            owner_user_id=record.id,
            last_opened_app_at=device.last_opened_app_at,
        )
        for record in records
        for device in record.device_tokens
        if device.token
    ]
