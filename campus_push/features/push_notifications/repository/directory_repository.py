"""
User/device directory backed by Postgres.

Tables:
    users(id uuid primary key,
          notification_last_sent jsonb not null default '{}')
    user_device_tokens(user_id uuid references users(id) on delete cascade,
                       token text not null,
                       timezone text,
                       user_agent text,
                       last_opened_app_at timestamptz,
                       notification_last_sent jsonb not null default '{}',
                       unique (user_id, token))

Writes filter by token or user id, never by a cached snapshot, so
concurrent job ticks can apply them in any order. Watermark updates
only ever move a job's timestamp forward.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from campus_push.db.helpers import DatabaseError, execute_query, fetch_all
from campus_push.features.push_notifications.domain import DeviceTokenRecord, DirectoryRecord
from campus_push.features.push_notifications.pipeline.time_window import ensure_utc
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DirectoryUnavailableError(DatabaseError):
    """The directory could not be read or written."""


class DirectoryService(Protocol):
    async def find_recipients_with_tokens(self) -> list[DirectoryRecord]: ...

    async def find_record(self, user_id: str) -> DirectoryRecord | None: ...

    async def bulk_set_last_sent(
        self, job_name: str, tokens: Iterable[str], timestamp: datetime
    ) -> int: ...

    async def bulk_set_user_last_sent(
        self, job_name: str, user_ids: Iterable[str], timestamp: datetime
    ) -> int: ...

    async def bulk_remove_tokens(self, tokens: Iterable[str]) -> int: ...


def _parse_watermarks(raw: dict[str, Any] | None) -> dict[str, datetime]:
    watermarks: dict[str, datetime] = {}
    for job_name, value in (raw or {}).items():
        if isinstance(value, datetime):
            watermarks[job_name] = ensure_utc(value)
        elif isinstance(value, str) and value:
            try:
                watermarks[job_name] = ensure_utc(datetime.fromisoformat(value))
            except ValueError:
                logger.warning("Ignoring malformed watermark", job_name=job_name, value=value)
    return watermarks


# Advances $.job_name only when the stored value is missing or older
_ADVANCE_WATERMARK = """
    notification_last_sent = jsonb_set(
        COALESCE(notification_last_sent, '{}'::jsonb),
        ARRAY[%(job_name)s],
        to_jsonb(%(ts)s::timestamptz)
    )
"""

_WATERMARK_IS_OLDER = """
    (
        notification_last_sent ->> %(job_name)s IS NULL
        OR (notification_last_sent ->> %(job_name)s)::timestamptz < %(ts)s::timestamptz
    )
"""


class PostgresDirectory:
    """Directory service implementation over the shared connection pool."""

    RECORD_QUERY = """
        SELECT u.id AS user_id,
               u.notification_last_sent AS user_last_sent,
               t.token,
               t.timezone,
               t.user_agent,
               t.last_opened_app_at,
               t.notification_last_sent AS token_last_sent
        FROM users u
        JOIN user_device_tokens t ON t.user_id = u.id
        WHERE t.token IS NOT NULL AND t.token <> ''
        {where}
        ORDER BY u.id, t.token
    """

    @classmethod
    def _rows_to_records(cls, rows: list[dict[str, Any]]) -> list[DirectoryRecord]:
        records: dict[str, DirectoryRecord] = {}
        for row in rows:
            user_id = str(row["user_id"])
            record = records.get(user_id)
            if record is None:
                record = DirectoryRecord(
                    id=user_id,
                    last_sent=_parse_watermarks(row.get("user_last_sent")),
                )
                records[user_id] = record

            last_opened = row.get("last_opened_app_at")
            record.device_tokens.append(
                DeviceTokenRecord(
                    token=row["token"],
                    timezone=row.get("timezone") or None,
                    last_opened_app_at=ensure_utc(last_opened) if last_opened else None,
                    user_agent=row.get("user_agent"),
                    last_sent=_parse_watermarks(row.get("token_last_sent")),
                )
            )
        return list(records.values())

    async def _fetch(self, query: str, params: tuple | dict, operation: str) -> list[dict]:
        try:
            return await fetch_all(query, params)
        except (DatabaseError, RuntimeError) as e:
            raise DirectoryUnavailableError(
                f"Directory read failed: {e}", operation=operation
            ) from e

    async def _execute(self, query: str, params: dict, operation: str) -> int:
        try:
            return await execute_query(query, params)
        except (DatabaseError, RuntimeError) as e:
            raise DirectoryUnavailableError(
                f"Directory write failed: {e}", operation=operation
            ) from e

    async def find_recipients_with_tokens(self) -> list[DirectoryRecord]:
        """All users with at least one registered device token."""
        rows = await self._fetch(
            self.RECORD_QUERY.format(where=""), (), "find_recipients_with_tokens"
        )
        records = self._rows_to_records(rows)
        logger.debug("Directory loaded", user_count=len(records), token_count=len(rows))
        return records

    async def find_record(self, user_id: str) -> DirectoryRecord | None:
        rows = await self._fetch(
            self.RECORD_QUERY.format(where="AND u.id::text = %s"), (user_id,), "find_record"
        )
        records = self._rows_to_records(rows)
        return records[0] if records else None

    async def bulk_set_last_sent(
        self, job_name: str, tokens: Iterable[str], timestamp: datetime
    ) -> int:
        """Stamp the job watermark on every record holding one of tokens."""
        token_list = sorted(set(tokens))
        if not token_list:
            return 0

        query = f"""
            UPDATE user_device_tokens
            SET {_ADVANCE_WATERMARK}
            WHERE token = ANY(%(tokens)s) AND {_WATERMARK_IS_OLDER}
        """
        params = {"job_name": job_name, "ts": ensure_utc(timestamp), "tokens": token_list}
        updated = await self._execute(query, params, "bulk_set_last_sent")

        logger.info(
            "Device watermarks advanced",
            job_name=job_name,
            token_count=len(token_list),
            rows_updated=updated,
        )
        return updated

    async def bulk_set_user_last_sent(
        self, job_name: str, user_ids: Iterable[str], timestamp: datetime
    ) -> int:
        """Stamp the job watermark on the given user records."""
        id_list = sorted(set(user_ids))
        if not id_list:
            return 0

        query = f"""
            UPDATE users
            SET {_ADVANCE_WATERMARK}
            WHERE id::text = ANY(%(user_ids)s) AND {_WATERMARK_IS_OLDER}
        """
        params = {"job_name": job_name, "ts": ensure_utc(timestamp), "user_ids": id_list}
        updated = await self._execute(query, params, "bulk_set_user_last_sent")

        logger.info(
            "User watermarks advanced",
            job_name=job_name,
            user_count=len(id_list),
            rows_updated=updated,
        )
        return updated

    async def bulk_remove_tokens(self, tokens: Iterable[str]) -> int:
        """Delete every registration of the given tokens, across all users."""
        token_list = sorted(set(tokens))
        if not token_list:
            return 0

        query = "DELETE FROM user_device_tokens WHERE token = ANY(%(tokens)s)"
        removed = await self._execute(query, {"tokens": token_list}, "bulk_remove_tokens")

        logger.info("Stale device tokens removed", token_count=len(token_list), rows_removed=removed)
        return removed
