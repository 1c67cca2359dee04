"""
Applies dispatch outcomes back onto the directory.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from campus_push.features.push_notifications.domain import JobLevel
from campus_push.features.push_notifications.repository.directory_repository import (
    DirectoryService,
)
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class ApplyOutcome:
    watermarks_updated: int = 0
    tokens_removed: int = 0


class DeliveryResultProcessor:
    """
    Stamps watermarks for delivered tokens and prunes dead registrations.

    Every write is a filter-based bulk statement (by token or by user id),
    so applying the same outcome twice leaves the directory unchanged.
    """

    def __init__(self, directory: DirectoryService):
        self.directory = directory

    async def apply(
        self,
        job_name: str,
        success_tokens: Iterable[str],
        failed_tokens: Iterable[str],
        now: datetime,
        *,
        level: JobLevel = JobLevel.DEVICE,
        owners_by_token: Mapping[str, Iterable[str]] | None = None,
    ) -> ApplyOutcome:
        success = set(success_tokens)
        failed = set(failed_tokens) - success
        outcome = ApplyOutcome()

        if success:
            if level is JobLevel.USER:
                owners = owners_by_token or {}
                user_ids = {uid for token in success for uid in owners.get(token, ())}
                outcome.watermarks_updated = await self.directory.bulk_set_user_last_sent(
                    job_name, user_ids, now
                )
            else:
                outcome.watermarks_updated = await self.directory.bulk_set_last_sent(
                    job_name, success, now
                )

        if failed:
            outcome.tokens_removed = await self.prune(failed)

        return outcome

    async def prune(self, failed_tokens: Iterable[str]) -> int:
        """Remove permanently failed tokens from every owning record."""
        tokens = set(failed_tokens)
        if not tokens:
            return 0
        removed = await self.directory.bulk_remove_tokens(tokens)
        logger.info("Pruned dead registrations", token_count=len(tokens), rows_removed=removed)
        return removed
