"""
Ad-hoc sends outside the job schedule (admin surface).

Manual sends dedupe and prune like scheduled jobs but never stamp
watermarks, so they do not suppress the day's scheduled reminders.
"""

from campus_push.features.push_notifications.domain import (
    DirectoryRecord,
    DispatchResult,
    NotificationMessage,
)
from campus_push.features.push_notifications.pipeline.dedup import dedupe, recipients_from_records
from campus_push.features.push_notifications.pipeline.dispatcher import BatchDispatcher
from campus_push.features.push_notifications.pipeline.result_processor import (
    DeliveryResultProcessor,
)
from campus_push.features.push_notifications.repository.directory_repository import (
    DirectoryService,
)
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ManualSendError(Exception):
    """A manual send could not be carried out."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ManualSender:
    """Sends one message to a user, a single device, or everyone."""

    def __init__(
        self,
        directory: DirectoryService,
        dispatcher: BatchDispatcher,
        result_processor: DeliveryResultProcessor | None = None,
    ):
        self.directory = directory
        self.dispatcher = dispatcher
        self.result_processor = result_processor or DeliveryResultProcessor(directory)

    async def _user_record(self, user_id: str, operation: str) -> DirectoryRecord:
        record = await self.directory.find_record(user_id)
        if record is None or not record.device_tokens:
            raise ManualSendError(f"No device tokens found for user {user_id}", operation=operation)
        return record

    async def send_to_user(self, user_id: str, message: NotificationMessage) -> dict:
        """Send to every device registered for user_id."""
        record = await self._user_record(user_id, "send_to_user")
        return await self._send(
            [record], message, operation="send_to_user", user_id=user_id
        )

    async def send_to_device(self, user_id: str, token: str, message: NotificationMessage) -> dict:
        """Send to one device, which must be registered for user_id."""
        record = await self._user_record(user_id, "send_to_device")
        device = next((d for d in record.device_tokens if d.token == token), None)
        if device is None:
            raise ManualSendError(
                f"Device token not registered for user {user_id}", operation="send_to_device"
            )

        single = DirectoryRecord(id=record.id, device_tokens=[device], last_sent=record.last_sent)
        summary = await self._send([single], message, operation="send_to_device", user_id=user_id)
        summary["user_agent"] = device.user_agent
        return summary

    async def broadcast(self, message: NotificationMessage) -> dict:
        """Send to every unique device token in the directory."""
        records = await self.directory.find_recipients_with_tokens()
        if not records:
            raise ManualSendError("No device tokens registered", operation="broadcast")
        return await self._send(records, message, operation="broadcast")

    async def _send(
        self,
        records: list[DirectoryRecord],
        message: NotificationMessage,
        *,
        operation: str,
        user_id: str | None = None,
    ) -> dict:
        token_map = dedupe(recipients_from_records(records))

        async def prune_batch(batch: list[str], batch_result: DispatchResult) -> None:
            await self.result_processor.prune(batch_result.failed_tokens)

        result = await self.dispatcher.dispatch(
            token_map, message, on_batch=prune_batch, job_name=operation
        )

        summary = {
            "operation": operation,
            "unique_tokens": len(token_map),
            "sent": len(result.success_tokens),
            "pruned": len(result.failed_tokens),
            "transient_failures": len(result.transient_tokens),
            "batches_failed": result.batches_failed,
        }
        logger.info("Manual send completed", user_id=user_id, **summary)
        return summary
