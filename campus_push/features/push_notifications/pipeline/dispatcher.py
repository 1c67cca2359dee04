"""
Batch dispatcher: fans a message out to deduplicated tokens through the
push gateway, GATEWAY_MAX_BATCH_SIZE tokens per multicast call.
"""

from collections.abc import Awaitable, Callable, Mapping

from campus_push.config import GATEWAY_MAX_BATCH_SIZE
from campus_push.features.push_notifications.domain import (
    DispatchResult,
    NotificationMessage,
    Recipient,
)
from campus_push.features.push_notifications.gateway.base import PushGateway
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

BatchCallback = Callable[[list[str], DispatchResult], Awaitable[None]]


def partition(tokens: list[str], batch_size: int) -> list[list[str]]:
    """Split tokens into consecutive batches, preserving order."""
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    return [tokens[i : i + batch_size] for i in range(0, len(tokens), batch_size)]


class BatchDispatcher:
    """
    Sends one message to many tokens in gateway-sized batches.

    A failing gateway call only loses its own batch: batches already sent
    keep their results and the remaining batches are still attempted.
    """

    def __init__(self, gateway: PushGateway, batch_size: int = GATEWAY_MAX_BATCH_SIZE):
        if batch_size > GATEWAY_MAX_BATCH_SIZE:
            raise ValueError(f"batch_size cannot exceed {GATEWAY_MAX_BATCH_SIZE}")
        self.gateway = gateway
        self.batch_size = batch_size

    async def dispatch(
        self,
        token_map: Mapping[str, Recipient],
        message: NotificationMessage,
        *,
        on_batch: BatchCallback | None = None,
        job_name: str | None = None,
    ) -> DispatchResult:
        """
        Send message to every token in token_map.

        Args:
            token_map: token -> canonical recipient (from dedupe)
            message: Notification to send
            on_batch: Awaited after each batch with that batch's result, in
                submission order. Exceptions from it propagate.
            job_name: Logging context only

        Returns:
            DispatchResult aggregated over all batches
        """
        result = DispatchResult()
        tokens = list(token_map.keys())
        if not tokens:
            return result

        batches = partition(tokens, self.batch_size)
        data = {k: str(v) for k, v in message.data.items()}

        logger.info(
            "Dispatching notification",
            job_name=job_name,
            token_count=len(tokens),
            batch_count=len(batches),
            batch_size=self.batch_size,
        )

        for batch_number, batch in enumerate(batches, 1):
            batch_result = await self._send_batch(batch, batch_number, message, data, job_name)
            result.merge(batch_result)

            if on_batch is not None and batch_result.batches_sent:
                await on_batch(batch, batch_result)

        logger.info(
            "Dispatch finished",
            job_name=job_name,
            success_count=len(result.success_tokens),
            permanent_failures=len(result.failed_tokens),
            transient_failures=len(result.transient_tokens),
            batches_failed=result.batches_failed,
        )
        return result

    async def _send_batch(
        self,
        batch: list[str],
        batch_number: int,
        message: NotificationMessage,
        data: dict[str, str],
        job_name: str | None,
    ) -> DispatchResult:
        batch_result = DispatchResult()

        try:
            outcomes = await self.gateway.send_multicast(batch, message.title, message.body, data)
            if len(outcomes) != len(batch):
                raise ValueError(
                    f"Gateway returned {len(outcomes)} outcomes for {len(batch)} tokens"
                )
        except Exception as e:
            logger.error(
                "Batch send failed",
                job_name=job_name,
                phase="dispatch",
                batch_number=batch_number,
                batch_size=len(batch),
                error=str(e),
                error_type=type(e).__name__,
            )
            batch_result.batches_failed = 1
            batch_result.batch_errors.append(f"batch {batch_number}: {e}")
            return batch_result

        batch_result.batches_sent = 1
        for token, outcome in zip(batch, outcomes):
            if outcome.success:
                batch_result.success_tokens.add(token)
            elif outcome.is_permanent_failure:
                batch_result.failed_tokens.add(token)
            else:
                batch_result.transient_tokens[token] = outcome.error_class or "unknown-error"
                logger.warning(
                    "Transient delivery failure",
                    job_name=job_name,
                    batch_number=batch_number,
                    error_class=outcome.error_class,
                )

        logger.debug(
            "Batch sent",
            job_name=job_name,
            batch_number=batch_number,
            batch_size=len(batch),
            success_count=len(batch_result.success_tokens),
        )
        return batch_result
