"""
Push gateway contract.

A gateway takes up to GATEWAY_MAX_BATCH_SIZE tokens per call and reports one
SendOutcome per token, in the same order. Raising PushGatewayError means the
call as a whole failed (auth, network) and no per-token outcome is known.
"""

from collections.abc import Mapping
from typing import Protocol

from campus_push.features.push_notifications.domain import SendOutcome
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PushGatewayError(Exception):
    """The multicast call itself failed."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class PushGateway(Protocol):
    async def send_multicast(
        self, tokens: list[str], title: str, body: str, data: Mapping[str, str]
    ) -> list[SendOutcome]: ...

    async def close(self) -> None: ...


class DryRunGateway:
    """Logs instead of sending; every token is reported as delivered."""

    def __init__(self):
        self.sent_count = 0

    async def send_multicast(
        self, tokens: list[str], title: str, body: str, data: Mapping[str, str]
    ) -> list[SendOutcome]:
        self.sent_count += len(tokens)
        logger.info("Dry-run multicast", token_count=len(tokens), title=title)
        return [SendOutcome(success=True) for _ in tokens]

    async def close(self) -> None:
        return None
