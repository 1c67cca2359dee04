"""
Firebase Cloud Messaging gateway (HTTP v1 API).

FCM v1 has no multicast endpoint, so a "multicast" is one request per token
issued concurrently over a shared client, with outcomes collected in input
order. FCM error codes are mapped to the gateway-neutral error classes the
dispatcher understands.
"""

import asyncio
import json
import os
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from campus_push.config import Settings
from campus_push.features.push_notifications.domain import SendOutcome
from campus_push.features.push_notifications.gateway.base import PushGatewayError
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FCM_SCOPES = ["https://www.googleapis.com/auth/firebase.messaging"]
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
FCM_ERROR_TYPE = "type.googleapis.com/google.firebase.fcm.v1.FcmError"

NETWORK_ERROR = "network-error"
AUTH_ERROR = "authentication-error"

FCM_ERROR_CLASSES = {
    "UNREGISTERED": "registration-token-not-registered",
    "INVALID_ARGUMENT": "invalid-argument",
    "SENDER_ID_MISMATCH": "mismatched-credential",
    "QUOTA_EXCEEDED": "message-rate-exceeded",
    "UNAVAILABLE": "server-unavailable",
    "INTERNAL": "internal-error",
    "THIRD_PARTY_AUTH_ERROR": "third-party-auth-error",
}

TOKEN_SCOPED_AUTH_ERRORS = {"mismatched-credential", "third-party-auth-error"}

TokenProvider = Callable[[], Awaitable[str]]


def load_service_account_info(settings: Settings) -> dict | None:
    """Service account JSON from FCM_SERVICE_ACCOUNT_JSON or FCM_SERVICE_ACCOUNT_PATH."""
    raw = (settings.FCM_SERVICE_ACCOUNT_JSON or "").strip()
    path = (settings.FCM_SERVICE_ACCOUNT_PATH or "").strip()
    if raw:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise PushGatewayError(
                f"FCM_SERVICE_ACCOUNT_JSON is not valid JSON: {e}",
                operation="load_credentials",
                recoverable=False,
            ) from e
    if path and os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    return None


def classify_error(status_code: int, payload: dict[str, Any] | None) -> str:
    """Map an FCM v1 error response onto an error class."""
    error = (payload or {}).get("error") or {}
    message = str(error.get("message", "")).lower()

    fcm_code = None
    for detail in error.get("details") or []:
        if detail.get("@type") == FCM_ERROR_TYPE and detail.get("errorCode"):
            fcm_code = detail["errorCode"]
            break
    fcm_code = fcm_code or error.get("status")

    if fcm_code == "INVALID_ARGUMENT" and "registration token" in message:
        return "invalid-registration-token"
    if fcm_code in FCM_ERROR_CLASSES:
        return FCM_ERROR_CLASSES[fcm_code]

    if status_code == 404:
        return "registration-token-not-registered"
    if status_code == 429:
        return "message-rate-exceeded"
    if status_code >= 500:
        return "server-unavailable"
    return "unknown-error"


class ServiceAccountTokenProvider:
    """Caches an OAuth access token from a google-auth service account."""

    def __init__(self, info: dict):
        self.credentials = service_account.Credentials.from_service_account_info(
            info, scopes=FCM_SCOPES
        )
        self._lock = asyncio.Lock()

    async def __call__(self) -> str:
        async with self._lock:
            if not self.credentials.valid:
                # google-auth refresh is blocking (requests transport)
                await asyncio.to_thread(self.credentials.refresh, Request())
            return self.credentials.token


class FcmGateway:
    """Push gateway speaking the FCM HTTP v1 protocol."""

    def __init__(
        self,
        project_id: str,
        token_provider: TokenProvider,
        *,
        timeout: float = 10.0,
        max_concurrency: int = 50,
        client: httpx.AsyncClient | None = None,
    ):
        if not project_id:
            raise PushGatewayError("FCM project id is required", operation="configure", recoverable=False)
        self.project_id = project_id
        self.token_provider = token_provider
        self.max_concurrency = max(1, max_concurrency)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings) -> "FcmGateway":
        info = load_service_account_info(settings)
        if not info:
            raise PushGatewayError(
                "FCM service account not configured", operation="configure", recoverable=False
            )
        project_id = settings.FCM_PROJECT_ID or info.get("project_id")
        return cls(
            project_id=project_id,
            token_provider=ServiceAccountTokenProvider(info),
            timeout=settings.FCM_REQUEST_TIMEOUT,
            max_concurrency=settings.FCM_MAX_CONCURRENT_REQUESTS,
        )

    @property
    def send_url(self) -> str:
        return FCM_SEND_URL.format(project_id=self.project_id)

    async def _access_token(self) -> str:
        try:
            token = await self.token_provider()
        except GoogleAuthError as e:
            raise PushGatewayError(
                f"FCM authentication failed: {e}", operation="authenticate", recoverable=False
            ) from e
        if not token:
            raise PushGatewayError(
                "FCM authentication returned no token", operation="authenticate", recoverable=False
            )
        return token

    async def send_multicast(
        self, tokens: list[str], title: str, body: str, data: Mapping[str, str]
    ) -> list[SendOutcome]:
        if not tokens:
            return []

        access_token = await self._access_token()
        headers = {"Authorization": f"Bearer {access_token}"}
        payload_data = {k: str(v) for k, v in (data or {}).items()}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _send(token: str) -> SendOutcome:
            async with semaphore:
                return await self._send_one(token, title, body, payload_data, headers)

        outcomes = await asyncio.gather(*[_send(token) for token in tokens])

        if all(o.error_class == AUTH_ERROR for o in outcomes):
            raise PushGatewayError("FCM rejected credentials", operation="send", recoverable=False)
        if all(o.error_class == NETWORK_ERROR for o in outcomes):
            raise PushGatewayError("FCM unreachable for entire batch", operation="send")

        # Mixed batch: delivered tokens must keep their success outcome
        auth_rejected = sum(1 for o in outcomes if o.error_class == AUTH_ERROR)
        if auth_rejected:
            logger.warning(
                "FCM rejected credentials for part of a batch",
                auth_rejected=auth_rejected,
                batch_size=len(outcomes),
            )

        return list(outcomes)

    async def _send_one(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, str],
        headers: dict[str, str],
    ) -> SendOutcome:
        message = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": data,
            }
        }
        try:
            response = await self._client.post(self.send_url, json=message, headers=headers)
        except httpx.RequestError as e:
            logger.warning("FCM request error", error=str(e), error_type=type(e).__name__)
            return SendOutcome(success=False, error_class=NETWORK_ERROR)

        if 200 <= response.status_code < 300:
            return SendOutcome(success=True)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        error_class = classify_error(response.status_code, payload)

        # 401/403 without a per-token FCM code means our own credentials were refused
        if response.status_code in (401, 403) and error_class not in TOKEN_SCOPED_AUTH_ERRORS:
            return SendOutcome(success=False, error_class=AUTH_ERROR)

        return SendOutcome(success=False, error_class=error_class)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
