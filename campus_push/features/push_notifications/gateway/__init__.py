"""
Push gateway implementations.
"""

from campus_push.config import Settings

from .base import DryRunGateway, PushGateway, PushGatewayError
from .fcm_gateway import FcmGateway


def build_gateway(settings: Settings) -> PushGateway:
    """Pick the gateway implementation from PUSH_MODE."""
    mode = (settings.PUSH_MODE or "fcm").strip().lower()
    if mode == "dry_run":
        return DryRunGateway()
    if mode == "fcm":
        return FcmGateway.from_settings(settings)
    raise PushGatewayError(f"Unknown PUSH_MODE '{mode}'", operation="configure", recoverable=False)


__all__ = ["DryRunGateway", "FcmGateway", "PushGateway", "PushGatewayError", "build_gateway"]
