"""
Domain subpackage for push notifications.
"""

from .models import (
    PERMANENT_ERROR_CLASSES,
    AlwaysDue,
    Custom,
    DeviceTokenRecord,
    DirectoryRecord,
    DispatchResult,
    EligibilityCondition,
    JobDefinition,
    JobLevel,
    LocalWindow,
    NotificationMessage,
    NotOpenedToday,
    Recipient,
    Schedule,
    SendOutcome,
)

__all__ = [
    "PERMANENT_ERROR_CLASSES",
    "AlwaysDue",
    "Custom",
    "DeviceTokenRecord",
    "DirectoryRecord",
    "DispatchResult",
    "EligibilityCondition",
    "JobDefinition",
    "JobLevel",
    "LocalWindow",
    "NotificationMessage",
    "NotOpenedToday",
    "Recipient",
    "Schedule",
    "SendOutcome",
]
