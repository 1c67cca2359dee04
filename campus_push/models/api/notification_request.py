# campus_push/models/api/notification_request.py
"""
Admin notification API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field

from campus_push.features.push_notifications.domain import NotificationMessage


class NotificationPayload(BaseModel):
    """Message content for a manual send."""

    title: str = Field(..., min_length=1, max_length=200, description="Notification title")
    body: str = Field(..., min_length=1, max_length=1000, description="Notification body")
    data: dict[str, str | int | float | bool] = Field(
        default_factory=dict, description="Extra data payload (values sent as strings)"
    )

    def to_message(self) -> NotificationMessage:
        return NotificationMessage(title=self.title, body=self.body, data=self.data)


class DeviceNotificationRequest(NotificationPayload):
    """Send to a single registered device of a user."""

    user_id: str = Field(..., min_length=1, description="Owner of the device")
    token: str = Field(..., min_length=1, description="Registered device token")
