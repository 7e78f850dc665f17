from datetime import datetime
from typing import Any, Dict, List

from pydantic import Field

from carealarm.modules.notifications.records import PushAddress
from carealarm.modules.notifications.reminders import ReminderRegistration
from carealarm.modules.notifications.scheduler import ScheduledNotification
from carealarm.shared.constants import NotificationAction
from carealarm.shared.schemas import CamelModel


class PendingNotificationResponse(CamelModel):
    identifier: str
    title: str
    body: str
    fire_at: datetime
    type: str | None = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_notification(cls, notification: ScheduledNotification) -> "PendingNotificationResponse":
        return cls(
            identifier=notification.identifier,
            title=notification.content.title,
            body=notification.content.body,
            fire_at=notification.fire_at,
            type=notification.payload_type,
            data=notification.content.data,
        )


class ReminderRequest(CamelModel):
    medication_name: str
    seconds: float = Field(ge=0)
    medication_id: str | None = None
    schedule_time: str | None = None


class ReminderResponse(CamelModel):
    notification_id: str
    escalation_check_id: str | None = None

    @classmethod
    def from_registration(cls, registration: ReminderRegistration) -> "ReminderResponse":
        return cls(
            notification_id=registration.notification_id,
            escalation_check_id=registration.escalation_check_id,
        )


class NotificationResponseRequest(CamelModel):
    """The user tapped a notification or one of its action buttons."""

    action: NotificationAction = NotificationAction.DEFAULT
    data: Dict[str, Any]


class NotificationResponseResult(CamelModel):
    outcome: str | None = None


class PushTokenRequest(CamelModel):
    token: str = Field(min_length=1)


class PushAddressResponse(CamelModel):
    user_id: str
    token: str | None = None
    placeholder: bool = False

    @classmethod
    def from_address(cls, address: PushAddress) -> "PushAddressResponse":
        return cls(user_id=address.owner_id, token=address.token, placeholder=address.is_placeholder)


class PendingListResponse(CamelModel):
    items: List[PendingNotificationResponse]
