from datetime import datetime, timezone

from beanie import Document, Insert, Replace, Save, Update, before_event
from pydantic import Field
from pymongo import IndexModel


class NotificationSettings(Document):
    """Per-user push address and alarm preferences."""

    user_id: str = Field(..., min_length=1)
    expo_push_token: str | None = None
    sound_enabled: bool = True
    vibration_enabled: bool = True
    reminder_sound: str = "default"
    max_reminder_attempts: int = 3
    snooze_duration: int = 5
    caregiver_alert_delay: int = 15
    medication_reminders_enabled: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "notification_settings"
        indexes = [IndexModel([("user_id", 1)], unique=True)]

    @before_event(Insert, Replace, Save, Update)
    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
