from datetime import datetime, timezone

from beanie import Document, Insert, Replace, Save, Update, before_event
from pydantic import Field
from pymongo import IndexModel

from carealarm.shared.constants import AdministrationStatus


class AlarmAttempt(Document):
    """One logged step of the reminder sequence for a dose."""

    patient_id: str = Field(..., min_length=1)
    medication_schedule_id: str = Field(..., min_length=1)
    medication_name: str | None = None
    scheduled_time: datetime
    alarm_attempt: int = Field(..., ge=1, le=3)
    alarm_sent_at: datetime
    patient_responded: bool = False
    response_time: datetime | None = None
    caregiver_alerted: bool = False
    caregiver_alert_sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "medication_alarms"
        indexes = [
            IndexModel(
                [
                    ("medication_schedule_id", 1),
                    ("scheduled_time", 1),
                    ("alarm_attempt", 1),
                ],
                unique=True,
            ),
            IndexModel([("medication_schedule_id", 1), ("patient_responded", 1)]),
            IndexModel(
                [
                    ("alarm_attempt", 1),
                    ("patient_responded", 1),
                    ("caregiver_alerted", 1),
                    ("alarm_sent_at", 1),
                ]
            ),
        ]

    @before_event(Insert, Replace, Save, Update)
    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


class AdministrationLog(Document):
    """A patient's record of taking (or skipping) a medication."""

    user_id: str = Field(..., min_length=1)
    medication_id: str = Field(..., min_length=1)
    status: AdministrationStatus = AdministrationStatus.TAKEN
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "medication_administration_logs"
        indexes = [
            IndexModel(
                [("user_id", 1), ("medication_id", 1), ("status", 1), ("taken_at", -1)]
            )
        ]
