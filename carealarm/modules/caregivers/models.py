from datetime import datetime, timezone

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

from carealarm.shared.constants import AlertKind, ConnectionStatus, Role


class CaregiverConnection(Document):
    """Patient to caregiver edge, managed by the account flows."""

    patient_id: str = Field(..., min_length=1)
    caregiver_id: str = Field(..., min_length=1)
    connection_status: ConnectionStatus = ConnectionStatus.ACTIVE

    class Settings:
        name = "patient_caregiver_connections"
        indexes = [
            IndexModel([("patient_id", 1), ("caregiver_id", 1)], unique=True),
            IndexModel([("patient_id", 1), ("connection_status", 1)]),
        ]


class Profile(Document):
    user_id: str = Field(..., min_length=1)
    first_name: str | None = None
    last_name: str | None = None
    role: Role = Role.PATIENT

    class Settings:
        name = "profiles"
        indexes = [IndexModel([("user_id", 1)], unique=True)]


class CaregiverAlert(Document):
    """Fallback alert row waiting for the caregiver's device to pick it up."""

    patient_id: str = Field(..., min_length=1)
    caregiver_id: str = Field(..., min_length=1)
    # Left null by the pipeline so the row never depends on the schedule table.
    medication_schedule_id: str | None = None
    alert_type: AlertKind | None = None
    alert_message: str
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "caregiver_alerts"
        indexes = [
            IndexModel([("caregiver_id", 1), ("acknowledged", 1), ("created_at", -1)]),
            IndexModel([("medication_schedule_id", 1), ("acknowledged", 1)]),
        ]
