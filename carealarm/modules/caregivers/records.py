from dataclasses import dataclass
from datetime import datetime

from carealarm.shared.constants import AlertKind


@dataclass
class StoredAlertRecord:
    patient_id: str
    caregiver_id: str
    message: str
    kind: AlertKind | None = None
    medication_schedule_id: str | None = None
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    created_at: datetime | None = None
    id: str | None = None
