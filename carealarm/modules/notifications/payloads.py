"""Typed notification payloads, discriminated by their `type` tag."""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from carealarm.shared.schemas import CamelModel


class MedicationReminderPayload(CamelModel):
    type: Literal["medication-reminder"] = "medication-reminder"
    patient_id: str
    medication_id: str | None = None
    medication_name: str
    schedule_time: str | None = None


class MedicationAlarmPayload(CamelModel):
    type: Literal["medication-alarm"] = "medication-alarm"
    medication_schedule_id: str
    patient_id: str | None = None
    attempt: int | None = None
    alarm_id: str | None = None
    scheduled_time: datetime | None = None
    snoozed: bool = False


class CaregiverCheckPayload(CamelModel):
    type: Literal["caregiver-check"] = "caregiver-check"
    medication_schedule_id: str
    patient_id: str
    alarm_id: str
    medication_name: str
    scheduled_time: datetime


class EscalationCheckPayload(CamelModel):
    type: Literal["escalation-check"] = "escalation-check"
    original_notification_id: str
    patient_id: str
    medication_id: str
    medication_name: str = "Unknown Medication"
    schedule_time: str | None = None
    check_only: bool = True


class CaregiverAlertPayload(CamelModel):
    type: Literal["caregiver-alert"] = "caregiver-alert"
    patient_id: str
    medication_schedule_id: str | None = None
    patient_name: str | None = None
    medication_name: str | None = None
    caregiver_id: str | None = None


class CaregiverAlertLocalPayload(CamelModel):
    type: Literal["caregiver-alert-local"] = "caregiver-alert-local"
    alert_id: str
    patient_id: str
    medication_schedule_id: str | None = None
    caregiver_id: str | None = None


NotificationPayload = Annotated[
    Union[
        MedicationReminderPayload,
        MedicationAlarmPayload,
        CaregiverCheckPayload,
        EscalationCheckPayload,
        CaregiverAlertPayload,
        CaregiverAlertLocalPayload,
    ],
    Field(discriminator="type"),
]

payload_adapter: TypeAdapter[NotificationPayload] = TypeAdapter(NotificationPayload)


def parse_payload(data: dict[str, Any]) -> NotificationPayload:
    """Validate a raw `data` bag; raises `pydantic.ValidationError` for unknown or malformed payloads."""
    return payload_adapter.validate_python(data)
