from datetime import datetime
from typing import Dict, List

from pydantic import Field

from carealarm.modules.alarms.records import AlarmPlan, AttemptRecord
from carealarm.shared.schemas import CamelModel


class ScheduleAlarmsRequest(CamelModel):
    """A dose whose first reminder went unanswered."""

    alarm_id: str
    patient_id: str
    medication_schedule_id: str
    medication_name: str
    scheduled_time: datetime
    accelerated: bool = False


class AlarmPlanResponse(CamelModel):
    medication_schedule_id: str
    step_times: Dict[int, datetime]
    caregiver_check_at: datetime | None = None
    identifiers: List[str] = Field(default_factory=list)

    @classmethod
    def from_plan(cls, plan: AlarmPlan) -> "AlarmPlanResponse":
        return cls(
            medication_schedule_id=plan.dose.medication_schedule_id,
            step_times=plan.step_times,
            caregiver_check_at=plan.caregiver_check_at,
            identifiers=plan.identifiers,
        )


class MarkTakenRequest(CamelModel):
    taken_at: datetime | None = None
    medication_id: str | None = None
    # Dose instant; defaults to the newest unanswered dose of the schedule.
    scheduled_time: datetime | None = None


class CancelledResponse(CamelModel):
    medication_schedule_id: str
    cancelled: int


class AttemptResponse(CamelModel):
    attempt: int
    sent_at: datetime
    patient_responded: bool
    response_time: datetime | None = None
    caregiver_alerted: bool
    caregiver_alert_sent_at: datetime | None = None

    @classmethod
    def from_record(cls, record: AttemptRecord) -> "AttemptResponse":
        return cls(
            attempt=record.attempt,
            sent_at=record.sent_at,
            patient_responded=record.patient_responded,
            response_time=record.response_time,
            caregiver_alerted=record.caregiver_alerted,
            caregiver_alert_sent_at=record.caregiver_alert_sent_at,
        )
