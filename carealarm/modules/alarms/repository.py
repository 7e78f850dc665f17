from datetime import datetime, timezone
from typing import List

from beanie.operators import Set

from carealarm.modules.alarms.models import AdministrationLog, AlarmAttempt
from carealarm.modules.alarms.records import AttemptRecord, ensure_utc
from carealarm.shared.constants import AdministrationStatus


class AlarmRepository:
    """Attempt log and administration log access for the alarm core."""

    async def record_attempt(self, record: AttemptRecord) -> bool:
        """Insert an attempt row; returns False when that ordinal is already logged."""
        existing = await AlarmAttempt.find_one(
            AlarmAttempt.medication_schedule_id == record.medication_schedule_id,
            AlarmAttempt.scheduled_time == record.scheduled_time,
            AlarmAttempt.alarm_attempt == record.attempt,
        )
        if existing:
            return False

        row = AlarmAttempt(
            patient_id=record.patient_id,
            medication_schedule_id=record.medication_schedule_id,
            medication_name=record.medication_name,
            scheduled_time=record.scheduled_time,
            alarm_attempt=record.attempt,
            alarm_sent_at=record.sent_at,
        )
        await row.insert()
        record.id = str(row.id)
        return True

    async def has_patient_response(
        self, medication_schedule_id: str, scheduled_time: datetime
    ) -> bool:
        row = await AlarmAttempt.find(
            AlarmAttempt.medication_schedule_id == medication_schedule_id,
            AlarmAttempt.scheduled_time == scheduled_time,
            AlarmAttempt.patient_responded == True,  # noqa: E712
        ).first_or_none()
        return row is not None

    async def latest_unanswered_dose(
        self, medication_schedule_id: str, not_after: datetime
    ) -> datetime | None:
        """Scheduled instant of the newest unanswered dose due by `not_after`."""
        row = await AlarmAttempt.find(
            AlarmAttempt.medication_schedule_id == medication_schedule_id,
            AlarmAttempt.patient_responded == False,  # noqa: E712
            AlarmAttempt.scheduled_time <= not_after,
        ).sort("-scheduled_time").first_or_none()
        return ensure_utc(row.scheduled_time) if row else None

    async def mark_responded(
        self,
        medication_schedule_id: str,
        scheduled_time: datetime,
        responded_at: datetime,
    ) -> int:
        result = await AlarmAttempt.find(
            AlarmAttempt.medication_schedule_id == medication_schedule_id,
            AlarmAttempt.scheduled_time == scheduled_time,
            AlarmAttempt.patient_responded == False,  # noqa: E712
        ).update(
            Set(
                {
                    AlarmAttempt.patient_responded: True,
                    AlarmAttempt.response_time: responded_at,
                    AlarmAttempt.updated_at: datetime.now(timezone.utc),
                }
            )
        )
        return getattr(result, "modified_count", 0)

    async def mark_caregiver_alerted(
        self,
        medication_schedule_id: str,
        scheduled_time: datetime,
        alerted_at: datetime,
    ) -> int:
        result = await AlarmAttempt.find(
            AlarmAttempt.medication_schedule_id == medication_schedule_id,
            AlarmAttempt.scheduled_time == scheduled_time,
        ).update(
            Set(
                {
                    AlarmAttempt.caregiver_alerted: True,
                    AlarmAttempt.caregiver_alert_sent_at: alerted_at,
                    AlarmAttempt.updated_at: datetime.now(timezone.utc),
                }
            )
        )
        return getattr(result, "modified_count", 0)

    async def list_attempts(self, medication_schedule_id: str) -> List[AttemptRecord]:
        rows = (
            await AlarmAttempt.find(
                AlarmAttempt.medication_schedule_id == medication_schedule_id,
            )
            .sort("+alarm_sent_at")
            .to_list()
        )
        return [self._to_record(row) for row in rows]

    async def find_unescalated_final_attempts(
        self, sent_before: datetime
    ) -> List[AttemptRecord]:
        rows = await AlarmAttempt.find(
            AlarmAttempt.alarm_attempt == 3,
            AlarmAttempt.patient_responded == False,  # noqa: E712
            AlarmAttempt.caregiver_alerted == False,  # noqa: E712
            AlarmAttempt.alarm_sent_at < sent_before,
        ).to_list()
        return [self._to_record(row) for row in rows]

    async def record_administration(
        self, user_id: str, medication_id: str, taken_at: datetime
    ) -> None:
        await AdministrationLog(
            user_id=user_id,
            medication_id=medication_id,
            status=AdministrationStatus.TAKEN,
            taken_at=taken_at,
        ).insert()

    async def has_recent_administration(
        self, user_id: str, medication_id: str, since: datetime
    ) -> bool:
        row = await AdministrationLog.find(
            AdministrationLog.user_id == user_id,
            AdministrationLog.medication_id == medication_id,
            AdministrationLog.status == AdministrationStatus.TAKEN,
            AdministrationLog.taken_at >= since,
        ).sort("-taken_at").first_or_none()
        return row is not None

    @staticmethod
    def _to_record(row: AlarmAttempt) -> AttemptRecord:
        return AttemptRecord(
            id=str(row.id),
            patient_id=row.patient_id,
            medication_schedule_id=row.medication_schedule_id,
            medication_name=row.medication_name,
            scheduled_time=ensure_utc(row.scheduled_time),
            attempt=row.alarm_attempt,
            sent_at=ensure_utc(row.alarm_sent_at),
            patient_responded=row.patient_responded,
            response_time=row.response_time,
            caregiver_alerted=row.caregiver_alerted,
            caregiver_alert_sent_at=row.caregiver_alert_sent_at,
        )
