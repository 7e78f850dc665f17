from dataclasses import dataclass

import structlog

from carealarm.core.config import Settings, settings
from carealarm.modules.alarms.sequencer import REMINDER_CATEGORY, URGENCY_LEVELS
from carealarm.modules.notifications.payloads import (
    EscalationCheckPayload,
    MedicationAlarmPayload,
    MedicationReminderPayload,
)
from carealarm.modules.notifications.scheduler import LocalScheduler, NotificationContent

log = structlog.get_logger()


@dataclass
class ReminderRegistration:
    notification_id: str
    escalation_check_id: str | None = None


class ReminderScheduler:
    """First reminders and snoozes; neither goes through the alarm sequencer."""

    def __init__(self, scheduler: LocalScheduler, config: Settings = settings) -> None:
        self._scheduler = scheduler
        self._config = config

    async def schedule_medication_reminder(
        self,
        patient_id: str,
        medication_name: str,
        seconds: float,
        medication_id: str | None = None,
        schedule_time: str | None = None,
    ) -> ReminderRegistration:
        urgency = URGENCY_LEVELS[1]
        payload = MedicationReminderPayload(
            patient_id=patient_id,
            medication_id=medication_id,
            medication_name=medication_name,
            schedule_time=schedule_time,
        )
        content = NotificationContent(
            title=f"Medication Reminder: {medication_name}",
            body=f"Time to take your {medication_name}",
            data=payload.to_payload(),
            sound=urgency.sound,
            vibrate=urgency.vibration,
            priority=urgency.priority,
            category=REMINDER_CATEGORY,
        )
        notification_id = await self._scheduler.schedule(
            None, content, seconds, owner_id=patient_id
        )
        registration = ReminderRegistration(notification_id=notification_id)

        if medication_id:
            registration.escalation_check_id = await self._schedule_escalation_check(
                notification_id,
                patient_id,
                medication_id,
                medication_name,
                schedule_time,
                seconds + self._config.ESCALATION_CHECK_DELAY_SECONDS,
            )

        log.info(
            "medication_reminder_scheduled",
            patient_id=patient_id,
            medication_id=medication_id,
            notification_id=notification_id,
            seconds=seconds,
        )
        return registration

    async def snooze(
        self, medication_schedule_id: str, patient_id: str | None, minutes: int
    ) -> str:
        payload = MedicationAlarmPayload(
            medication_schedule_id=medication_schedule_id,
            patient_id=patient_id,
            snoozed=True,
        )
        content = NotificationContent(
            title="Medication Reminder (Snoozed)",
            body="Time to take your medication",
            data=payload.to_payload(),
            category=REMINDER_CATEGORY,
        )
        identifier = await self._scheduler.schedule(
            f"snooze-{medication_schedule_id}",
            content,
            minutes * 60,
            owner_id=patient_id,
        )
        log.info(
            "medication_alarm_snoozed",
            medication_schedule_id=medication_schedule_id,
            minutes=minutes,
        )
        return identifier

    async def _schedule_escalation_check(
        self,
        notification_id: str,
        patient_id: str,
        medication_id: str,
        medication_name: str,
        schedule_time: str | None,
        seconds: float,
    ) -> str:
        payload = EscalationCheckPayload(
            original_notification_id=notification_id,
            patient_id=patient_id,
            medication_id=medication_id,
            medication_name=medication_name,
            schedule_time=schedule_time,
        )
        content = NotificationContent(
            title="Checking Medication Response",
            body="Checking if medication was taken...",
            data=payload.to_payload(),
        )
        return await self._scheduler.schedule(
            f"escalation-check-{notification_id}",
            content,
            max(1, round(seconds)),
            owner_id=patient_id,
        )
