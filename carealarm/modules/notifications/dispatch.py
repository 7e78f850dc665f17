"""Route delivered notifications and user responses by payload type."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from carealarm.core.config import Settings, settings
from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.alarms.sequencer import AlarmSequencer
from carealarm.modules.caregivers.records import StoredAlertRecord
from carealarm.modules.caregivers.repository import CaregiverRepository
from carealarm.modules.escalation.trigger import EscalationTrigger
from carealarm.modules.notifications.payloads import (
    CaregiverAlertLocalPayload,
    CaregiverAlertPayload,
    CaregiverCheckPayload,
    EscalationCheckPayload,
    MedicationAlarmPayload,
    NotificationPayload,
    parse_payload,
)
from carealarm.modules.notifications.reminders import ReminderScheduler
from carealarm.modules.notifications.scheduler import ScheduledNotification
from carealarm.shared.constants import AlertKind, NotificationAction, NotificationType

log = structlog.get_logger()

EMERGENCY_MESSAGE = "Emergency response triggered by caregiver"

ResponseHandler = Callable[[Any, NotificationAction], Awaitable[str | None]]


class NotificationDispatcher:
    def __init__(
        self,
        sequencer: AlarmSequencer,
        trigger: EscalationTrigger,
        reminders: ReminderScheduler,
        caregivers: CaregiverRepository,
        config: Settings = settings,
        clock: Clock = utcnow,
    ) -> None:
        self._sequencer = sequencer
        self._trigger = trigger
        self._reminders = reminders
        self._caregivers = caregivers
        self._config = config
        self._clock = clock
        self._response_handlers: dict[NotificationType, ResponseHandler] = {
            NotificationType.MEDICATION_ALARM: self._on_medication_alarm,
            NotificationType.CAREGIVER_CHECK: self._on_caregiver_check,
            NotificationType.ESCALATION_CHECK: self._on_escalation_check,
            NotificationType.CAREGIVER_ALERT: self._on_caregiver_alert,
            NotificationType.CAREGIVER_ALERT_LOCAL: self._on_caregiver_alert,
        }

    async def on_delivered(self, notification: ScheduledNotification) -> bool:
        """Handle a due notification; returns whether it should be shown."""
        try:
            payload = parse_payload(notification.content.data)
        except ValidationError:
            return True

        if isinstance(payload, EscalationCheckPayload):
            # Background check only, never shown.
            await self._trigger.on_escalation_check(payload)
            return False
        if isinstance(payload, CaregiverCheckPayload):
            await self._trigger.on_caregiver_check(payload)
        return True

    async def on_response(
        self, data: dict[str, Any], action: NotificationAction | str = NotificationAction.DEFAULT
    ) -> str | None:
        """Handle the user acting on a notification; returns the outcome label, if any."""
        payload: NotificationPayload = parse_payload(data)
        action = NotificationAction(action)
        log.info("notification_response", type=payload.type, action=action.value)

        handler = self._response_handlers.get(NotificationType(payload.type))
        if handler is None:
            return None
        return await handler(payload, action)

    async def _on_medication_alarm(
        self, payload: MedicationAlarmPayload, action: NotificationAction
    ) -> str | None:
        if action == NotificationAction.MARK_TAKEN:
            await self._sequencer.mark_taken(
                payload.medication_schedule_id, scheduled_time=payload.scheduled_time
            )
            return "marked_taken"
        if action == NotificationAction.SNOOZE:
            await self._reminders.snooze(
                payload.medication_schedule_id,
                payload.patient_id,
                self._config.SNOOZE_ACTION_MINUTES,
            )
            return "snoozed"
        return None

    async def _on_caregiver_check(
        self, payload: CaregiverCheckPayload, action: NotificationAction
    ) -> str | None:
        escalated = await self._trigger.on_caregiver_check(payload)
        return "escalated" if escalated else "not_escalated"

    async def _on_escalation_check(
        self, payload: EscalationCheckPayload, action: NotificationAction
    ) -> str | None:
        restarted = await self._trigger.on_escalation_check(payload)
        return "sequence_restarted" if restarted else "not_escalated"

    async def _on_caregiver_alert(
        self,
        payload: CaregiverAlertPayload | CaregiverAlertLocalPayload,
        action: NotificationAction,
    ) -> str | None:
        if action == NotificationAction.CALL_PATIENT:
            log.info("caregiver_call_requested", patient_id=payload.patient_id)
            return "call_requested"

        if action == NotificationAction.MARK_TAKEN:
            schedule_id = payload.medication_schedule_id
            if not schedule_id:
                log.warning("caregiver_mark_taken_without_schedule", patient_id=payload.patient_id)
                return None
            await self._sequencer.mark_taken(schedule_id)
            try:
                await self._caregivers.acknowledge_for_schedule(schedule_id, self._clock())
            except Exception as exc:
                log.error(
                    "caregiver_alert_acknowledge_failed",
                    medication_schedule_id=schedule_id,
                    error=str(exc),
                )
            return "marked_taken"

        if action == NotificationAction.EMERGENCY:
            return await self._record_emergency(payload)
        return None

    async def _record_emergency(
        self, payload: CaregiverAlertPayload | CaregiverAlertLocalPayload
    ) -> str | None:
        if not payload.caregiver_id:
            log.warning("emergency_without_caregiver", patient_id=payload.patient_id)
            return None
        record = StoredAlertRecord(
            patient_id=payload.patient_id,
            caregiver_id=payload.caregiver_id,
            message=EMERGENCY_MESSAGE,
            kind=AlertKind.EMERGENCY,
        )
        try:
            await self._caregivers.store_alert(record)
        except Exception as exc:
            log.error("emergency_alert_store_failed", patient_id=payload.patient_id, error=str(exc))
            return None
        log.warning("caregiver_emergency_recorded", patient_id=payload.patient_id)
        return "emergency_recorded"
