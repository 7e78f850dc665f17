from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import structlog

from carealarm.core.config import Settings, settings
from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.alarms.records import (
    DEFAULT_ALARM_SETTINGS,
    AlarmPlan,
    AlarmSettings,
    AlarmTiming,
    AttemptRecord,
    DoseEvent,
    ensure_utc,
)
from carealarm.modules.alarms.repository import AlarmRepository
from carealarm.modules.notifications.payloads import (
    CaregiverCheckPayload,
    MedicationAlarmPayload,
)
from carealarm.modules.notifications.repository import NotificationSettingsRepository
from carealarm.modules.notifications.scheduler import LocalScheduler, NotificationContent
from carealarm.shared.constants import Priority

log = structlog.get_logger()

FINAL_ATTEMPT = 3
REMINDER_CATEGORY = "medication-reminder"


@dataclass(frozen=True)
class UrgencyLevel:
    sound: str
    vibration: tuple[int, ...]
    priority: Priority


URGENCY_LEVELS: dict[int, UrgencyLevel] = {
    1: UrgencyLevel("default", (0, 200, 100, 200), Priority.DEFAULT),
    2: UrgencyLevel("default", (0, 500, 200, 500, 200, 500), Priority.HIGH),
    3: UrgencyLevel("default", (0, 1000, 500, 1000, 500, 1000), Priority.MAX),
}


def alarm_identifier(medication_schedule_id: str, attempt: int) -> str:
    return f"medication-{medication_schedule_id}-{attempt}"


def caregiver_check_identifier(medication_schedule_id: str) -> str:
    return f"caregiver-check-{medication_schedule_id}"


def alarm_title(attempt: int) -> str:
    if attempt == 1:
        return "First Reminder"
    if attempt == 2:
        return "Second Reminder"
    return "LAST REMINDER - URGENT"


def alarm_body(attempt: int, medication_name: str) -> str:
    if attempt == 1:
        return f"This is your first reminder to take your {medication_name}"
    if attempt == 2:
        return f"This is your second reminder to take your {medication_name}"
    return (
        f"LAST REMINDER: You need to take your {medication_name} NOW "
        "or contact your caregiver immediately"
    )


class AlarmSequencer:
    """Register reminder steps 2 and 3 plus the caregiver check for one missed dose."""

    def __init__(
        self,
        scheduler: LocalScheduler,
        alarms: AlarmRepository,
        notification_settings: NotificationSettingsRepository,
        config: Settings = settings,
        clock: Clock = utcnow,
    ) -> None:
        self._scheduler = scheduler
        self._alarms = alarms
        self._notification_settings = notification_settings
        self._config = config
        self._clock = clock
        self._caregiver_check_hook: Callable[[DoseEvent, datetime], None] | None = None

    def set_caregiver_check_hook(
        self, hook: Callable[[DoseEvent, datetime], None] | None
    ) -> None:
        """Called with each caregiver-check instant; the trigger arms its wall-clock fallback here."""
        self._caregiver_check_hook = hook

    async def schedule(
        self,
        dose: DoseEvent,
        accelerated: bool = False,
        timing: AlarmTiming | None = None,
    ) -> AlarmPlan:
        alarm_settings = await self.load_settings(dose.patient_id)
        if timing is None:
            timing = (
                AlarmTiming.accelerated(self._config)
                if accelerated
                else AlarmTiming.from_alarm_settings(alarm_settings)
            )

        log.info(
            "alarm_sequence_scheduling",
            patient_id=dose.patient_id,
            medication_schedule_id=dose.medication_schedule_id,
            medication=dose.medication_name,
            scheduled_time=dose.scheduled_time.isoformat(),
            accelerated=accelerated,
            interval_seconds=timing.interval.total_seconds(),
            caregiver_delay_seconds=timing.caregiver_delay.total_seconds(),
        )

        plan = AlarmPlan(dose=dose)
        # The first reminder already went out at the scheduled instant.
        plan.step_times[1] = dose.scheduled_time
        await self._log_attempt(dose, 1, dose.scheduled_time)

        for attempt in (2, FINAL_ATTEMPT):
            at = dose.scheduled_time + (attempt - 1) * timing.interval
            plan.step_times[attempt] = at
            identifier = await self._schedule_step(dose, attempt, at, alarm_settings)
            if identifier:
                plan.identifiers.append(identifier)

        check_at = dose.scheduled_time + timing.caregiver_delay
        plan.caregiver_check_at = check_at
        identifier = await self._schedule_caregiver_check(dose, check_at)
        if identifier:
            plan.identifiers.append(identifier)

        log.info(
            "alarm_sequence_scheduled",
            medication_schedule_id=dose.medication_schedule_id,
            identifiers=plan.identifiers,
        )
        return plan

    async def mark_taken(
        self,
        medication_schedule_id: str,
        taken_at: datetime | None = None,
        patient_id: str | None = None,
        medication_id: str | None = None,
        scheduled_time: datetime | None = None,
    ) -> int:
        """Cancel everything pending for the schedule and record the response.

        The response is stamped on one dose only: `scheduled_time` when given,
        otherwise the newest unanswered dose of the schedule due by `taken_at`.
        """
        taken_at = ensure_utc(taken_at) if taken_at else self._clock()
        cancelled = await self.cancel(medication_schedule_id)

        try:
            if scheduled_time is None:
                scheduled_time = await self._alarms.latest_unanswered_dose(
                    medication_schedule_id, taken_at
                )
            else:
                scheduled_time = ensure_utc(scheduled_time)

            if scheduled_time is None:
                log.info(
                    "medication_marked_taken_without_dose",
                    medication_schedule_id=medication_schedule_id,
                    cancelled=cancelled,
                )
            else:
                updated = await self._alarms.mark_responded(
                    medication_schedule_id, scheduled_time, taken_at
                )
                log.info(
                    "medication_marked_taken",
                    medication_schedule_id=medication_schedule_id,
                    scheduled_time=scheduled_time.isoformat(),
                    cancelled=cancelled,
                    attempts_updated=updated,
                )
        except Exception as exc:
            log.error(
                "attempt_response_update_failed",
                medication_schedule_id=medication_schedule_id,
                error=str(exc),
            )

        if patient_id and medication_id:
            try:
                await self._alarms.record_administration(patient_id, medication_id, taken_at)
            except Exception as exc:
                log.error(
                    "administration_log_failed",
                    patient_id=patient_id,
                    medication_id=medication_id,
                    error=str(exc),
                )
        return cancelled

    async def cancel(self, medication_schedule_id: str) -> int:
        """One pass over every pending registration, dropping those for this schedule."""
        try:
            pending = await self._scheduler.list_pending()
        except Exception as exc:
            log.error(
                "pending_notifications_list_failed",
                medication_schedule_id=medication_schedule_id,
                error=str(exc),
            )
            return 0

        cancelled = 0
        for notification in pending:
            if notification.content.data.get("medicationScheduleId") != medication_schedule_id:
                continue
            try:
                if await self._scheduler.cancel(notification.identifier):
                    cancelled += 1
            except Exception as exc:
                log.error(
                    "notification_cancel_failed",
                    identifier=notification.identifier,
                    error=str(exc),
                )
        return cancelled

    async def load_settings(self, patient_id: str) -> AlarmSettings:
        try:
            stored = await self._notification_settings.get_alarm_settings(patient_id)
        except Exception as exc:
            log.error("alarm_settings_load_failed", patient_id=patient_id, error=str(exc))
            return DEFAULT_ALARM_SETTINGS
        return stored or DEFAULT_ALARM_SETTINGS

    def seconds_until(self, at: datetime) -> int:
        delta = (at - self._clock()).total_seconds()
        return max(1, math.floor(delta + 0.5))

    async def _schedule_step(
        self,
        dose: DoseEvent,
        attempt: int,
        at: datetime,
        alarm_settings: AlarmSettings,
    ) -> str | None:
        urgency = URGENCY_LEVELS[attempt]
        identifier = alarm_identifier(dose.medication_schedule_id, attempt)
        seconds = self.seconds_until(at)

        # Log first so ordinals stay gap-free even when registration fails.
        await self._log_attempt(dose, attempt, at)

        payload = MedicationAlarmPayload(
            medication_schedule_id=dose.medication_schedule_id,
            patient_id=dose.patient_id,
            attempt=attempt,
            alarm_id=dose.alarm_id,
            scheduled_time=dose.scheduled_time,
        )
        content = NotificationContent(
            title=alarm_title(attempt),
            body=alarm_body(attempt, dose.medication_name),
            data=payload.to_payload(),
            sound=urgency.sound if alarm_settings.sound_enabled else None,
            vibrate=urgency.vibration if alarm_settings.vibration_enabled else None,
            priority=urgency.priority,
            category=REMINDER_CATEGORY,
        )
        try:
            await self._scheduler.schedule(
                identifier, content, seconds, owner_id=dose.patient_id
            )
        except Exception as exc:
            log.error(
                "alarm_schedule_failed",
                medication_schedule_id=dose.medication_schedule_id,
                attempt=attempt,
                error=str(exc),
            )
            return None

        log.info(
            "alarm_step_scheduled",
            medication_schedule_id=dose.medication_schedule_id,
            attempt=attempt,
            fire_at=at.isoformat(),
            seconds=seconds,
        )
        return identifier

    async def _schedule_caregiver_check(
        self, dose: DoseEvent, check_at: datetime
    ) -> str | None:
        identifier = caregiver_check_identifier(dose.medication_schedule_id)
        seconds = self.seconds_until(check_at)
        payload = CaregiverCheckPayload(
            medication_schedule_id=dose.medication_schedule_id,
            patient_id=dose.patient_id,
            alarm_id=dose.alarm_id,
            medication_name=dose.medication_name,
            scheduled_time=dose.scheduled_time,
        )
        content = NotificationContent(
            title="CAREGIVER ALERT CHECK",
            body=(
                f"Checking if {dose.medication_name} was taken - "
                "will alert caregivers if not"
            ),
            data=payload.to_payload(),
            priority=Priority.HIGH,
        )

        registered: str | None = identifier
        try:
            await self._scheduler.schedule(
                identifier, content, seconds, owner_id=dose.patient_id
            )
            log.info(
                "caregiver_check_scheduled",
                medication_schedule_id=dose.medication_schedule_id,
                fire_at=check_at.isoformat(),
                seconds=seconds,
            )
        except Exception as exc:
            registered = None
            log.error(
                "caregiver_check_schedule_failed",
                medication_schedule_id=dose.medication_schedule_id,
                error=str(exc),
            )

        # Local delivery is unreliable while the app is backgrounded, so arm the
        # wall-clock path too; both share the escalation lock.
        if self._caregiver_check_hook is not None:
            self._caregiver_check_hook(dose, check_at)
        return registered

    async def _log_attempt(self, dose: DoseEvent, attempt: int, sent_at: datetime) -> None:
        record = AttemptRecord(
            patient_id=dose.patient_id,
            medication_schedule_id=dose.medication_schedule_id,
            medication_name=dose.medication_name,
            scheduled_time=dose.scheduled_time,
            attempt=attempt,
            sent_at=sent_at,
        )
        try:
            inserted = await self._alarms.record_attempt(record)
        except Exception as exc:
            log.error(
                "alarm_attempt_log_failed",
                medication_schedule_id=dose.medication_schedule_id,
                attempt=attempt,
                error=str(exc),
            )
            return
        if not inserted:
            log.debug(
                "alarm_attempt_already_logged",
                medication_schedule_id=dose.medication_schedule_id,
                attempt=attempt,
            )
