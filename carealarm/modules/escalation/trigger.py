"""
Decide whether a missed dose escalates to caregivers.

Two entry paths share one expiring lock:
- caregiver check: fired at the end of a scheduled sequence (and re-armed on a wall-clock
  timer); looks for a patient response in the attempt log and runs the caregiver pipeline.
- escalation check: fired after a generic reminder; looks for a recent "taken" log and,
  when none exists, starts a new reminder sequence anchored at the current instant.

Query failures count as "not taken": a redundant alert beats a missed one.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import structlog

from carealarm.core.config import Settings, settings
from carealarm.core.expiring import Clock, ExpiringKeySet, utcnow
from carealarm.modules.alarms.records import DoseEvent
from carealarm.modules.alarms.repository import AlarmRepository
from carealarm.modules.alarms.sequencer import AlarmSequencer
from carealarm.modules.caregivers.pipeline import CaregiverAlertPipeline
from carealarm.modules.notifications.payloads import (
    CaregiverCheckPayload,
    EscalationCheckPayload,
)

log = structlog.get_logger()


def late_escalation_key(medication_id: str, schedule_time: str | None) -> str:
    return f"{medication_id}-{schedule_time}"


class EscalationTrigger:
    def __init__(
        self,
        alarms: AlarmRepository,
        pipeline: CaregiverAlertPipeline,
        sequencer: AlarmSequencer,
        lock: ExpiringKeySet,
        config: Settings = settings,
        clock: Clock = utcnow,
    ) -> None:
        self._alarms = alarms
        self._pipeline = pipeline
        self._sequencer = sequencer
        self._lock = lock
        self._config = config
        self._clock = clock
        self._deferred: set[asyncio.Task[None]] = set()

    @property
    def lock(self) -> ExpiringKeySet:
        return self._lock

    async def on_caregiver_check(self, payload: CaregiverCheckPayload) -> bool:
        dose = DoseEvent(
            alarm_id=payload.alarm_id,
            patient_id=payload.patient_id,
            medication_schedule_id=payload.medication_schedule_id,
            medication_name=payload.medication_name,
            scheduled_time=payload.scheduled_time,
        )
        return await self.escalate(dose, source="caregiver-check")

    async def escalate(self, dose: DoseEvent, source: str = "caregiver-check") -> bool:
        """Run the caregiver pipeline unless the dose was answered; True when it ran."""
        key = dose.escalation_key()
        if not self._lock.acquire(key):
            log.info("escalation_already_in_progress", key=key, source=source)
            return False

        try:
            if await self._patient_responded(dose):
                log.info(
                    "escalation_not_needed",
                    medication_schedule_id=dose.medication_schedule_id,
                    source=source,
                )
                return False

            log.warning(
                "escalation_no_response",
                patient_id=dose.patient_id,
                medication_schedule_id=dose.medication_schedule_id,
                source=source,
            )
            await self._pipeline.alert_caregivers(dose)
            return True
        finally:
            self._lock.release(key)

    def schedule_deferred_check(self, dose: DoseEvent, at: datetime) -> None:
        delay = (at - self._clock()).total_seconds()
        if delay <= 0:
            return
        task = asyncio.create_task(self._deferred_check(dose, delay))
        self._deferred.add(task)
        task.add_done_callback(self._deferred.discard)
        log.debug(
            "deferred_caregiver_check_armed",
            medication_schedule_id=dose.medication_schedule_id,
            delay_seconds=delay,
        )

    async def on_escalation_check(self, payload: EscalationCheckPayload) -> bool:
        """Late-caught miss: restart the sequence from now; True when it was restarted."""
        key = late_escalation_key(payload.medication_id, payload.schedule_time)
        if not self._lock.acquire(key):
            log.info("escalation_already_in_progress", key=key, source="escalation-check")
            return False

        try:
            since = self._clock() - timedelta(minutes=self._config.TAKEN_LOOKBACK_MINUTES)
            try:
                taken = await self._alarms.has_recent_administration(
                    payload.patient_id, payload.medication_id, since
                )
            except Exception as exc:
                log.error(
                    "administration_log_query_failed",
                    medication_id=payload.medication_id,
                    error=str(exc),
                )
                taken = False

            if taken:
                log.info(
                    "escalation_not_needed",
                    medication_id=payload.medication_id,
                    source="escalation-check",
                )
                return False

            now = self._clock()
            dose = DoseEvent(
                alarm_id=f"escalation-{payload.medication_id}-{int(now.timestamp() * 1000)}",
                patient_id=payload.patient_id,
                # Generic reminders only know the medication, not the schedule row.
                medication_schedule_id=payload.medication_id,
                medication_name=payload.medication_name,
                scheduled_time=now,
            )
            log.warning(
                "late_escalation_started",
                medication_id=payload.medication_id,
                schedule_time=payload.schedule_time,
                original_notification_id=payload.original_notification_id,
            )
            await self._sequencer.schedule(
                dose, accelerated=self._config.LATE_ESCALATION_ACCELERATED
            )
            return True
        finally:
            self._lock.release(key)

    async def close(self) -> None:
        tasks = list(self._deferred)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._deferred.clear()

    async def _patient_responded(self, dose: DoseEvent) -> bool:
        try:
            return await self._alarms.has_patient_response(
                dose.medication_schedule_id, dose.scheduled_time
            )
        except Exception as exc:
            log.error(
                "attempt_log_query_failed",
                medication_schedule_id=dose.medication_schedule_id,
                error=str(exc),
            )
            return False

    async def _deferred_check(self, dose: DoseEvent, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.escalate(dose, source="deferred")
        except Exception:
            log.exception(
                "deferred_caregiver_check_failed",
                medication_schedule_id=dose.medication_schedule_id,
            )
