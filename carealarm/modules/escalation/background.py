from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable

import structlog

from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.alarms.records import DoseEvent
from carealarm.modules.alarms.repository import AlarmRepository
from carealarm.modules.escalation.trigger import EscalationTrigger

log = structlog.get_logger()

TaskFactory = Callable[[], Awaitable[object]]


@dataclass
class PeriodicTask:
    name: str
    interval_seconds: float
    factory: TaskFactory


class BackgroundTaskManager:
    """Optional host capability for periodic work."""

    def register(self, name: str, interval_seconds: float, factory: TaskFactory) -> None:
        raise NotImplementedError

    def is_registered(self, name: str) -> bool:
        raise NotImplementedError

    async def start(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError


class NoopTaskManager(BackgroundTaskManager):
    """Stand-in when the host cannot run background work; the trigger timers still apply."""

    def register(self, name: str, interval_seconds: float, factory: TaskFactory) -> None:
        log.info("background_task_unavailable", task=name)

    def is_registered(self, name: str) -> bool:
        return False

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class AsyncioTaskManager(BackgroundTaskManager):
    """Run registered tasks on the event loop at fixed intervals."""

    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}
        self._running: dict[str, asyncio.Task[None]] = {}

    def register(self, name: str, interval_seconds: float, factory: TaskFactory) -> None:
        self._tasks[name] = PeriodicTask(name, interval_seconds, factory)

    def is_registered(self, name: str) -> bool:
        return name in self._tasks

    async def start(self) -> None:
        for name, periodic in self._tasks.items():
            if name in self._running:
                continue
            self._running[name] = asyncio.create_task(self._loop(periodic))
            log.info("background_task_started", task=name, interval_seconds=periodic.interval_seconds)

    async def stop(self) -> None:
        running = list(self._running.values())
        self._running.clear()
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    @staticmethod
    async def _loop(periodic: PeriodicTask) -> None:
        while True:
            await asyncio.sleep(periodic.interval_seconds)
            try:
                await periodic.factory()
            except Exception:
                log.exception("background_task_failed", task=periodic.name)


MISSED_DOSE_TASK = "medication-response-check"


class MissedDoseSweep:
    """Escalate final reminders that went unanswered and never reached a caregiver."""

    def __init__(
        self,
        alarms: AlarmRepository,
        trigger: EscalationTrigger,
        grace_minutes: int = 15,
        clock: Clock = utcnow,
    ) -> None:
        self._alarms = alarms
        self._trigger = trigger
        self._grace = timedelta(minutes=grace_minutes)
        self._clock = clock

    async def run_once(self) -> int:
        """Returns how many doses were escalated."""
        cutoff = self._clock() - self._grace
        try:
            attempts = await self._alarms.find_unescalated_final_attempts(cutoff)
        except Exception as exc:
            log.error("missed_dose_query_failed", error=str(exc))
            return 0

        escalated = 0
        for attempt in attempts:
            dose = DoseEvent(
                alarm_id=attempt.id or attempt.medication_schedule_id,
                patient_id=attempt.patient_id,
                medication_schedule_id=attempt.medication_schedule_id,
                medication_name=attempt.medication_name or "medication",
                scheduled_time=attempt.scheduled_time,
            )
            if await self._trigger.escalate(dose, source="missed-dose-sweep"):
                escalated += 1
        if escalated:
            log.info("missed_doses_escalated", count=escalated)
        return escalated
