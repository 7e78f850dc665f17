from __future__ import annotations

from datetime import timedelta

import structlog

from carealarm.core.config import Settings, settings
from carealarm.core.expiring import Clock, ExpiringKeySet, utcnow
from carealarm.modules.alarms.repository import AlarmRepository
from carealarm.modules.alarms.sequencer import AlarmSequencer
from carealarm.modules.caregivers.pipeline import CaregiverAlertPipeline
from carealarm.modules.caregivers.poller import AlertPollerRegistry
from carealarm.modules.caregivers.repository import CaregiverRepository
from carealarm.modules.caregivers.transport import ExpoPushTransport
from carealarm.modules.escalation.background import (
    MISSED_DOSE_TASK,
    AsyncioTaskManager,
    BackgroundTaskManager,
    MissedDoseSweep,
    NoopTaskManager,
)
from carealarm.modules.escalation.trigger import EscalationTrigger
from carealarm.modules.notifications.dispatch import NotificationDispatcher
from carealarm.modules.notifications.reminders import ReminderScheduler
from carealarm.modules.notifications.repository import NotificationSettingsRepository
from carealarm.modules.notifications.scheduler import LocalScheduler
from carealarm.modules.notifications.streams import DeviceStreamManager
from carealarm.modules.notifications.tokens import PushRegistration

log = structlog.get_logger()


class NotificationService:
    """Owns the alarm escalation components and their lifecycle."""

    def __init__(
        self,
        config: Settings = settings,
        alarms: AlarmRepository | None = None,
        caregivers: CaregiverRepository | None = None,
        notification_settings: NotificationSettingsRepository | None = None,
        transport: ExpoPushTransport | None = None,
        task_manager: BackgroundTaskManager | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config
        self.alarms = alarms or AlarmRepository()
        self.caregivers = caregivers or CaregiverRepository()
        self.notification_settings = notification_settings or NotificationSettingsRepository()
        self.transport = transport or ExpoPushTransport(config=config)

        self.streams = DeviceStreamManager()
        self.scheduler = LocalScheduler(streams=self.streams, clock=clock)
        self.escalation_lock = ExpiringKeySet(
            ttl=timedelta(seconds=config.ESCALATION_LOCK_TTL_SECONDS),
            clock=clock,
            name="escalations",
        )
        self.sequencer = AlarmSequencer(
            self.scheduler,
            self.alarms,
            self.notification_settings,
            config=config,
            clock=clock,
        )
        self.pipeline = CaregiverAlertPipeline(
            self.caregivers,
            self.alarms,
            self.notification_settings,
            self.transport,
            clock=clock,
        )
        self.trigger = EscalationTrigger(
            self.alarms,
            self.pipeline,
            self.sequencer,
            self.escalation_lock,
            config=config,
            clock=clock,
        )
        self.sequencer.set_caregiver_check_hook(self.trigger.schedule_deferred_check)

        self.reminders = ReminderScheduler(self.scheduler, config=config)
        self.registration = PushRegistration(self.notification_settings, clock=clock)
        self.pollers = AlertPollerRegistry(
            self.caregivers,
            self.scheduler,
            interval_seconds=config.CAREGIVER_POLL_INTERVAL_SECONDS,
            batch_limit=config.CAREGIVER_POLL_BATCH_LIMIT,
            clock=clock,
        )
        self.dispatcher = NotificationDispatcher(
            self.sequencer,
            self.trigger,
            self.reminders,
            self.caregivers,
            config=config,
            clock=clock,
        )
        self.scheduler.set_delivery_handler(self.dispatcher.on_delivered)

        if task_manager is None:
            task_manager = (
                AsyncioTaskManager() if config.BACKGROUND_TASKS_ENABLED else NoopTaskManager()
            )
        self.task_manager = task_manager
        self.missed_doses = MissedDoseSweep(
            self.alarms,
            self.trigger,
            grace_minutes=config.MISSED_DOSE_GRACE_MINUTES,
            clock=clock,
        )
        self.task_manager.register(
            MISSED_DOSE_TASK,
            config.MISSED_DOSE_SWEEP_INTERVAL_SECONDS,
            self.missed_doses.run_once,
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self.escalation_lock.start_sweeper(self.config.ESCALATION_LOCK_SWEEP_SECONDS)
        await self.task_manager.start()
        self._started = True
        log.info("notification_service_started")

    async def stop(self) -> None:
        await self.pollers.stop_all()
        await self.task_manager.stop()
        await self.trigger.close()
        await self.scheduler.close()
        await self.escalation_lock.stop_sweeper()
        await self.transport.close()
        self._started = False
        log.info("notification_service_stopped")
