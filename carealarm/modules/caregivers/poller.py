from __future__ import annotations

import asyncio
from typing import List

import structlog

from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.caregivers.records import StoredAlertRecord
from carealarm.modules.caregivers.repository import CaregiverRepository
from carealarm.modules.notifications.payloads import CaregiverAlertLocalPayload
from carealarm.modules.notifications.scheduler import LocalScheduler, NotificationContent
from carealarm.shared.constants import Priority, Role

log = structlog.get_logger()

LOCAL_ALERT_TITLE = "CAREGIVER ALERT"


class AlertPoller:
    """Surface stored caregiver alerts on one caregiver's device and retire them."""

    def __init__(
        self,
        caregiver_id: str,
        caregivers: CaregiverRepository,
        scheduler: LocalScheduler,
        interval_seconds: float = 10.0,
        batch_limit: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self.caregiver_id = caregiver_id
        self._caregivers = caregivers
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._batch_limit = batch_limit
        self._clock = clock
        self._active = False
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> bool:
        """Begin polling; False when the user is not a caregiver."""
        try:
            role = await self._caregivers.get_role(self.caregiver_id)
        except Exception as exc:
            log.error("caregiver_role_lookup_failed", user_id=self.caregiver_id, error=str(exc))
            return False
        if role != Role.CAREGIVER:
            log.info(
                "caregiver_polling_not_started",
                user_id=self.caregiver_id,
                role=role.value if role else None,
            )
            return False

        if self._active:
            log.info("caregiver_polling_already_active", caregiver_id=self.caregiver_id)
            return True

        self._active = True
        log.info(
            "caregiver_polling_started",
            caregiver_id=self.caregiver_id,
            interval_seconds=self._interval,
        )
        await self.check_pending()
        self._task = asyncio.create_task(self._run())
        return True

    async def stop(self) -> None:
        self._active = False
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        log.info("caregiver_polling_stopped", caregiver_id=self.caregiver_id)

    async def check_pending(self, quiet: bool = False) -> int:
        """One tick; returns how many alerts were shown."""
        emit = log.debug if quiet else log.info
        emit("caregiver_alerts_checking", caregiver_id=self.caregiver_id)

        try:
            alerts = await self._caregivers.list_unacknowledged(
                self.caregiver_id, self._batch_limit, fallback_kinds_only=True
            )
            if not alerts:
                # Kind filtering can miss rows written by older clients.
                alerts = await self._caregivers.list_unacknowledged(
                    self.caregiver_id, self._batch_limit, fallback_kinds_only=False
                )
                if alerts:
                    emit(
                        "caregiver_alerts_found_unfiltered",
                        caregiver_id=self.caregiver_id,
                        count=len(alerts),
                    )
        except Exception as exc:
            log.error(
                "caregiver_alerts_query_failed",
                caregiver_id=self.caregiver_id,
                error=str(exc),
            )
            return 0

        if not alerts:
            emit("caregiver_alerts_none_pending", caregiver_id=self.caregiver_id)
            return 0

        log.info(
            "caregiver_alerts_pending",
            caregiver_id=self.caregiver_id,
            count=len(alerts),
        )
        return await self._show_and_acknowledge(alerts)

    async def _show_and_acknowledge(self, alerts: List[StoredAlertRecord]) -> int:
        shown = 0
        for alert in alerts:
            if alert.id is None:
                continue
            payload = CaregiverAlertLocalPayload(
                alert_id=alert.id,
                patient_id=alert.patient_id,
                medication_schedule_id=alert.medication_schedule_id,
                caregiver_id=self.caregiver_id,
            )
            content = NotificationContent(
                title=LOCAL_ALERT_TITLE,
                body=alert.message,
                data=payload.to_payload(),
                priority=Priority.HIGH,
                category="caregiver-alert",
            )
            try:
                await self._scheduler.present(content, owner_id=self.caregiver_id)
            except Exception as exc:
                log.error(
                    "caregiver_alert_display_failed",
                    alert_id=alert.id,
                    error=str(exc),
                )
                continue
            shown += 1

            try:
                await self._caregivers.acknowledge(alert.id, self._clock())
            except Exception as exc:
                # Shown but not retired; the next tick will show it again.
                log.error(
                    "caregiver_alert_acknowledge_failed",
                    alert_id=alert.id,
                    caregiver_id=self.caregiver_id,
                    error=str(exc),
                )
                continue
            log.info(
                "caregiver_alert_shown",
                alert_id=alert.id,
                caregiver_id=self.caregiver_id,
            )
        return shown

    async def _run(self) -> None:
        while self._active:
            await asyncio.sleep(self._interval)
            if not self._active:
                break
            try:
                await self.check_pending(quiet=True)
            except Exception:
                log.exception("caregiver_poll_tick_failed", caregiver_id=self.caregiver_id)


class AlertPollerRegistry:
    """One poller per caregiver device session."""

    def __init__(
        self,
        caregivers: CaregiverRepository,
        scheduler: LocalScheduler,
        interval_seconds: float,
        batch_limit: int,
        clock: Clock = utcnow,
    ) -> None:
        self._caregivers = caregivers
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._batch_limit = batch_limit
        self._clock = clock
        self._pollers: dict[str, AlertPoller] = {}

    def get(self, caregiver_id: str) -> AlertPoller:
        poller = self._pollers.get(caregiver_id)
        if poller is None:
            poller = AlertPoller(
                caregiver_id,
                self._caregivers,
                self._scheduler,
                interval_seconds=self._interval,
                batch_limit=self._batch_limit,
                clock=self._clock,
            )
            self._pollers[caregiver_id] = poller
        return poller

    def is_active(self, caregiver_id: str) -> bool:
        poller = self._pollers.get(caregiver_id)
        return bool(poller and poller.active)

    async def start(self, caregiver_id: str) -> bool:
        started = await self.get(caregiver_id).start()
        if not started:
            self._pollers.pop(caregiver_id, None)
        return started

    async def stop(self, caregiver_id: str) -> None:
        poller = self._pollers.pop(caregiver_id, None)
        if poller:
            await poller.stop()

    async def stop_all(self) -> None:
        for caregiver_id in list(self._pollers):
            await self.stop(caregiver_id)
