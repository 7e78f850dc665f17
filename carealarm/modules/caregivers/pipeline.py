from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

import structlog

from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.alarms.records import DoseEvent
from carealarm.modules.alarms.repository import AlarmRepository
from carealarm.modules.caregivers.records import StoredAlertRecord
from carealarm.modules.caregivers.repository import CaregiverRepository
from carealarm.modules.caregivers.transport import ExpoPushTransport, PushMessage
from carealarm.modules.notifications.payloads import CaregiverAlertPayload
from carealarm.modules.notifications.records import PushAddress
from carealarm.modules.notifications.repository import NotificationSettingsRepository
from carealarm.shared.constants import AlertKind

log = structlog.get_logger()

ALERT_TITLE = "MEDICATION ALERT"
FALLBACK_PATIENT_NAME = "Patient"


class DeliveryOutcome(str, Enum):
    PUSHED = "pushed"
    SIMULATED = "simulated"
    STORED = "stored"
    STORE_FAILED = "store_failed"


@dataclass
class CaregiverDelivery:
    caregiver_id: str
    outcome: DeliveryOutcome


@dataclass
class PipelineReport:
    medication_schedule_id: str
    deliveries: list[CaregiverDelivery] = field(default_factory=list)
    completed: bool = False

    @property
    def caregiver_count(self) -> int:
        return len(self.deliveries)


def compose_alert_message(dose: DoseEvent, patient_name: str) -> str:
    scheduled = dose.scheduled_time.strftime("%I:%M %p").lstrip("0")
    return f"{patient_name} hasn't taken {dose.medication_name} scheduled for {scheduled}"


class CaregiverAlertPipeline:
    """Notify every active caregiver once: push when possible, stored alert otherwise."""

    def __init__(
        self,
        caregivers: CaregiverRepository,
        alarms: AlarmRepository,
        notification_settings: NotificationSettingsRepository,
        transport: ExpoPushTransport,
        clock: Clock = utcnow,
    ) -> None:
        self._caregivers = caregivers
        self._alarms = alarms
        self._notification_settings = notification_settings
        self._transport = transport
        self._clock = clock

    async def alert_caregivers(self, dose: DoseEvent) -> PipelineReport:
        report = PipelineReport(medication_schedule_id=dose.medication_schedule_id)
        log.info(
            "caregiver_alert_started",
            patient_id=dose.patient_id,
            medication_schedule_id=dose.medication_schedule_id,
        )

        try:
            caregiver_ids = await self._caregivers.list_active_caregiver_ids(dose.patient_id)
        except Exception as exc:
            log.error(
                "caregiver_lookup_failed", patient_id=dose.patient_id, error=str(exc)
            )
            return report

        if not caregiver_ids:
            log.info("caregiver_alert_no_caregivers", patient_id=dose.patient_id)
            report.completed = True
            return report

        patient_name = await self._patient_name(dose.patient_id)
        message = compose_alert_message(dose, patient_name)

        results = await asyncio.gather(
            *[
                self._notify_caregiver(caregiver_id, dose, patient_name, message)
                for caregiver_id in caregiver_ids
            ],
            return_exceptions=True,
        )
        for caregiver_id, result in zip(caregiver_ids, results):
            if isinstance(result, BaseException):
                log.error(
                    "caregiver_alert_unexpected_error",
                    caregiver_id=caregiver_id,
                    error=str(result),
                )
                report.deliveries.append(
                    CaregiverDelivery(caregiver_id, DeliveryOutcome.STORE_FAILED)
                )
            else:
                report.deliveries.append(result)

        # Records that the pipeline ran, not that anything was confirmed.
        try:
            await self._alarms.mark_caregiver_alerted(
                dose.medication_schedule_id, dose.scheduled_time, self._clock()
            )
        except Exception as exc:
            log.error(
                "caregiver_alerted_flag_failed",
                medication_schedule_id=dose.medication_schedule_id,
                error=str(exc),
            )

        report.completed = True
        log.info(
            "caregiver_alert_finished",
            patient_id=dose.patient_id,
            caregivers=len(caregiver_ids),
            outcomes=[delivery.outcome.value for delivery in report.deliveries],
        )
        return report

    async def _patient_name(self, patient_id: str) -> str:
        try:
            name = await self._caregivers.get_display_name(patient_id)
        except Exception as exc:
            log.warning("patient_name_lookup_failed", patient_id=patient_id, error=str(exc))
            return FALLBACK_PATIENT_NAME
        return name or FALLBACK_PATIENT_NAME

    async def _notify_caregiver(
        self,
        caregiver_id: str,
        dose: DoseEvent,
        patient_name: str,
        message: str,
    ) -> CaregiverDelivery:
        address = await self._push_address(caregiver_id)

        if address and address.token:
            if address.is_placeholder:
                log.info(
                    "caregiver_push_simulated",
                    caregiver_id=caregiver_id,
                    token_prefix=address.token[:20],
                )
                return CaregiverDelivery(caregiver_id, DeliveryOutcome.SIMULATED)

            if await self._push(caregiver_id, address, dose, patient_name, message):
                return CaregiverDelivery(caregiver_id, DeliveryOutcome.PUSHED)
        else:
            log.info("caregiver_push_address_missing", caregiver_id=caregiver_id)

        return await self._store_fallback(caregiver_id, dose, message)

    async def _push_address(self, caregiver_id: str) -> PushAddress | None:
        try:
            return await self._notification_settings.get_push_address(caregiver_id)
        except Exception as exc:
            log.error(
                "caregiver_push_address_lookup_failed",
                caregiver_id=caregiver_id,
                error=str(exc),
            )
            return None

    async def _push(
        self,
        caregiver_id: str,
        address: PushAddress,
        dose: DoseEvent,
        patient_name: str,
        message: str,
    ) -> bool:
        data = CaregiverAlertPayload(
            patient_id=dose.patient_id,
            medication_schedule_id=dose.medication_schedule_id,
            patient_name=patient_name,
            medication_name=dose.medication_name,
            caregiver_id=caregiver_id,
        )
        push = PushMessage(
            to=address.token or "",
            title=ALERT_TITLE,
            body=message,
            sound="default" if address.sound_enabled else None,
            data=data.to_payload(),
        )
        try:
            receipt = await self._transport.send(push)
        except Exception as exc:
            log.warning("caregiver_push_failed", caregiver_id=caregiver_id, error=str(exc))
            return False

        if receipt.confirmed:
            log.info("caregiver_push_sent", caregiver_id=caregiver_id)
            return True
        log.warning(
            "caregiver_push_not_confirmed",
            caregiver_id=caregiver_id,
            details=receipt.details,
        )
        return False

    async def _store_fallback(
        self, caregiver_id: str, dose: DoseEvent, message: str
    ) -> CaregiverDelivery:
        record = StoredAlertRecord(
            patient_id=dose.patient_id,
            caregiver_id=caregiver_id,
            message=message,
            kind=AlertKind.MEDICATION_MISSED_LOCAL,
            medication_schedule_id=None,
        )
        try:
            await self._caregivers.store_alert(record)
        except Exception as exc:
            log.error(
                "caregiver_alert_store_failed",
                caregiver_id=caregiver_id,
                patient_id=dose.patient_id,
                error=str(exc),
            )
            return CaregiverDelivery(caregiver_id, DeliveryOutcome.STORE_FAILED)

        log.info("caregiver_alert_stored", caregiver_id=caregiver_id, alert_id=record.id)
        return CaregiverDelivery(caregiver_id, DeliveryOutcome.STORED)
