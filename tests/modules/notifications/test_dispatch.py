import pytest
from pydantic import ValidationError

from carealarm.modules.alarms.records import DoseEvent
from carealarm.modules.notifications.payloads import (
    CaregiverCheckPayload,
    EscalationCheckPayload,
)
from carealarm.modules.notifications.scheduler import NotificationContent, ScheduledNotification
from carealarm.modules.notifications.service import NotificationService
from carealarm.shared.constants import AlertKind, NotificationAction
from tests.fakes import FakeAlarmRepository, FakeCaregiverRepository, FakeClock


def _delivered(data: dict, clock: FakeClock) -> ScheduledNotification:
    return ScheduledNotification(
        identifier="n-1",
        content=NotificationContent(title="t", body="b", data=data),
        fire_at=clock(),
        owner_id="patient-1",
    )


def _check_data(dose: DoseEvent) -> dict:
    return CaregiverCheckPayload(
        medication_schedule_id=dose.medication_schedule_id,
        patient_id=dose.patient_id,
        alarm_id=dose.alarm_id,
        medication_name=dose.medication_name,
        scheduled_time=dose.scheduled_time,
    ).to_payload()


@pytest.mark.asyncio
async def test_unknown_payload_is_shown(service: NotificationService, clock: FakeClock) -> None:
    shown = await service.dispatcher.on_delivered(_delivered({"type": "chat-message"}, clock))
    assert shown is True


@pytest.mark.asyncio
async def test_escalation_check_is_never_shown(
    service: NotificationService, alarms: FakeAlarmRepository, clock: FakeClock
) -> None:
    data = EscalationCheckPayload(
        original_notification_id="n-0",
        patient_id="patient-1",
        medication_id="med-1",
    ).to_payload()

    shown = await service.dispatcher.on_delivered(_delivered(data, clock))

    assert shown is False
    assert alarms.ordinals("med-1") == [1, 2, 3]


@pytest.mark.asyncio
async def test_caregiver_check_delivery_escalates(
    service: NotificationService,
    caregivers: FakeCaregiverRepository,
    clock: FakeClock,
    dose: DoseEvent,
) -> None:
    caregivers.link("patient-1", "caregiver-1")

    shown = await service.dispatcher.on_delivered(_delivered(_check_data(dose), clock))

    assert shown is True
    assert [alert.caregiver_id for alert in caregivers.alerts] == ["caregiver-1"]


@pytest.mark.asyncio
async def test_mark_taken_action_cancels_sequence(service: NotificationService, dose: DoseEvent) -> None:
    await service.sequencer.schedule(dose)
    data = {"type": "medication-alarm", "medicationScheduleId": "schedule-1", "attempt": 2}

    outcome = await service.dispatcher.on_response(data, NotificationAction.MARK_TAKEN)

    assert outcome == "marked_taken"
    assert await service.scheduler.list_pending() == []


@pytest.mark.asyncio
async def test_snooze_action_registers_snoozed_reminder(service: NotificationService) -> None:
    data = {"type": "medication-alarm", "medicationScheduleId": "schedule-1", "patientId": "patient-1"}

    outcome = await service.dispatcher.on_response(data, "SNOOZE")

    assert outcome == "snoozed"
    pending = await service.scheduler.list_pending()
    assert [n.identifier for n in pending] == ["snooze-schedule-1"]
    assert pending[0].content.data["snoozed"] is True


@pytest.mark.asyncio
async def test_default_tap_on_alarm_does_nothing(service: NotificationService) -> None:
    data = {"type": "medication-alarm", "medicationScheduleId": "schedule-1"}
    assert await service.dispatcher.on_response(data) is None


@pytest.mark.asyncio
async def test_caregiver_mark_taken_acknowledges_schedule_alerts(
    service: NotificationService, caregivers: FakeCaregiverRepository, dose: DoseEvent
) -> None:
    await service.sequencer.schedule(dose)
    alert = caregivers.seed_alert("caregiver-1")
    alert.medication_schedule_id = "schedule-1"
    data = {
        "type": "caregiver-alert",
        "patientId": "patient-1",
        "medicationScheduleId": "schedule-1",
        "caregiverId": "caregiver-1",
    }

    outcome = await service.dispatcher.on_response(data, NotificationAction.MARK_TAKEN)

    assert outcome == "marked_taken"
    assert alert.acknowledged is True
    assert await service.scheduler.list_pending() == []


@pytest.mark.asyncio
async def test_emergency_action_stores_alert(
    service: NotificationService, caregivers: FakeCaregiverRepository
) -> None:
    data = {
        "type": "caregiver-alert-local",
        "alertId": "alert-9",
        "patientId": "patient-1",
        "caregiverId": "caregiver-1",
    }

    outcome = await service.dispatcher.on_response(data, NotificationAction.EMERGENCY)

    assert outcome == "emergency_recorded"
    assert caregivers.alerts[-1].kind == AlertKind.EMERGENCY
    assert caregivers.alerts[-1].caregiver_id == "caregiver-1"


@pytest.mark.asyncio
async def test_call_patient_action(service: NotificationService) -> None:
    data = {"type": "caregiver-alert", "patientId": "patient-1"}
    assert await service.dispatcher.on_response(data, NotificationAction.CALL_PATIENT) == "call_requested"


@pytest.mark.asyncio
async def test_response_rejects_malformed_payload(service: NotificationService) -> None:
    with pytest.raises(ValidationError):
        await service.dispatcher.on_response({"type": "medication-alarm"})


@pytest.mark.asyncio
async def test_caregiver_check_response_deduplicates(
    service: NotificationService, caregivers: FakeCaregiverRepository, dose: DoseEvent
) -> None:
    caregivers.link("patient-1", "caregiver-1")
    service.escalation_lock.acquire(dose.escalation_key())

    outcome = await service.dispatcher.on_response(_check_data(dose))

    assert outcome == "not_escalated"
    assert caregivers.alerts == []
