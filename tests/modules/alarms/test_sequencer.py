from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from carealarm.modules.alarms.records import AlarmSettings, DoseEvent
from carealarm.modules.alarms.sequencer import AlarmSequencer, URGENCY_LEVELS
from carealarm.modules.notifications.scheduler import LocalScheduler
from carealarm.shared.constants import Priority
from tests.fakes import FakeAlarmRepository, FakeClock, FakeNotificationSettingsRepository, payload_types


@pytest.mark.asyncio
async def test_schedule_registers_steps_and_caregiver_check(
    sequencer: AlarmSequencer, scheduler: LocalScheduler, dose: DoseEvent
) -> None:
    plan = await sequencer.schedule(dose)

    pending = {n.identifier: n for n in await scheduler.list_pending()}
    assert set(pending) == {
        "medication-schedule-1-2",
        "medication-schedule-1-3",
        "caregiver-check-schedule-1",
    }
    assert plan.step_times[2] == dose.scheduled_time + timedelta(minutes=5)
    assert plan.step_times[3] == dose.scheduled_time + timedelta(minutes=10)
    assert plan.caregiver_check_at == dose.scheduled_time + timedelta(minutes=15)

    final = pending["medication-schedule-1-3"].content
    assert final.title == "LAST REMINDER - URGENT"
    assert final.priority == Priority.MAX
    assert final.vibrate == URGENCY_LEVELS[3].vibration
    assert final.data["medicationScheduleId"] == "schedule-1"
    assert final.data["attempt"] == 3

    check = pending["caregiver-check-schedule-1"].content
    assert check.data["type"] == "caregiver-check"
    assert check.data["alarmId"] == "alarm-1"


@pytest.mark.asyncio
async def test_attempt_ordinals_are_gap_free(
    sequencer: AlarmSequencer, alarms: FakeAlarmRepository, dose: DoseEvent
) -> None:
    await sequencer.schedule(dose)

    assert alarms.ordinals("schedule-1") == [1, 2, 3]


@pytest.mark.asyncio
async def test_rescheduling_same_dose_does_not_duplicate_attempts(
    sequencer: AlarmSequencer, scheduler: LocalScheduler, alarms: FakeAlarmRepository, dose: DoseEvent
) -> None:
    await sequencer.schedule(dose)
    await sequencer.schedule(dose)

    assert alarms.ordinals("schedule-1") == [1, 2, 3]
    assert len(await scheduler.list_pending()) == 3


@pytest.mark.asyncio
async def test_logs_step_even_when_registration_fails(
    alarms: FakeAlarmRepository,
    notification_settings: FakeNotificationSettingsRepository,
    config,
    clock: FakeClock,
    dose: DoseEvent,
) -> None:
    scheduler = AsyncMock(spec=LocalScheduler)
    scheduler.schedule.side_effect = RuntimeError("scheduler unavailable")
    sequencer = AlarmSequencer(scheduler, alarms, notification_settings, config=config, clock=clock)

    plan = await sequencer.schedule(dose)

    assert plan.identifiers == []
    assert alarms.ordinals("schedule-1") == [1, 2, 3]


@pytest.mark.asyncio
async def test_log_failure_does_not_stop_scheduling(
    sequencer: AlarmSequencer, scheduler: LocalScheduler, alarms: FakeAlarmRepository, dose: DoseEvent
) -> None:
    alarms.fail.add("record_attempt")

    plan = await sequencer.schedule(dose)

    assert len(plan.identifiers) == 3
    assert len(await scheduler.list_pending()) == 3


@pytest.mark.asyncio
async def test_accelerated_timing(sequencer: AlarmSequencer, dose: DoseEvent) -> None:
    plan = await sequencer.schedule(dose, accelerated=True)

    assert plan.step_times[2] - dose.scheduled_time == timedelta(seconds=10)
    assert plan.step_times[3] - dose.scheduled_time == timedelta(seconds=20)
    assert plan.caregiver_check_at - dose.scheduled_time == timedelta(seconds=30)


@pytest.mark.asyncio
async def test_patient_settings_drive_timing(
    sequencer: AlarmSequencer,
    notification_settings: FakeNotificationSettingsRepository,
    dose: DoseEvent,
) -> None:
    notification_settings.alarm_settings["patient-1"] = AlarmSettings(
        snooze_minutes=3, caregiver_alert_delay=20, sound_enabled=False
    )

    plan = await sequencer.schedule(dose)

    assert plan.step_times[3] - dose.scheduled_time == timedelta(minutes=6)
    assert plan.caregiver_check_at - dose.scheduled_time == timedelta(minutes=20)


@pytest.mark.asyncio
async def test_settings_failure_falls_back_to_defaults(
    sequencer: AlarmSequencer,
    notification_settings: FakeNotificationSettingsRepository,
    dose: DoseEvent,
) -> None:
    notification_settings.fail.add("get_alarm_settings")

    plan = await sequencer.schedule(dose)

    assert plan.caregiver_check_at - dose.scheduled_time == timedelta(minutes=15)


@pytest.mark.asyncio
async def test_seconds_until_rounds_and_clamps(sequencer: AlarmSequencer, clock: FakeClock) -> None:
    assert sequencer.seconds_until(clock() + timedelta(seconds=299.6)) == 300
    assert sequencer.seconds_until(clock() - timedelta(seconds=30)) == 1


@pytest.mark.asyncio
async def test_mark_taken_cancels_only_that_schedule(
    sequencer: AlarmSequencer,
    scheduler: LocalScheduler,
    alarms: FakeAlarmRepository,
    dose: DoseEvent,
) -> None:
    other = DoseEvent(
        alarm_id="alarm-2",
        patient_id="patient-1",
        medication_schedule_id="schedule-2",
        medication_name="Carbidopa",
        scheduled_time=dose.scheduled_time,
    )
    await sequencer.schedule(dose)
    await sequencer.schedule(other)

    cancelled = await sequencer.mark_taken("schedule-1")

    assert cancelled == 3
    remaining = await scheduler.list_pending()
    assert all(n.content.data["medicationScheduleId"] == "schedule-2" for n in remaining)
    assert payload_types(remaining).count("medication-alarm") == 2
    assert all(row.patient_responded for row in alarms.for_schedule("schedule-1"))
    assert not any(row.patient_responded for row in alarms.for_schedule("schedule-2"))


@pytest.mark.asyncio
async def test_mark_taken_records_administration(
    sequencer: AlarmSequencer, alarms: FakeAlarmRepository, clock: FakeClock
) -> None:
    await sequencer.mark_taken("schedule-1", patient_id="patient-1", medication_id="med-1")

    assert alarms.administrations == [("patient-1", "med-1", clock())]


@pytest.mark.asyncio
async def test_mark_taken_survives_store_failure(
    sequencer: AlarmSequencer, scheduler: LocalScheduler, alarms: FakeAlarmRepository, dose: DoseEvent
) -> None:
    await sequencer.schedule(dose)
    alarms.fail.add("mark_responded")

    cancelled = await sequencer.mark_taken("schedule-1")

    assert cancelled == 3
    assert await scheduler.list_pending() == []


@pytest.mark.asyncio
async def test_mark_taken_answers_only_the_newest_due_dose(
    sequencer: AlarmSequencer, alarms: FakeAlarmRepository, clock: FakeClock, dose: DoseEvent
) -> None:
    await sequencer.schedule(dose)
    next_day = replace(dose, scheduled_time=dose.scheduled_time + timedelta(days=1))
    clock.now = next_day.scheduled_time
    await sequencer.schedule(next_day)
    clock.advance(minutes=2)

    await sequencer.mark_taken("schedule-1")

    assert all(row.patient_responded for row in alarms.for_dose("schedule-1", next_day.scheduled_time))
    assert not any(row.patient_responded for row in alarms.for_dose("schedule-1", dose.scheduled_time))


@pytest.mark.asyncio
async def test_mark_taken_with_explicit_dose_instant(
    sequencer: AlarmSequencer, alarms: FakeAlarmRepository, clock: FakeClock, dose: DoseEvent
) -> None:
    await sequencer.schedule(dose)
    next_day = replace(dose, scheduled_time=dose.scheduled_time + timedelta(days=1))
    clock.now = next_day.scheduled_time
    await sequencer.schedule(next_day)

    await sequencer.mark_taken("schedule-1", scheduled_time=dose.scheduled_time)

    assert all(row.patient_responded for row in alarms.for_dose("schedule-1", dose.scheduled_time))
    assert not any(row.patient_responded for row in alarms.for_dose("schedule-1", next_day.scheduled_time))


@pytest.mark.asyncio
async def test_alarm_payload_carries_dose_instant(
    sequencer: AlarmSequencer, scheduler: LocalScheduler, dose: DoseEvent
) -> None:
    await sequencer.schedule(dose)

    pending = {n.identifier: n for n in await scheduler.list_pending()}
    assert pending["medication-schedule-1-2"].content.data["scheduledTime"] == "2024-03-01T08:00:00Z"
