from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from carealarm.core.config import Settings


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class DoseEvent:
    alarm_id: str
    patient_id: str
    medication_schedule_id: str
    medication_name: str
    scheduled_time: datetime
    taken: bool = False
    response_time: datetime | None = None

    def __post_init__(self) -> None:
        self.scheduled_time = ensure_utc(self.scheduled_time)

    def escalation_key(self) -> str:
        scheduled_ms = int(self.scheduled_time.timestamp() * 1000)
        return f"{self.patient_id}-{self.medication_name}-{scheduled_ms}"


@dataclass
class AlarmSettings:
    sound_enabled: bool = True
    vibration_enabled: bool = True
    reminder_sound: str = "default"
    max_attempts: int = 3
    snooze_minutes: int = 5
    caregiver_alert_delay: int = 15


DEFAULT_ALARM_SETTINGS = AlarmSettings()


@dataclass(frozen=True)
class AlarmTiming:
    """Gap between reminder steps and delay before the caregiver check."""

    interval: timedelta
    caregiver_delay: timedelta

    @classmethod
    def from_alarm_settings(cls, alarm_settings: AlarmSettings) -> AlarmTiming:
        return cls(
            interval=timedelta(minutes=alarm_settings.snooze_minutes),
            caregiver_delay=timedelta(minutes=alarm_settings.caregiver_alert_delay),
        )

    @classmethod
    def accelerated(cls, config: Settings) -> AlarmTiming:
        return cls(
            interval=timedelta(seconds=config.ACCELERATED_SNOOZE_SECONDS),
            caregiver_delay=timedelta(seconds=config.ACCELERATED_CAREGIVER_DELAY_SECONDS),
        )


@dataclass
class AttemptRecord:
    patient_id: str
    medication_schedule_id: str
    scheduled_time: datetime
    attempt: int
    sent_at: datetime
    medication_name: str | None = None
    patient_responded: bool = False
    response_time: datetime | None = None
    caregiver_alerted: bool = False
    caregiver_alert_sent_at: datetime | None = None
    id: str | None = None


@dataclass
class AlarmPlan:
    """What the sequencer registered for one dose."""

    dose: DoseEvent
    step_times: dict[int, datetime] = field(default_factory=dict)
    caregiver_check_at: datetime | None = None
    identifiers: list[str] = field(default_factory=list)
