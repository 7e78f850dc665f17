from enum import Enum


class Role(str, Enum):
    PATIENT = "patient"
    CAREGIVER = "caregiver"


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AdministrationStatus(str, Enum):
    TAKEN = "taken"
    SKIPPED = "skipped"


class AlertKind(str, Enum):
    MEDICATION_MISSED_LOCAL = "medication_missed_local"
    EMERGENCY = "emergency"


class NotificationType(str, Enum):
    """Discriminator carried in every local notification payload."""

    MEDICATION_REMINDER = "medication-reminder"
    MEDICATION_ALARM = "medication-alarm"
    CAREGIVER_CHECK = "caregiver-check"
    ESCALATION_CHECK = "escalation-check"
    CAREGIVER_ALERT = "caregiver-alert"
    CAREGIVER_ALERT_LOCAL = "caregiver-alert-local"


class NotificationAction(str, Enum):
    DEFAULT = "default"
    MARK_TAKEN = "MARK_TAKEN"
    SNOOZE = "SNOOZE"
    CALL_PATIENT = "CALL_PATIENT"
    EMERGENCY = "EMERGENCY"


class Priority(str, Enum):
    DEFAULT = "default"
    HIGH = "high"
    MAX = "max"
