from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    PROJECT_NAME: str = "Care Alarm"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = ""  # local, dev, prod (from .env)

    # MongoDB (from .env)
    MONGODB_URL: str = ""
    MONGODB_DB_NAME: str = ""

    # CORS (from .env, comma-separated)
    BACKEND_CORS_ORIGINS: List[str] = []

    # Logging & Sentry
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None

    # Alarm sequence
    ALARM_SNOOZE_MINUTES: int = 5
    CAREGIVER_ALERT_DELAY_MINUTES: int = 15
    ACCELERATED_SNOOZE_SECONDS: int = 10
    ACCELERATED_CAREGIVER_DELAY_SECONDS: int = 30
    SNOOZE_ACTION_MINUTES: int = 5

    # Escalation
    ESCALATION_LOCK_TTL_SECONDS: int = 120
    ESCALATION_LOCK_SWEEP_SECONDS: int = 30
    TAKEN_LOOKBACK_MINUTES: int = 5
    ESCALATION_CHECK_DELAY_SECONDS: int = 120
    LATE_ESCALATION_ACCELERATED: bool = True

    # Caregiver alerts
    CAREGIVER_POLL_INTERVAL_SECONDS: float = 10.0
    CAREGIVER_POLL_BATCH_LIMIT: int = 5
    PUSH_SEND_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # Background tasks (disabled unless the host can run them)
    BACKGROUND_TASKS_ENABLED: bool = False
    MISSED_DOSE_SWEEP_INTERVAL_SECONDS: int = 60
    MISSED_DOSE_GRACE_MINUTES: int = 15

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore"
    )


settings = Settings()
