from carealarm.modules.alarms.records import AlarmSettings
from carealarm.modules.notifications.models import NotificationSettings
from carealarm.modules.notifications.records import PushAddress


class NotificationSettingsRepository:
    async def get_alarm_settings(self, user_id: str) -> AlarmSettings | None:
        row = await NotificationSettings.find_one(NotificationSettings.user_id == user_id)
        if not row:
            return None
        return AlarmSettings(
            sound_enabled=row.sound_enabled,
            vibration_enabled=row.vibration_enabled,
            reminder_sound=row.reminder_sound,
            max_attempts=row.max_reminder_attempts,
            snooze_minutes=row.snooze_duration,
            caregiver_alert_delay=row.caregiver_alert_delay,
        )

    async def get_push_address(self, user_id: str) -> PushAddress | None:
        row = await NotificationSettings.find_one(NotificationSettings.user_id == user_id)
        if not row:
            return None
        return PushAddress(
            owner_id=row.user_id,
            token=row.expo_push_token,
            sound_enabled=row.sound_enabled,
            vibration_enabled=row.vibration_enabled,
        )

    async def save_push_token(
        self, user_id: str, token: str, enable_alerts: bool = False
    ) -> PushAddress:
        """Upsert the user's token; `enable_alerts` also switches sound, vibration and reminders on."""
        row = await NotificationSettings.find_one(NotificationSettings.user_id == user_id)
        if row is None:
            row = NotificationSettings(user_id=user_id, expo_push_token=token)
            await row.insert()
        else:
            row.expo_push_token = token
            if enable_alerts:
                row.sound_enabled = True
                row.vibration_enabled = True
                row.medication_reminders_enabled = True
            await row.save()
        return PushAddress(
            owner_id=row.user_id,
            token=row.expo_push_token,
            sound_enabled=row.sound_enabled,
            vibration_enabled=row.vibration_enabled,
        )
