import structlog

from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.notifications.records import PLACEHOLDER_TOKEN_MARKER, PushAddress
from carealarm.modules.notifications.repository import NotificationSettingsRepository

log = structlog.get_logger()


def placeholder_token(user_id: str, epoch_ms: int) -> str:
    return f"ExponentPushToken[{user_id[:8]}-{PLACEHOLDER_TOKEN_MARKER}-{epoch_ms}]"


class PushRegistration:
    """Write the current user's own push address."""

    def __init__(
        self, notification_settings: NotificationSettingsRepository, clock: Clock = utcnow
    ) -> None:
        self._notification_settings = notification_settings
        self._clock = clock

    async def register_device_token(self, user_id: str, token: str) -> PushAddress | None:
        try:
            address = await self._notification_settings.save_push_token(user_id, token)
        except Exception as exc:
            log.error("push_token_save_failed", user_id=user_id, error=str(exc))
            return None
        log.info("push_token_saved", user_id=user_id, token_prefix=token[:20])
        return address

    async def register_placeholder(self, user_id: str) -> PushAddress | None:
        """Development path: store a token the alert pipeline treats as already delivered."""
        token = placeholder_token(user_id, int(self._clock().timestamp() * 1000))
        try:
            address = await self._notification_settings.save_push_token(
                user_id, token, enable_alerts=True
            )
        except Exception as exc:
            log.error("placeholder_token_save_failed", user_id=user_id, error=str(exc))
            return None
        log.info("placeholder_token_saved", user_id=user_id, token=token)
        return address
