from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from carealarm.core.config import Settings, settings

log = structlog.get_logger()


@dataclass
class PushMessage:
    to: str
    title: str
    body: str
    priority: str = "high"
    sound: str | None = "default"
    badge: int = 1
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "sound": self.sound,
            "priority": self.priority,
            "badge": self.badge,
            "data": self.data,
        }


@dataclass
class PushReceipt:
    confirmed: bool
    details: Any = None


class ExpoPushTransport:
    """Single-message client for the Expo push relay. Never retries."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        config: Settings = settings,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.PUSH_TIMEOUT_SECONDS)

    async def send(self, message: PushMessage) -> PushReceipt:
        try:
            response = await self._client.post(
                self._config.PUSH_SEND_URL,
                json=message.to_json(),
                headers={
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                    "Content-Type": "application/json",
                },
            )
            body = response.json()
        except httpx.HTTPError as exc:
            log.warning("push_request_failed", error=str(exc))
            return PushReceipt(confirmed=False, details=str(exc))
        except ValueError as exc:
            log.warning("push_response_malformed", error=str(exc))
            return PushReceipt(confirmed=False, details="malformed response body")

        return self.parse_receipt(body)

    @staticmethod
    def parse_receipt(body: Any) -> PushReceipt:
        """Only `{"data": {"status": "ok"}}` confirms; any other shape does not."""
        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, dict) and data.get("status") == "ok":
            return PushReceipt(confirmed=True, details=data)
        details = data.get("details") if isinstance(data, dict) else body
        return PushReceipt(confirmed=False, details=details)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
