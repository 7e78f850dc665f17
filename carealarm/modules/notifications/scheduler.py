"""
In-process local notification scheduler.

Mirrors the device capability the alarm core is written against: register a delivery
some seconds from now under an identifier, list what is pending, cancel by identifier,
and show something immediately. Registering an identifier that is already pending
replaces the earlier registration.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque

import structlog

from carealarm.core.expiring import Clock, utcnow
from carealarm.modules.notifications.streams import DeviceStreamManager
from carealarm.shared.constants import Priority

log = structlog.get_logger()


@dataclass
class NotificationContent:
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    sound: str | None = "default"
    vibrate: tuple[int, ...] | None = None
    priority: Priority = Priority.DEFAULT
    category: str | None = None


@dataclass
class ScheduledNotification:
    identifier: str
    content: NotificationContent
    fire_at: datetime
    owner_id: str | None = None

    @property
    def payload_type(self) -> str | None:
        return self.content.data.get("type")

    def to_message(self) -> dict[str, Any]:
        return {
            "event": "notification",
            "identifier": self.identifier,
            "title": self.content.title,
            "body": self.content.body,
            "priority": self.content.priority.value,
            "sound": self.content.sound,
            "vibrate": list(self.content.vibrate) if self.content.vibrate else None,
            "category": self.content.category,
            "data": self.content.data,
            "deliveredAt": self.fire_at.isoformat(),
        }


# Returns whether the notification should be shown to the user.
DeliveryHandler = Callable[[ScheduledNotification], Awaitable[bool]]


class LocalScheduler:
    def __init__(
        self,
        streams: DeviceStreamManager | None = None,
        clock: Clock = utcnow,
        history_limit: int = 200,
    ) -> None:
        self._streams = streams
        self._clock = clock
        self._handler: DeliveryHandler | None = None
        self._pending: dict[str, tuple[ScheduledNotification, asyncio.TimerHandle]] = {}
        self._deliveries: set[asyncio.Task[None]] = set()
        self.delivered: Deque[ScheduledNotification] = deque(maxlen=history_limit)

    def set_delivery_handler(self, handler: DeliveryHandler | None) -> None:
        self._handler = handler

    async def schedule(
        self,
        identifier: str | None,
        content: NotificationContent,
        seconds: float,
        owner_id: str | None = None,
    ) -> str:
        identifier = identifier or uuid.uuid4().hex
        seconds = max(0.0, float(seconds))
        self._drop(identifier)

        notification = ScheduledNotification(
            identifier=identifier,
            content=content,
            fire_at=self._clock() + timedelta(seconds=seconds),
            owner_id=owner_id,
        )
        loop = asyncio.get_running_loop()
        handle = loop.call_later(seconds, self._fire, identifier)
        self._pending[identifier] = (notification, handle)
        return identifier

    async def list_pending(self) -> list[ScheduledNotification]:
        return [notification for notification, _ in self._pending.values()]

    async def cancel(self, identifier: str) -> bool:
        return self._drop(identifier)

    async def present(
        self, content: NotificationContent, owner_id: str | None = None
    ) -> str:
        notification = ScheduledNotification(
            identifier=uuid.uuid4().hex,
            content=content,
            fire_at=self._clock(),
            owner_id=owner_id,
        )
        await self._deliver(notification)
        return notification.identifier

    async def close(self) -> None:
        for identifier in list(self._pending):
            self._drop(identifier)
        deliveries = list(self._deliveries)
        for task in deliveries:
            task.cancel()
        if deliveries:
            await asyncio.gather(*deliveries, return_exceptions=True)
        self._deliveries.clear()

    def _drop(self, identifier: str) -> bool:
        entry = self._pending.pop(identifier, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def _fire(self, identifier: str) -> None:
        entry = self._pending.pop(identifier, None)
        if entry is None:
            return
        task = asyncio.create_task(self._deliver(entry[0]))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, notification: ScheduledNotification) -> None:
        show = True
        if self._handler is not None:
            try:
                show = await self._handler(notification)
            except Exception:
                log.exception(
                    "notification_delivery_handler_failed",
                    identifier=notification.identifier,
                    type=notification.payload_type,
                )
        if not show:
            log.debug(
                "notification_handled_silently",
                identifier=notification.identifier,
                type=notification.payload_type,
            )
            return

        self.delivered.append(notification)
        if self._streams is not None:
            self._streams.publish(notification.owner_id, notification.to_message())
        log.info(
            "notification_delivered",
            identifier=notification.identifier,
            type=notification.payload_type,
            owner_id=notification.owner_id,
        )
