import asyncio
from typing import Any, Iterable

import structlog

log = structlog.get_logger()


class DeviceStreamManager:
    """Fan shown notifications out to the SSE streams a user's devices hold open."""

    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue[dict[str, Any]]]] = {}

    def subscribe(self, queue: asyncio.Queue[dict[str, Any]], user_id: str) -> None:
        self._queues.setdefault(self._normalize_user_id(user_id), []).append(queue)

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        for user_key, queues in list(self._queues.items()):
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._queues.pop(user_key, None)

    def publish(self, user_id: str | None, payload: dict[str, Any]) -> int:
        """Queue `payload` for every stream of `user_id`; returns how many streams took it."""
        if not user_id:
            return 0
        delivered = 0
        for queue in self._iter_queues(user_id):
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                # Slow client; it will see the next one.
                log.warning("device_stream_queue_full", user_id=user_id)
        return delivered

    def subscriber_count(self, user_id: str) -> int:
        return len(self._queues.get(self._normalize_user_id(user_id), []))

    def _iter_queues(self, user_id: str) -> Iterable[asyncio.Queue[dict[str, Any]]]:
        return list(self._queues.get(self._normalize_user_id(user_id), []))

    @staticmethod
    def _normalize_user_id(user_id: str) -> str:
        return user_id.strip()
