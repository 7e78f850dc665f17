"""
In-memory key set whose entries expire after a fixed interval.

Used to keep a single in-flight escalation per logical missed dose:
- `acquire()` is synchronous, so check-and-insert cannot interleave with another handler.
- Expired entries are dropped lazily on lookup and by an optional background sweep.
- `release()` is the normal completion path; expiry only guards against a hung holder.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

log = structlog.get_logger()

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExpiringKeySet:
    """Process-local set of keys, each held for at most `ttl`."""

    def __init__(
        self,
        ttl: timedelta,
        clock: Clock = utcnow,
        name: str = "keys",
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._name = name
        self._entries: dict[str, datetime] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def acquire(self, key: str) -> bool:
        """Insert `key` unless a live entry already holds it."""
        if key in self:
            return False
        self._entries[key] = self._clock()
        return True

    def release(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        inserted_at = self._entries.get(key)
        if inserted_at is None:
            return False
        if self._clock() - inserted_at >= self._ttl:
            self._entries.pop(key, None)
            log.warning("expiring_key_lapsed", key=key, store=self._name)
            return False
        return True

    def __len__(self) -> int:
        return len(self._entries)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [
            key
            for key, inserted_at in self._entries.items()
            if now - inserted_at >= self._ttl
        ]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            log.warning("expiring_keys_swept", store=self._name, count=len(expired))
        return len(expired)

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweeper and not self._sweeper.done():
            return

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                self.sweep()

        self._sweeper = asyncio.create_task(_run())

    async def stop_sweeper(self) -> None:
        task = self._sweeper
        self._sweeper = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def clear(self) -> None:
        self._entries.clear()
