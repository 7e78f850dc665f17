import asyncio

import pytest

from carealarm.modules.notifications.scheduler import LocalScheduler, NotificationContent
from carealarm.modules.notifications.streams import DeviceStreamManager
from tests.fakes import FakeClock


def _content(kind: str = "medication-alarm", **data: str) -> NotificationContent:
    return NotificationContent(title="t", body="b", data={"type": kind, **data})


@pytest.mark.asyncio
async def test_schedule_replaces_existing_identifier(scheduler: LocalScheduler) -> None:
    await scheduler.schedule("medication-s1-2", _content(step="a"), 300)
    await scheduler.schedule("medication-s1-2", _content(step="b"), 600)

    pending = await scheduler.list_pending()
    assert len(pending) == 1
    assert pending[0].content.data["step"] == "b"


@pytest.mark.asyncio
async def test_cancel_unknown_identifier_returns_false(scheduler: LocalScheduler) -> None:
    assert await scheduler.cancel("nope") is False
    identifier = await scheduler.schedule(None, _content(), 60)
    assert await scheduler.cancel(identifier) is True
    assert await scheduler.list_pending() == []


@pytest.mark.asyncio
async def test_due_notification_is_delivered_and_streamed() -> None:
    streams = DeviceStreamManager()
    scheduler = LocalScheduler(streams=streams, clock=FakeClock())
    queue: asyncio.Queue = asyncio.Queue()
    streams.subscribe(queue, "patient-1")

    await scheduler.schedule("soon", _content(), 0.01, owner_id="patient-1")
    message = await asyncio.wait_for(queue.get(), timeout=1.0)

    assert message["identifier"] == "soon"
    assert message["event"] == "notification"
    assert [n.identifier for n in scheduler.delivered] == ["soon"]
    assert await scheduler.list_pending() == []
    await scheduler.close()


@pytest.mark.asyncio
async def test_handler_can_suppress_display(scheduler: LocalScheduler) -> None:
    seen: list[str] = []

    async def handler(notification) -> bool:
        seen.append(notification.identifier)
        return False

    scheduler.set_delivery_handler(handler)
    await scheduler.present(_content("escalation-check"), owner_id="patient-1")

    assert len(seen) == 1
    assert list(scheduler.delivered) == []


@pytest.mark.asyncio
async def test_failing_handler_still_shows(scheduler: LocalScheduler) -> None:
    async def handler(notification) -> bool:
        raise RuntimeError("boom")

    scheduler.set_delivery_handler(handler)
    await scheduler.present(_content(), owner_id="patient-1")

    assert len(scheduler.delivered) == 1


@pytest.mark.asyncio
async def test_close_cancels_pending(scheduler: LocalScheduler) -> None:
    await scheduler.schedule("a", _content(), 60)
    await scheduler.schedule("b", _content(), 120)

    await scheduler.close()

    assert await scheduler.list_pending() == []
