from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, AsyncGenerator

import pytest
from beanie import PydanticObjectId
from beanie.operators import Or, Set
from httpx import ASGITransport, AsyncClient

from carealarm.core.config import Settings
from carealarm.core.expiring import ExpiringKeySet
from carealarm.main import app
from carealarm.modules.alarms.models import AdministrationLog, AlarmAttempt
from carealarm.modules.alarms.records import DoseEvent
from carealarm.modules.alarms.sequencer import AlarmSequencer
from carealarm.modules.caregivers.models import CaregiverAlert, CaregiverConnection, Profile
from carealarm.modules.caregivers.pipeline import CaregiverAlertPipeline
from carealarm.modules.escalation.trigger import EscalationTrigger
from carealarm.modules.notifications.models import NotificationSettings
from carealarm.modules.notifications.scheduler import LocalScheduler
from carealarm.modules.notifications.service import NotificationService
from carealarm.modules.notifications.streams import DeviceStreamManager
from tests.fakes import (
    FakeAlarmRepository,
    FakeCaregiverRepository,
    FakeClock,
    FakeNotificationSettingsRepository,
    FakeTransport,
)

SCHEDULED_AT = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None, ENVIRONMENT="test")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(SCHEDULED_AT)


@pytest.fixture
def alarms() -> FakeAlarmRepository:
    return FakeAlarmRepository()


@pytest.fixture
def caregivers() -> FakeCaregiverRepository:
    return FakeCaregiverRepository()


@pytest.fixture
def notification_settings() -> FakeNotificationSettingsRepository:
    return FakeNotificationSettingsRepository()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dose() -> DoseEvent:
    return DoseEvent(
        alarm_id="alarm-1",
        patient_id="patient-1",
        medication_schedule_id="schedule-1",
        medication_name="Levodopa",
        scheduled_time=SCHEDULED_AT,
    )


@pytest.fixture
async def scheduler(clock: FakeClock) -> AsyncGenerator[LocalScheduler, None]:
    scheduler = LocalScheduler(streams=DeviceStreamManager(), clock=clock)
    yield scheduler
    await scheduler.close()


@pytest.fixture
def sequencer(
    scheduler: LocalScheduler,
    alarms: FakeAlarmRepository,
    notification_settings: FakeNotificationSettingsRepository,
    config: Settings,
    clock: FakeClock,
) -> AlarmSequencer:
    return AlarmSequencer(scheduler, alarms, notification_settings, config=config, clock=clock)


@pytest.fixture
def pipeline(
    caregivers: FakeCaregiverRepository,
    alarms: FakeAlarmRepository,
    notification_settings: FakeNotificationSettingsRepository,
    transport: FakeTransport,
    clock: FakeClock,
) -> CaregiverAlertPipeline:
    return CaregiverAlertPipeline(caregivers, alarms, notification_settings, transport, clock=clock)


@pytest.fixture
async def trigger(
    alarms: FakeAlarmRepository,
    pipeline: CaregiverAlertPipeline,
    sequencer: AlarmSequencer,
    config: Settings,
    clock: FakeClock,
) -> AsyncGenerator[EscalationTrigger, None]:
    lock = ExpiringKeySet(
        ttl=timedelta(seconds=config.ESCALATION_LOCK_TTL_SECONDS), clock=clock, name="escalations"
    )
    trigger = EscalationTrigger(alarms, pipeline, sequencer, lock, config=config, clock=clock)
    yield trigger
    await trigger.close()


@pytest.fixture
async def service(
    config: Settings,
    alarms: FakeAlarmRepository,
    caregivers: FakeCaregiverRepository,
    notification_settings: FakeNotificationSettingsRepository,
    transport: FakeTransport,
    clock: FakeClock,
) -> AsyncGenerator[NotificationService, None]:
    service = NotificationService(
        config=config,
        alarms=alarms,
        caregivers=caregivers,
        notification_settings=notification_settings,
        transport=transport,
        clock=clock,
    )
    await service.start()
    yield service
    await service.stop()


@pytest.fixture
async def client(service: NotificationService) -> AsyncGenerator[AsyncClient, None]:
    app.state.notification_service = service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.notification_service = None

class _FieldProxy:
    """Minimal stand-in for Beanie field proxies used in query expressions."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __eq__(self, other: object) -> tuple[str, str, object]:  # type: ignore[override]
        return ("eq", self.name, other)

    def __ge__(self, other: object) -> tuple[str, str, object]:
        return ("ge", self.name, other)

    def __le__(self, other: object) -> tuple[str, str, object]:
        return ("le", self.name, other)

    def __gt__(self, other: object) -> tuple[str, str, object]:
        return ("gt", self.name, other)

    def __lt__(self, other: object) -> tuple[str, str, object]:
        return ("lt", self.name, other)

    # Used as keys inside Set({...}) update expressions.
    def __hash__(self) -> int:
        return hash(self.name)


def _matches(row: Any, expr: object) -> bool:
    if isinstance(expr, Or):
        return any(_matches(row, inner) for inner in expr.expressions)
    op, field, value = expr  # type: ignore[misc]
    attr = getattr(row, field, None)
    if op == "eq":
        return attr == value
    if attr is None:
        return False
    if op == "ge":
        return attr >= value
    if op == "le":
        return attr <= value
    if op == "gt":
        return attr > value
    return attr < value


class _FakeQuery:
    def __init__(self, rows: list[Any], filters: tuple[object, ...]) -> None:
        self._rows = rows
        self._filters = list(filters)
        self._sort: str | None = None
        self._limit: int | None = None

    def find(self, *exprs: object) -> "_FakeQuery":
        self._filters.extend(exprs)
        return self

    def sort(self, key: str) -> "_FakeQuery":
        self._sort = key
        return self

    def limit(self, count: int) -> "_FakeQuery":
        self._limit = count
        return self

    def _results(self) -> list[Any]:
        rows = [row for row in self._rows if all(_matches(row, expr) for expr in self._filters)]
        if self._sort:
            field = self._sort.lstrip("+-")
            rows.sort(key=lambda row: getattr(row, field), reverse=self._sort.startswith("-"))
        if self._limit is not None:
            rows = rows[: self._limit]
        return rows

    async def to_list(self) -> list[Any]:
        return self._results()

    async def first_or_none(self) -> Any | None:
        rows = self._results()
        return rows[0] if rows else None

    async def update(self, operator: Set) -> SimpleNamespace:
        rows = self._results()
        for row in rows:
            for field, value in operator.expression.items():
                setattr(row, field.name, value)
        return SimpleNamespace(modified_count=len(rows))


_DUMMY_SETTINGS = SimpleNamespace(
    pymongo_collection=None,
    motor_collection=None,
    use_state_management=False,
    use_revision=False,
)


def _install_document(monkeypatch: pytest.MonkeyPatch, model: type, rows: list[Any]) -> None:
    # Prevent Beanie from requiring real collection initialization
    monkeypatch.setattr(model, "_document_settings", _DUMMY_SETTINGS, raising=False)
    for name in model.model_fields:
        monkeypatch.setattr(model, name, _FieldProxy(name), raising=False)

    async def _insert(self: Any) -> Any:
        if self.id is None:
            self.id = PydanticObjectId()
        rows.append(self)
        return self

    async def _save(self: Any) -> Any:
        if all(row is not self for row in rows):
            return await _insert(self)
        return self

    async def _get(document_id: object) -> Any | None:
        return next((row for row in rows if row.id == document_id), None)

    def _find(*exprs: object) -> _FakeQuery:
        return _FakeQuery(rows, exprs)

    async def _find_one(*exprs: object) -> Any | None:
        return await _FakeQuery(rows, exprs).first_or_none()

    monkeypatch.setattr(model, "insert", _insert, raising=False)
    monkeypatch.setattr(model, "save", _save, raising=False)
    monkeypatch.setattr(model, "get", staticmethod(_get), raising=False)
    monkeypatch.setattr(model, "find", staticmethod(_find), raising=False)
    monkeypatch.setattr(model, "find_one", staticmethod(_find_one), raising=False)


@pytest.fixture
def documents(monkeypatch: pytest.MonkeyPatch) -> dict[type, list[Any]]:
    """Beanie documents backed by in-memory lists, keyed by document class."""
    store: dict[type, list[Any]] = {
        model: []
        for model in (
            AlarmAttempt,
            AdministrationLog,
            CaregiverConnection,
            Profile,
            CaregiverAlert,
            NotificationSettings,
        )
    }
    for model, rows in store.items():
        _install_document(monkeypatch, model, rows)
    return store
