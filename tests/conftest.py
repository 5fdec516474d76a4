import asyncio
import random
import string
from collections.abc import AsyncGenerator, Iterable
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from remind.helpers.config_models.reminders import RemindersModel
from remind.helpers.config_models.store import MemoryModel
from remind.helpers.engine import ReminderEngine
from remind.helpers.logging import logger
from remind.models.readiness import ReadinessEnum
from remind.persistence.inotification import INotification
from remind.persistence.memory import MemoryStore
from remind.persistence.reminders import ReminderPersistence


class NotificationMock(INotification):
    """
    Gateway recording every call, notifications only fire when asked to.
    """

    cancel_many_calls: list[set[str]]
    cancelled: list[str]
    _counter: int
    permission_granted: bool
    scheduled: dict[str, str]
    schedule_delay_sec: float | None

    def __init__(self, permission_granted: bool = True) -> None:
        self.cancel_many_calls = []
        self.cancelled = []
        self.permission_granted = permission_granted
        self.scheduled = {}
        self.schedule_delay_sec = None
        self._counter = 0

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def request_permission(self) -> bool:
        return self.permission_granted

    async def schedule(
        self,
        body: str,  # noqa: ARG002
        correlation_id: str,
        fire_at: datetime,  # noqa: ARG002
        title: str,  # noqa: ARG002
    ) -> str | None:
        if self.schedule_delay_sec:
            # Simulate a stalled gateway
            await asyncio.sleep(self.schedule_delay_sec)
        if not self.permission_granted:
            return None
        self._counter += 1
        handle = f"handle-{self._counter}"
        self.scheduled[handle] = correlation_id
        logger.debug("Mock scheduled %s for %s", handle, correlation_id)
        return handle

    async def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)
        self.scheduled.pop(handle, None)

    async def cancel_many(self, handles: Iterable[str]) -> None:
        handles = set(handles)
        self.cancel_many_calls.append(handles)
        for handle in handles:
            self.scheduled.pop(handle, None)

    async def pending(self, handles: Iterable[str]) -> set[str]:
        return {handle for handle in handles if handle in self.scheduled}

    async def close(self) -> None:
        self.scheduled.clear()

    def fire(self, handle: str) -> bool:
        """
        Present a pending notification, as the platform would do at trigger time.
        """
        correlation_id = self.scheduled.pop(handle)
        return self._emit_fired(correlation_id)


class ClockMock:
    """
    Wall clock frozen at a given local time, moved forward by hand.
    """

    now: datetime

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def random_text() -> str:
    text = "".join(random.choice(string.ascii_letters) for _ in range(32))
    return text


@pytest.fixture
def clock() -> ClockMock:
    # Today at 08:00
    return ClockMock(datetime.now().replace(hour=8, minute=0, second=0, microsecond=0))


@pytest.fixture
def gateway() -> NotificationMock:
    return NotificationMock()


@pytest.fixture
def store() -> MemoryStore:
    # Fresh instance, the cached one from the config is shared across tests
    return MemoryStore(MemoryModel())


@pytest.fixture
def persistence(
    random_text: str,
    store: MemoryStore,
) -> ReminderPersistence:
    return ReminderPersistence(
        key=random_text,
        store=store,
    )


@pytest.fixture
def reminders_config() -> RemindersModel:
    return RemindersModel(schedule_timeout_sec=0.5)


@pytest_asyncio.fixture
async def engine(
    clock: ClockMock,
    gateway: NotificationMock,
    persistence: ReminderPersistence,
    reminders_config: RemindersModel,
) -> AsyncGenerator[ReminderEngine]:
    engine = ReminderEngine(
        clock=clock,
        config=reminders_config,
        gateway=gateway,
        persistence=persistence,
    )
    await engine.initialize()
    try:
        yield engine
    finally:
        await engine.close()
