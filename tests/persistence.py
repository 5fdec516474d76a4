from datetime import datetime, timedelta

import pytest
from pytest_assume.plugin import assume

from remind.helpers.config_models.store import MemoryModel
from remind.models.readiness import ReadinessEnum
from remind.models.reminder import ReminderModel
from remind.persistence.memory import MemoryStore
from remind.persistence.reminders import ReminderPersistence


class StoreFailingMock(MemoryStore):
    """
    Store refusing every write.
    """

    def __init__(self, raises: bool) -> None:
        super().__init__(MemoryModel())
        self._raises = raises

    async def set(
        self,
        key: str,  # noqa: ARG002
        value: bytes,  # noqa: ARG002
    ) -> bool:
        if self._raises:
            raise ConnectionError("Store unreachable")
        return False


@pytest.mark.asyncio
async def test_save_load(persistence: ReminderPersistence) -> None:
    """
    Test a saved collection loads back the same.

    Steps:
    1. Save a scheduled reminder and a completed one
    2. Load the collection
    3. Check every field is kept
    """
    fire_at = datetime.now().replace(second=0, microsecond=0) + timedelta(days=1)
    reminders = [
        ReminderModel(
            fire_at=fire_at,
            notification_handle="handle-1",
            title="Buy milk",
        ),
        ReminderModel(
            completed=True,
            fire_at=fire_at - timedelta(days=2),
            title="Past item",
        ),
    ]

    assume(await persistence.save(reminders))
    loaded = await persistence.load()

    assume(loaded == reminders)


@pytest.mark.asyncio
async def test_load_missing(persistence: ReminderPersistence) -> None:
    """
    Test a slot never written is an empty collection.
    """
    assume(await persistence.load() == [])


@pytest.mark.parametrize(
    "data",
    [
        pytest.param(b"{not json", id="not_json"),
        pytest.param(b'{"title": "not a list"}', id="not_list"),
        pytest.param(b'[{"title": "missing fields"}]', id="missing_fields"),
        pytest.param(b"\xff\xfe\x00", id="binary"),
    ],
)
@pytest.mark.asyncio
async def test_load_corrupted(
    data: bytes,
    persistence: ReminderPersistence,
    random_text: str,
    store: MemoryStore,
) -> None:
    """
    Test corrupted data is an empty collection, and does not raise.
    """
    await store.set(
        key=random_text,
        value=data,
    )

    assume(await persistence.load() == [])


@pytest.mark.parametrize(
    "raises",
    [
        pytest.param(False, id="refused"),
        pytest.param(True, id="raised"),
    ],
)
@pytest.mark.asyncio
async def test_save_failure(
    raises: bool,
    random_text: str,
) -> None:
    """
    Test store failures are reported as a failed save, never raised.
    """
    persistence = ReminderPersistence(
        key=random_text,
        store=StoreFailingMock(raises=raises),
    )

    assume(
        not await persistence.save(
            [
                ReminderModel(
                    fire_at=datetime.now(),
                    title="Not saved",
                )
            ]
        )
    )
    assume(await persistence.load() == [])


@pytest.mark.asyncio
async def test_readiness(persistence: ReminderPersistence) -> None:
    """
    Test readiness is the one of the store.
    """
    assume(await persistence.readiness() == ReadinessEnum.OK)
