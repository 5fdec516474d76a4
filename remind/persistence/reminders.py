from collections.abc import Iterable

from pydantic import TypeAdapter, ValidationError

from remind.helpers.logging import logger
from remind.helpers.monitoring import start_as_current_span
from remind.models.readiness import ReadinessEnum
from remind.models.reminder import ReminderModel
from remind.persistence.istore import IStore

_collection_adapter = TypeAdapter(list[ReminderModel])


class ReminderPersistence:
    """
    Maps the reminder collection to a single store slot, as a JSON array.

    Persistence is best-effort: failures are logged and never raised, the in-memory collection stays authoritative.
    """

    _key: str
    _store: IStore

    def __init__(self, store: IStore, key: str):
        self._key = key
        self._store = store

    async def readiness(self) -> ReadinessEnum:
        return await self._store.readiness()

    @start_as_current_span("persistence_save")
    async def save(self, reminders: Iterable[ReminderModel]) -> bool:
        """
        Overwrite the slot with the full collection.

        Returns `False` if the collection could not be written.
        """
        data = _collection_adapter.dump_json(list(reminders))
        try:
            success = await self._store.set(
                key=self._key,
                value=data,
            )
        except Exception:
            logger.exception("Error saving reminders to slot %s", self._key)
            return False
        if not success:
            logger.error("Reminders not saved to slot %s", self._key)
        return success

    @start_as_current_span("persistence_load")
    async def load(self) -> list[ReminderModel]:
        """
        Read the collection from the slot.

        An absent slot is an empty collection. Unreadable or corrupted data is logged and also treated as an empty collection.
        """
        try:
            data = await self._store.get(self._key)
        except Exception:
            logger.exception("Error loading reminders from slot %s", self._key)
            return []

        if not data:
            logger.info("No reminders saved in slot %s, starting empty", self._key)
            return []

        try:
            return _collection_adapter.validate_json(data)
        except ValidationError as e:
            logger.warning(
                "Corrupted reminders in slot %s, starting empty: %s",
                self._key,
                e.errors(),
            )
        return []
