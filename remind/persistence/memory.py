from remind.helpers.config_models.store import MemoryModel
from remind.helpers.logging import logger
from remind.helpers.monitoring import suppress
from remind.models.readiness import ReadinessEnum
from remind.persistence.istore import IStore


class MemoryStore(IStore):
    """
    Slots held in the process memory.

    Nothing survives a restart, prefer SQLite or Redis outside of tests.
    """

    _config: MemoryModel
    _slots: dict[str, bytes]

    def __init__(self, config: MemoryModel):
        logger.warning("Using memory store, reminders will be lost on restart")
        self._config = config
        self._slots = {}

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the memory store.
        """
        return ReadinessEnum.OK  # Always ready, it's memory :)

    async def get(self, key: str) -> bytes | None:
        """
        Get the value of a slot.

        If the slot does not exist, return `None`.
        """
        return self._slots.get(key, None)

    async def set(
        self,
        key: str,
        value: bytes,
    ) -> bool:
        """
        Overwrite the value of a slot.
        """
        self._slots[key] = value
        return True

    async def delete(self, key: str) -> bool:
        """
        Delete a slot.
        """
        with suppress(KeyError):
            self._slots.pop(key)
        return True
