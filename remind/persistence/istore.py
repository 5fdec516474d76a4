from abc import ABC, abstractmethod

from remind.helpers.monitoring import start_as_current_span
from remind.models.readiness import ReadinessEnum


class IStore(ABC):
    """
    Durable key-value slots, each holding an opaque byte blob.
    """

    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("store_get")
    async def get(self, key: str) -> bytes | None:
        pass

    @abstractmethod
    @start_as_current_span("store_set")
    async def set(
        self,
        key: str,
        value: bytes,
    ) -> bool:
        pass

    @abstractmethod
    @start_as_current_span("store_delete")
    async def delete(self, key: str) -> bool:
        pass
