from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import datetime

from remind.helpers.monitoring import start_as_current_span
from remind.models.notification import ActionEnum
from remind.models.readiness import ReadinessEnum

FiredCallback = Callable[[str], None]
UserActionCallback = Callable[[str, ActionEnum], None]


class INotification(ABC):
    """
    Delivers notifications at a point in time, and reports back what happened to them.

    Events are reported with the correlation ID given at schedule time, to the callbacks registered with `subscribe`. Callbacks may be called from any thread.
    """

    _on_fired: FiredCallback | None = None
    _on_user_action: UserActionCallback | None = None

    @abstractmethod
    @start_as_current_span("notification_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("notification_request_permission")
    async def request_permission(self) -> bool:
        """
        Ask the user for the permission to notify.

        Returns `True` if granted.
        """
        pass

    @abstractmethod
    @start_as_current_span("notification_schedule")
    async def schedule(
        self,
        body: str,
        correlation_id: str,
        fire_at: datetime,
        title: str,
    ) -> str | None:
        """
        Schedule a one-shot notification.

        Returns the notification handle, or `None` if notifying is not permitted.
        """
        pass

    @abstractmethod
    @start_as_current_span("notification_cancel")
    async def cancel(self, handle: str) -> None:
        """
        Cancel a pending notification.

        Cancelling an unknown, fired or already cancelled notification does nothing.
        """
        pass

    @abstractmethod
    @start_as_current_span("notification_cancel_many")
    async def cancel_many(self, handles: Iterable[str]) -> None:
        pass

    @abstractmethod
    @start_as_current_span("notification_pending")
    async def pending(self, handles: Iterable[str]) -> set[str]:
        """
        Filter the handles of the notifications not yet presented nor cancelled.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Release the resources, pending notifications are dropped.
        """
        pass

    def subscribe(
        self,
        on_fired: FiredCallback,
        on_user_action: UserActionCallback,
    ) -> None:
        self._on_fired = on_fired
        self._on_user_action = on_user_action

    def unsubscribe(self) -> None:
        self._on_fired = None
        self._on_user_action = None

    def _emit_fired(self, correlation_id: str) -> bool:
        """
        Report a presented notification.

        Returns `False` if nobody is listening.
        """
        if not self._on_fired:
            return False
        self._on_fired(correlation_id)
        return True

    def act(self, correlation_id: str, action: ActionEnum) -> bool:
        """
        Report a user action received from the notification surface.

        Returns `False` if nobody is listening.
        """
        if not self._on_user_action:
            return False
        self._on_user_action(correlation_id, action)
        return True
