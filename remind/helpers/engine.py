"""
Reminder scheduling and lifecycle.

The engine owns the reminder collection. It keeps the notification handles in sync with the reminders state, and saves the collection after every mutation.

Mutations are serialized on a single lock. Gateway events may come from any thread: they are queued on the engine event loop, then applied one at a time by a dispatcher task.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress as contextlib_suppress
from datetime import datetime
from uuid import UUID

from remind.helpers.config_models.reminders import RemindersModel
from remind.helpers.errors import ReminderNotFoundError, ReminderValidationError
from remind.helpers.logging import logger
from remind.helpers.monitoring import (
    SpanAttributeEnum,
    counter_add,
    gauge_set,
    notification_cancelled,
    notification_refused,
    notification_scheduled,
    persistence_save_failed,
    reminder_count,
    reminder_created,
    start_as_current_span,
)
from remind.models.notification import (
    ActionEnum,
    EventKindEnum,
    NotificationEventModel,
)
from remind.models.reminder import ReminderModel
from remind.persistence.inotification import INotification
from remind.persistence.reminders import ReminderPersistence

ChangeListener = Callable[[list[ReminderModel]], Awaitable[None]]


class ReminderEngine:
    notification_denied: bool
    """Last attempt to notify was refused by the gateway, for missing permission."""

    _clock: Callable[[], datetime]
    _config: RemindersModel
    _dispatch_task: asyncio.Task[None] | None = None
    _events: asyncio.Queue[NotificationEventModel] | None = None
    _gateway: INotification
    _listeners: list[ChangeListener]
    _lock: asyncio.Lock
    _loop: asyncio.AbstractEventLoop | None = None
    _persistence: ReminderPersistence
    _reminders: dict[UUID, ReminderModel]

    def __init__(
        self,
        config: RemindersModel,
        gateway: INotification,
        persistence: ReminderPersistence,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.notification_denied = False
        self._clock = clock
        self._config = config
        self._gateway = gateway
        self._listeners = []
        self._lock = asyncio.Lock()
        self._persistence = persistence
        self._reminders = {}

    @property
    def running(self) -> bool:
        """
        Initialized, and still applying the gateway events.
        """
        return bool(self._dispatch_task and not self._dispatch_task.done())

    @property
    def reminders(self) -> list[ReminderModel]:
        """
        Copy of the collection, in no particular order.
        """
        return self._snapshot()

    def get(self, reminder_id: UUID) -> ReminderModel:
        return self._get_or_raise(reminder_id).model_copy()

    @start_as_current_span("engine_initialize")
    async def initialize(self) -> None:
        """
        Load the saved collection, and start listening to the gateway events.

        Missing or corrupted saved data starts an empty collection. Loaded handles are either rescheduled, or kept only while the gateway still holds them.
        """
        if self._dispatch_task:
            logger.debug("Engine already initialized")
            return

        # Bind to the running loop, a previous run may have used another one
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()

        # Listen to the gateway before scheduling anything
        self._gateway.subscribe(
            on_fired=self.on_fired,
            on_user_action=self.on_user_action,
        )
        self._dispatch_task = self._loop.create_task(self._dispatch_loop())

        # Ask once, the answer is only informative as scheduling fails closed
        self.notification_denied = not await self._request_permission()

        async with self._lock:
            self._reminders = {}
            for reminder in await self._persistence.load():
                if reminder.id in self._reminders:
                    logger.warning(
                        "Duplicated reminder %s in save, keeping the last", reminder.id
                    )
                self._reminders[reminder.id] = reminder
            logger.info("Loaded %s reminders", len(self._reminders))

            if self._config.reschedule_on_load:
                changed = await self._reschedule_all()
            else:
                changed = await self._prune_handles()
            if changed:
                await self._commit()

    async def close(self) -> None:
        """
        Stop listening to the gateway events.

        Queued events not yet applied are dropped.
        """
        self._gateway.unsubscribe()
        if self._dispatch_task:
            self._dispatch_task.cancel()
            with contextlib_suppress(asyncio.CancelledError):
                await self._dispatch_task
            self._dispatch_task = None
        self._events = None
        self._loop = None

    @start_as_current_span("engine_create")
    async def create(self, title: str, fire_at: datetime) -> ReminderModel:
        """
        Create a reminder, and schedule its notification if it is due in the future.

        Reminders due now or in the past are never scheduled. If the gateway refuses, the reminder is created anyway, without notification.
        """
        if not title or not title.strip():
            raise ReminderValidationError("Reminder title must not be empty")

        async with self._lock:
            reminder = ReminderModel(
                fire_at=fire_at,
                title=title,
            )
            SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.id))

            if reminder.fire_at > self._now():
                reminder.notification_handle = await self._schedule(reminder)
            else:
                logger.info(
                    "Reminder %s is due at %s, not in the future, not scheduling",
                    reminder.id,
                    reminder.fire_at,
                )

            self._reminders[reminder.id] = reminder
            counter_add(reminder_created, 1)
            logger.info("Reminder %s created", reminder.id)
            await self._commit()
            return reminder.model_copy()

    @start_as_current_span("engine_toggle")
    async def toggle(self, reminder_id: UUID) -> ReminderModel:
        """
        Flip the completion of a reminder.

        Completing cancels the pending notification. Un-completing never schedules it again: a reminder notifies only once.
        """
        async with self._lock:
            reminder = self._get_or_raise(reminder_id)
            SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.id))

            reminder.completed = not reminder.completed
            if reminder.completed and reminder.notification_handle:
                handle = reminder.notification_handle
                reminder.notification_handle = None
                await self._cancel(handle)

            logger.info(
                "Reminder %s marked as %s",
                reminder.id,
                "completed" if reminder.completed else "active",
            )
            await self._commit()
            return reminder.model_copy()

    @start_as_current_span("engine_delete")
    async def delete(self, reminder_id: UUID) -> None:
        async with self._lock:
            reminder = self._get_or_raise(reminder_id)
            SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.id))

            if reminder.notification_handle:
                await self._cancel(reminder.notification_handle)
            del self._reminders[reminder.id]

            logger.info("Reminder %s deleted", reminder.id)
            await self._commit()

    @start_as_current_span("engine_delete_many")
    async def delete_many(self, reminder_ids: Iterable[UUID]) -> int:
        """
        Delete the given reminders, with a single cancellation call to the gateway.

        Unknown IDs are ignored. Returns the number of deleted reminders.
        """
        wanted = set(reminder_ids)
        if not wanted:
            return 0

        async with self._lock:
            matched = [
                self._reminders[reminder_id]
                for reminder_id in wanted
                if reminder_id in self._reminders
            ]

            handles = {
                reminder.notification_handle
                for reminder in matched
                if reminder.notification_handle
            }
            if handles:
                await self._cancel_many(handles)
            for reminder in matched:
                del self._reminders[reminder.id]

            logger.info(
                "Deleted %s reminders, %s unknown",
                len(matched),
                len(wanted) - len(matched),
            )
            await self._commit()
            return len(matched)

    @start_as_current_span("engine_handle_gateway_event")
    async def handle_gateway_event(self, correlation_id: str | UUID) -> bool:
        """
        Complete the reminder a notification was about.

        Unknown reminders are ignored, they may have been deleted since. Calling it again for the same reminder does nothing.

        Returns `True` if the reminder changed.
        """
        try:
            reminder_id = (
                correlation_id
                if isinstance(correlation_id, UUID)
                else UUID(correlation_id)
            )
        except ValueError:
            logger.warning("Ignoring event for malformed ID %s", correlation_id)
            return False

        async with self._lock:
            reminder = self._reminders.get(reminder_id, None)
            if not reminder:
                logger.debug("Ignoring event for unknown reminder %s", reminder_id)
                return False
            SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.id))

            if reminder.completed and not reminder.notification_handle:
                logger.debug("Reminder %s already completed", reminder.id)
                return False

            handle = reminder.notification_handle
            reminder.notification_handle = None
            reminder.completed = True
            # Notification already fired, cancel anyway in case the gateway still holds it
            if handle:
                await self._cancel(handle)

            logger.info("Reminder %s completed from notification", reminder.id)
            await self._commit()
            return True

    def on_fired(self, correlation_id: str) -> None:
        """
        Gateway callback, for a presented notification.

        Thread-safe.
        """
        self._publish(
            NotificationEventModel(
                correlation_id=correlation_id,
                kind=EventKindEnum.FIRED,
            )
        )

    def on_user_action(self, correlation_id: str, action: ActionEnum) -> None:
        """
        Gateway callback, for an action performed by the user on a notification.

        Thread-safe.
        """
        self._publish(
            NotificationEventModel(
                action=action,
                correlation_id=correlation_id,
                kind=EventKindEnum.USER_ACTED,
            )
        )

    async def join(self) -> None:
        """
        Wait until all the gateway events received so far are applied.
        """
        # Let the events published from other threads reach the queue
        await asyncio.sleep(0)
        if self._events:
            await self._events.join()

    def subscribe(self, listener: ChangeListener) -> None:
        """
        Register a listener, called with the whole collection after every change.
        """
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event: NotificationEventModel) -> None:
        if not self._loop or not self._events:
            logger.warning(
                "Engine not running, dropped %s event for %s",
                event.kind.value,
                event.correlation_id,
            )
            return
        try:
            self._loop.call_soon_threadsafe(self._events.put_nowait, event)
        except RuntimeError:
            # Shutdown race, loop is already closed
            logger.warning(
                "Event loop closed, dropped %s event for %s",
                event.kind.value,
                event.correlation_id,
            )

    async def _dispatch_loop(self) -> None:
        assert self._events
        events = self._events
        while True:
            event = await events.get()
            try:
                await self._apply_event(event)
            except Exception:
                logger.exception(
                    "Error applying %s event for %s",
                    event.kind.value,
                    event.correlation_id,
                )
            finally:
                events.task_done()

    async def _apply_event(self, event: NotificationEventModel) -> None:
        if (
            event.kind == EventKindEnum.USER_ACTED
            and event.action != ActionEnum.COMPLETE
        ):
            logger.info(
                "Ignoring %s action for %s",
                event.action.value if event.action else None,
                event.correlation_id,
            )
            return
        await self.handle_gateway_event(event.correlation_id)

    async def _reschedule_all(self) -> bool:
        """
        Replace the notifications still outstanding when the collection was saved.

        Reminders saved without a handle keep none, their notification was used up or never permitted. Stale handles are cancelled, then active reminders due in the future are scheduled again.

        Returns `True` if the collection changed.
        """
        now = self._now()
        changed = False
        for reminder in self._reminders.values():
            if not reminder.notification_handle:
                continue
            handle = reminder.notification_handle
            reminder.notification_handle = None
            await self._cancel(handle)
            changed = True
            if reminder.completed or reminder.fire_at <= now:
                continue
            reminder.notification_handle = await self._schedule(reminder)
        logger.info("Rescheduled loaded reminders")
        return changed

    async def _prune_handles(self) -> bool:
        """
        Clear the loaded handles the gateway does not hold anymore.

        Notifications may have fired or been dropped while the process was stopped. If the gateway cannot tell, handles are kept as saved.

        Returns `True` if the collection changed.
        """
        saved = {
            reminder.notification_handle
            for reminder in self._reminders.values()
            if reminder.notification_handle
        }
        if not saved:
            return False

        try:
            pending = await asyncio.wait_for(
                self._gateway.pending(saved),
                timeout=self._config.schedule_timeout_sec,
            )
        except TimeoutError:
            logger.warning("Listing pending notifications timed out, keeping handles")
            return False
        except Exception:
            logger.exception("Error listing pending notifications, keeping handles")
            return False

        stale = 0
        for reminder in self._reminders.values():
            if reminder.notification_handle and reminder.notification_handle not in pending:
                reminder.notification_handle = None
                stale += 1
        if stale:
            logger.info("Cleared %s handles unknown to the gateway", stale)
        return stale > 0

    async def _request_permission(self) -> bool:
        try:
            return await asyncio.wait_for(
                self._gateway.request_permission(),
                timeout=self._config.schedule_timeout_sec,
            )
        except TimeoutError:
            logger.warning("Notification permission request timed out")
        except Exception:
            logger.exception("Error requesting notification permission")
        return False

    async def _schedule(self, reminder: ReminderModel) -> str | None:
        """
        Schedule the notification of a reminder, bounded in time.

        Returns `None` if the notification was not scheduled.
        """
        try:
            handle = await asyncio.wait_for(
                self._gateway.schedule(
                    body=reminder.title,
                    correlation_id=str(reminder.id),
                    fire_at=reminder.fire_at,
                    title=self._config.notification_title,
                ),
                timeout=self._config.schedule_timeout_sec,
            )
        except TimeoutError:
            logger.warning("Scheduling timed out for reminder %s", reminder.id)
            return None
        except Exception:
            logger.exception("Error scheduling reminder %s", reminder.id)
            return None

        if not handle:
            self.notification_denied = True
            counter_add(notification_refused, 1)
            logger.warning("Notification not permitted for reminder %s", reminder.id)
            return None

        self.notification_denied = False
        counter_add(notification_scheduled, 1)
        SpanAttributeEnum.NOTIFICATION_HANDLE.attribute(handle)
        logger.info("Notification %s scheduled for reminder %s", handle, reminder.id)
        return handle

    async def _cancel(self, handle: str) -> None:
        try:
            await asyncio.wait_for(
                self._gateway.cancel(handle),
                timeout=self._config.schedule_timeout_sec,
            )
        except TimeoutError:
            logger.warning("Cancelling notification %s timed out", handle)
            return
        except Exception:
            logger.exception("Error cancelling notification %s", handle)
            return
        counter_add(notification_cancelled, 1)

    async def _cancel_many(self, handles: set[str]) -> None:
        try:
            await asyncio.wait_for(
                self._gateway.cancel_many(handles),
                timeout=self._config.schedule_timeout_sec,
            )
        except TimeoutError:
            logger.warning("Cancelling %s notifications timed out", len(handles))
            return
        except Exception:
            logger.exception("Error cancelling %s notifications", len(handles))
            return
        counter_add(notification_cancelled, len(handles))

    async def _commit(self) -> None:
        """
        Save the collection, then notify the listeners.

        Failures are logged only, the in-memory collection stays authoritative.
        """
        snapshot = self._snapshot()
        gauge_set(reminder_count, len(snapshot))

        if not await self._persistence.save(snapshot):
            counter_add(persistence_save_failed, 1)

        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception:
                logger.exception("Error notifying collection listener")

    def _get_or_raise(self, reminder_id: UUID) -> ReminderModel:
        reminder = self._reminders.get(reminder_id, None)
        if not reminder:
            raise ReminderNotFoundError(reminder_id)
        return reminder

    def _now(self) -> datetime:
        return _local(self._clock())

    def _snapshot(self) -> list[ReminderModel]:
        return [reminder.model_copy() for reminder in self._reminders.values()]


def _local(value: datetime) -> datetime:
    """
    Naive local wall-clock time, as reminders are stored.
    """
    if value.tzinfo:
        return value.astimezone().replace(tzinfo=None)
    return value
