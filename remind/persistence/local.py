import asyncio
from collections.abc import Iterable
from datetime import datetime
from uuid import uuid4

from aiojobs import Job, Scheduler

from remind.helpers.config_models.notification import LocalModel
from remind.helpers.logging import logger
from remind.models.readiness import ReadinessEnum
from remind.models.reminder import to_local_minute
from remind.persistence.inotification import INotification


class LocalNotification(INotification):
    """
    Notifications delivered by the running process.

    Each pending notification is a background job sleeping until its trigger time, then presenting it in the logs. Pending notifications do not survive a restart.
    """

    _config: LocalModel
    _jobs: dict[str, Job]
    _scheduler: Scheduler | None = None

    def __init__(self, config: LocalModel):
        logger.info(
            "Using local notifications, permission %s",
            "granted" if config.permission_granted else "denied",
        )
        self._config = config
        self._jobs = {}

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the local notifications.
        """
        if self._scheduler and self._scheduler.closed:
            return ReadinessEnum.FAIL
        return ReadinessEnum.OK

    async def request_permission(self) -> bool:
        granted = self._config.permission_granted
        if granted:
            logger.info("Notification permission granted")
        else:
            logger.warning("Notification permission denied")
        return granted

    async def schedule(
        self,
        body: str,
        correlation_id: str,
        fire_at: datetime,
        title: str,
    ) -> str | None:
        if not self._config.permission_granted:
            logger.warning(
                "Notification permission denied, not scheduling %s", correlation_id
            )
            return None

        handle = str(uuid4())
        trigger_at = to_local_minute(fire_at)
        scheduler = await self._use_scheduler()
        self._jobs[handle] = await scheduler.spawn(
            self._deliver(
                body=body,
                correlation_id=correlation_id,
                handle=handle,
                title=title,
                trigger_at=trigger_at,
            )
        )
        logger.info("Notification %s scheduled at %s", handle, trigger_at)
        return handle

    async def cancel(self, handle: str) -> None:
        job = self._jobs.pop(handle, None)
        if not job or job.closed:
            logger.debug("Notification %s not pending, nothing to cancel", handle)
            return
        await job.close()
        logger.info("Notification %s cancelled", handle)

    async def cancel_many(self, handles: Iterable[str]) -> None:
        await asyncio.gather(*(self.cancel(handle) for handle in set(handles)))

    async def pending(self, handles: Iterable[str]) -> set[str]:
        # Jobs do not survive a restart, handles from a previous run are unknown
        return {
            handle
            for handle in handles
            if handle in self._jobs and not self._jobs[handle].closed
        }

    async def close(self) -> None:
        self._jobs.clear()
        if self._scheduler and not self._scheduler.closed:
            await self._scheduler.close()
        self._scheduler = None

    async def _deliver(
        self,
        body: str,
        correlation_id: str,
        handle: str,
        title: str,
        trigger_at: datetime,
    ) -> None:
        """
        Wait for the trigger time, then present the notification.
        """
        delay = (trigger_at - datetime.now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        # From now on, the notification cannot be cancelled
        self._jobs.pop(handle, None)
        logger.info("🔔 %s: %s", title, body)

        if not self._emit_fired(correlation_id):
            logger.warning(
                "Notification %s fired without subscriber, event dropped", handle
            )

    async def _use_scheduler(self) -> Scheduler:
        """
        Get the scheduler for the pending notifications.

        Created on first use, as it must be bound to the running event loop.
        """
        if not self._scheduler or self._scheduler.closed:
            self._scheduler = Scheduler(
                close_timeout=self._config.close_timeout_sec,
                limit=None,  # Pending notifications sleep, they must all be active at once
            )
        return self._scheduler
