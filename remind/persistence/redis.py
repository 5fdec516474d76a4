import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import uuid4

from opentelemetry.instrumentation.redis import RedisInstrumentor
from redis.asyncio import Connection, ConnectionPool, Redis, SSLConnection
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    BusyLoadingError,
    ConnectionError as RedisConnectionError,
    RedisError,
)

from remind.helpers.config_models.store import RedisModel
from remind.helpers.logging import logger
from remind.models.readiness import ReadinessEnum
from remind.persistence.istore import IStore

# Instrument redis
RedisInstrumentor().instrument()


class RedisStore(IStore):
    _config: RedisModel
    _pools: dict[int, ConnectionPool]

    def __init__(self, config: RedisModel):
        self._config = config
        self._pools = {}

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Redis store.

        A slot is written then deleted, a reachable but read-only replica is not ready.
        """
        probe = self._slot_name(f"readiness-{uuid4()}")
        try:
            async with self._use_client() as client:
                if not await client.set(probe, b"1", ex=10):
                    logger.error("Redis refused the readiness probe")
                    return ReadinessEnum.FAIL
                await client.delete(probe)
            return ReadinessEnum.OK
        except RedisError:
            logger.exception("Error requesting Redis")
        except Exception:
            logger.exception("Unknown error while checking Redis readiness")
        return ReadinessEnum.FAIL

    async def get(self, key: str) -> bytes | None:
        """
        Get the value of a slot.

        If the slot does not exist or if Redis cannot be reached, return `None`.
        """
        res = None
        try:
            async with self._use_client() as client:
                res = await client.get(self._slot_name(key))
        except RedisError:
            logger.exception("Error getting slot %s", key)
        return res

    async def set(
        self,
        key: str,
        value: bytes,
    ) -> bool:
        """
        Overwrite the value of a slot, without expiration.
        """
        try:
            async with self._use_client() as client:
                await client.set(
                    name=self._slot_name(key),
                    value=value,
                )
        except RedisError:
            logger.exception("Error setting slot %s", key)
            return False
        return True

    async def delete(self, key: str) -> bool:
        """
        Delete a slot.
        """
        try:
            async with self._use_client() as client:
                await client.delete(self._slot_name(key))
        except RedisError:
            logger.exception("Error deleting slot %s", key)
            return False
        return True

    def _slot_name(self, key: str) -> str:
        """
        Namespace the key, as the database can be shared with other applications.
        """
        return f"{self._config.prefix}:{key}"

    def _use_connection_pool(self) -> ConnectionPool:
        """
        Get the connection pool of the running event loop.

        Pools are bound to the loop that created them, tests and the app may run on several.
        """
        loop_id = id(asyncio.get_running_loop())
        pool = self._pools.get(loop_id, None)
        if pool:
            return pool

        logger.info("Using Redis store %s:%s", self._config.host, self._config.port)
        pool = ConnectionPool(
            # Database location
            db=self._config.database,
            # Reliability
            health_check_interval=10,  # Check the health of the connection every 10 secs
            retry_on_error=[BusyLoadingError, RedisConnectionError],
            retry_on_timeout=True,
            retry=Retry(backoff=ExponentialBackoff(), retries=3),
            socket_connect_timeout=5,  # Give the system sufficient time to connect even under higher CPU conditions
            socket_timeout=1,  # Respond quickly or abort, saves are on the mutation path
            # Deployment
            connection_class=SSLConnection if self._config.ssl else Connection,
            host=self._config.host,
            port=self._config.port,
            # Authentication
            password=self._config.password.get_secret_value()
            if self._config.password
            else None,
        )
        self._pools[loop_id] = pool
        return pool

    @asynccontextmanager
    async def _use_client(self) -> AsyncGenerator[Redis]:
        """
        Return a Redis connection.
        """
        async with Redis(
            connection_pool=self._use_connection_pool(),
        ) as client:
            yield client
