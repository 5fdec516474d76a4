import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from aiosqlite import Connection, Error as SqliteError, OperationalError, connect
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from remind.helpers.config_models.store import SqliteModel
from remind.helpers.logging import logger
from remind.models.readiness import ReadinessEnum
from remind.persistence.istore import IStore

# Instrument sqlite
SQLite3Instrumentor().instrument()


class SqliteStore(IStore):
    _config: SqliteModel
    _db_path: str
    _init_done: bool

    def __init__(self, config: SqliteModel):
        logger.info(
            "Using SQLite store at %s with table %s",
            config.full_path(),
            config.table,
        )
        self._config = config
        self._db_path = config.full_path()
        self._init_done = False

        # Create folder if does not exist
        os.makedirs(name=os.path.dirname(self._db_path), exist_ok=True)

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the SQLite store.

        This checks if the database is reachable and can be queried.
        """
        try:
            async with self._use_db() as db:
                await db.execute("SELECT 1")
            return ReadinessEnum.OK
        except SqliteError:
            logger.exception("Error requesting SQLite")
        except Exception:
            logger.exception("Unknown error while checking SQLite readiness")
        return ReadinessEnum.FAIL

    async def get(self, key: str) -> bytes | None:
        """
        Get the value of a slot.

        If the slot does not exist, or if the database cannot be read, return `None`.
        """
        logger.debug("Loading slot %s", key)
        try:
            async with self._use_db() as db:
                cursor = await db.execute(
                    f"SELECT value FROM {self._config.table} WHERE key = ?",
                    (key,),
                )
                row = await cursor.fetchone()
        except SqliteError:
            logger.exception("Error getting slot %s", key)
            return None
        return bytes(row[0]) if row and row[0] is not None else None

    async def set(
        self,
        key: str,
        value: bytes,
    ) -> bool:
        """
        Overwrite the value of a slot.

        Retry a maximum of 3 times when the database is locked by another writer.
        """
        logger.debug("Saving slot %s (%s bytes)", key, len(value))
        try:
            await self._set_worker(key, value)
        except SqliteError:
            logger.exception("Error setting slot %s", key)
            return False
        return True

    async def delete(self, key: str) -> bool:
        """
        Delete a slot.
        """
        try:
            async with self._use_db() as db:
                await db.execute(
                    f"DELETE FROM {self._config.table} WHERE key = ?",
                    (key,),
                )
                await db.commit()
        except SqliteError:
            logger.exception("Error deleting slot %s", key)
            return False
        return True

    @retry(
        reraise=True,
        retry=retry_if_exception_type(OperationalError),  # Catch for "database is locked"
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.1, max=2),
    )
    async def _set_worker(
        self,
        key: str,
        value: bytes,
    ) -> None:
        async with self._use_db() as db:
            await db.execute(
                f"INSERT OR REPLACE INTO {self._config.table} (key, value) VALUES (?, ?)",
                (
                    key,  # key
                    value,  # value
                ),
            )
            await db.commit()

    async def _init_db(self, db: Connection) -> None:
        """
        Initialize the database.

        See: https://sqlite.org/wal.html
        """
        logger.info("First connection, init database")
        # Optimize performance for concurrent writes
        await db.execute("PRAGMA journal_mode=WAL")
        # Create table
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self._config.table} (key TEXT PRIMARY KEY, value BLOB)"
        )
        # Write changes to disk
        await db.commit()
        self._init_done = True

    @asynccontextmanager
    async def _use_db(self) -> AsyncGenerator[Connection]:
        """
        Generate the SQLite client and close it after use.
        """
        async with connect(
            database=self._db_path,
        ) as client:
            if not self._init_done:
                await self._init_db(client)
            yield client
