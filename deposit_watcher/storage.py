"""PostgreSQL storage for monitored addresses and deposits."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Optional, Protocol

import asyncpg
import backoff

from .config import WatcherConfig
from .errors import DuplicateDepositError, StorageError
from .metrics import MetricsSink

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS monitored_address (
        address     TEXT PRIMARY KEY,
        account_id  BIGINT,
        active      BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deposit (
        id             BIGSERIAL PRIMARY KEY,
        tx_hash        TEXT NOT NULL,
        to_address     TEXT NOT NULL,
        asset          TEXT NOT NULL,
        amount         NUMERIC(78, 0) NOT NULL,
        confirmations  INTEGER NOT NULL,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT deposit_tx_hash_key UNIQUE (tx_hash)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS deposit_to_address_idx ON deposit (to_address)
    """,
]


class Transaction(Protocol):
    """Protocol for one open storage transaction."""
    async def fetchrow(self, query: str, *args) -> Optional[Any]: ...
    async def execute(self, query: str, *args) -> Any: ...
    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


class Storage(Protocol):
    """Protocol for the storage collaborator."""
    async def fetchval(self, query: str, *args) -> Any: ...
    def transaction(self) -> AsyncContextManager[Transaction]: ...


class PostgresTransaction:
    """A transaction bound to one pooled connection."""

    def __init__(self, conn: asyncpg.Connection, storage: "PostgresStorage"):
        self._conn = conn
        self._storage = storage
        self._tx = conn.transaction()
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    async def start(self) -> None:
        await self._storage._timed(self._tx.start())
        self._active = True

    async def fetchrow(self, query: str, *args):
        return await self._storage._timed(self._conn.fetchrow(query, *args))

    async def execute(self, query: str, *args):
        return await self._storage._timed(self._conn.execute(query, *args))

    async def commit(self) -> None:
        await self._storage._timed(self._tx.commit())
        self._active = False

    async def rollback(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._storage._timed(self._tx.rollback())


class PostgresStorage:
    """
    Storage backed by an asyncpg pool.

    Every query is timed and reported to the metrics sink. asyncpg errors are
    re-raised as StorageError so callers never depend on the driver.
    """

    def __init__(self, pool: asyncpg.Pool, metrics: Optional[MetricsSink] = None):
        """
        Initialize storage.

        Args:
            pool: Connected asyncpg pool
            metrics: Sink for query timings and error counts
        """
        self.pool = pool
        self.metrics = metrics

    async def _timed(self, awaitable):
        start = time.perf_counter()
        try:
            result = await awaitable
        except asyncpg.UniqueViolationError as e:
            self._report_error()
            raise DuplicateDepositError(str(e)) from e
        except Exception as e:
            self._report_error()
            raise StorageError(str(e)) from e
        if self.metrics:
            self.metrics.observe_db_query(time.perf_counter() - start)
        return result

    def _report_error(self) -> None:
        if self.metrics:
            self.metrics.increment_db_errors()

    async def fetchval(self, query: str, *args):
        try:
            async with self.pool.acquire() as conn:
                return await self._timed(conn.fetchval(query, *args))
        except StorageError:
            raise
        except Exception as e:
            self._report_error()
            raise StorageError(f"Could not acquire connection: {e}") from e

    async def execute(self, query: str, *args):
        try:
            async with self.pool.acquire() as conn:
                return await self._timed(conn.execute(query, *args))
        except StorageError:
            raise
        except Exception as e:
            self._report_error()
            raise StorageError(f"Could not acquire connection: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresTransaction]:
        """
        Open a transaction on a dedicated connection.

        The transaction is rolled back if the block exits without commit or
        rollback, and the connection is always returned to the pool. Cleanup
        failures are logged and never replace the error raised by the block.
        """
        conn = None
        tx = None
        try:
            try:
                conn = await self.pool.acquire()
            except Exception as e:
                self._report_error()
                raise StorageError(f"Could not acquire connection: {e}") from e

            tx = PostgresTransaction(conn, self)
            await tx.start()
            yield tx
        finally:
            if tx is not None and tx.is_active:
                try:
                    await tx.rollback()
                except Exception as e:
                    logger.error(f"Rollback failed: {e}")
            if conn is not None:
                try:
                    await self.pool.release(conn)
                except Exception as e:
                    logger.error(f"Failed to release connection: {e}")

    async def ensure_schema(self) -> None:
        """Create tables and constraints if missing."""
        for statement in SCHEMA_STATEMENTS:
            await self.execute(statement)
        logger.info("Schema ready (monitored_address, deposit)")

    async def close(self) -> None:
        await self.pool.close()


async def connect_storage(
    config: WatcherConfig,
    metrics: Optional[MetricsSink] = None,
) -> PostgresStorage:
    """
    Create the connection pool, retrying with exponential backoff.

    Raises once ``config.db_connect_max_time_seconds`` is exhausted; the
    caller treats that as fatal.
    """

    @backoff.on_exception(
        backoff.expo,
        (OSError, asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError),
        max_time=config.db_connect_max_time_seconds,
        on_backoff=lambda details: logger.warning(
            f"PostgreSQL not reachable, retrying... attempt {details['tries']}"
        ),
    )
    async def _create_pool() -> asyncpg.Pool:
        return await asyncpg.create_pool(config.postgres_dsn, min_size=1, max_size=5)

    logger.info(f"Connecting to PostgreSQL at {config.masked_dsn}...")
    pool = await _create_pool()
    return PostgresStorage(pool, metrics)
