"""
Registry Store interface

Both backends (SQLite in db.py, PostgreSQL in db_postgres.py) expose the same
async surface so the services above never know which database they talk to:

    async with store.transaction() as tx:
        pen = await tx.fetchrow_for_update("SELECT * FROM pens WHERE id = $1", pen_id)
        await tx.execute("UPDATE animals SET pen_id = $1 WHERE id = $2", pen_id, animal_id)

SQL uses asyncpg-style $1..$n placeholders; the SQLite backend rewrites them.
The store object is created, opened and closed by the surrounding application
and passed explicitly into every service call.
"""

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from . import config
from .errors import ConcurrentConflictExhausted, StorageUnavailable, TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction:
    """A single open database transaction."""

    async def fetch(self, query: str, *args: Any) -> List[Any]:
        raise NotImplementedError

    async def fetchrow(self, query: str, *args: Any) -> Optional[Any]:
        raise NotImplementedError

    async def fetchval(self, query: str, *args: Any) -> Any:
        raise NotImplementedError

    async def execute(self, query: str, *args: Any) -> None:
        raise NotImplementedError

    async def fetchrow_for_update(self, query: str, *args: Any) -> Optional[Any]:
        """Fetch one row and hold a write lock on it until the transaction ends."""
        raise NotImplementedError


class RegistryStore:
    backend = "abstract"

    async def open(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    def transaction(self, readonly: bool = False) -> AbstractAsyncContextManager:
        """
        Open a transaction. Commits on normal exit, rolls back on any exception
        (cancellation included) and translates driver errors into
        livestock_registry.errors.
        """
        raise NotImplementedError

    async def health_check(self) -> dict:
        try:
            async with self.transaction(readonly=True) as tx:
                result = await tx.fetchval("SELECT 1")
            if result == 1:
                return {"status": "healthy", "database": self.backend}
            return {"status": "unhealthy", "database": self.backend, "error": "Unexpected query result"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "database": self.backend, "error": str(e)}


async def run_in_transaction(
    store: RegistryStore,
    work: Callable[[Transaction], Awaitable[T]],
    operation: str,
    readonly: bool = False,
    max_attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> T:
    """
    Run ``work`` inside a fresh transaction, retrying the whole transaction on
    TransientStorageError with exponential backoff.

    Every other error propagates unchanged on the first attempt. Once the
    attempts are used up, writes raise ConcurrentConflictExhausted and reads
    raise StorageUnavailable.
    """
    attempts = max_attempts or config.ADMISSION_MAX_ATTEMPTS
    delay = config.RETRY_BACKOFF_SECONDS if backoff is None else backoff
    last_error: Optional[TransientStorageError] = None

    for attempt in range(1, attempts + 1):
        try:
            async with store.transaction(readonly=readonly) as tx:
                return await work(tx)
        except TransientStorageError as e:
            last_error = e
            if attempt == attempts:
                break
            logger.warning(f"{operation}: transient conflict on attempt {attempt}/{attempts}, retrying: {e}")
            await asyncio.sleep(delay * (2 ** (attempt - 1)))

    logger.error(f"{operation}: giving up after {attempts} attempts: {last_error}")
    if readonly:
        raise StorageUnavailable(f"{operation} failed after {attempts} attempts") from last_error
    raise ConcurrentConflictExhausted(operation, attempts) from last_error


def create_store() -> RegistryStore:
    """Build the store selected by configuration. The caller opens and closes it."""
    if config.USE_POSTGRES:
        from .db_postgres import PostgresStore
        return PostgresStore(config.DATABASE_URL)

    from .db import SQLiteStore
    return SQLiteStore(config.DB_PATH)
