"""
PostgreSQL Registry Store with Async Support

This module provides async PostgreSQL connection pooling and transactions for
the registry. Write transactions run at READ COMMITTED with a bounded
lock_timeout; fetchrow_for_update takes a row-level lock (SELECT ... FOR
UPDATE) so concurrent admissions to the same pen queue on the pen row while
admissions to other pens proceed independently.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import asyncpg

from .config import DATABASE_URL, DB_LOCK_TIMEOUT_MS, DB_POOL_MAX_SIZE, DB_POOL_MIN_SIZE, DB_TIMEOUT
from .errors import (
    ConstraintViolation,
    IndeterminateFailure,
    RegistryError,
    StorageError,
    StorageUnavailable,
    TransientStorageError,
    UniqueViolation,
)
from .store import RegistryStore, Transaction

logger = logging.getLogger(__name__)

_SPECIES_CHECK = "CHECK (species IN ('cattle', 'goat', 'sheep', 'pig', 'chicken'))"

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS pens (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        capacity INTEGER NOT NULL CHECK (capacity > 0),
        species TEXT NOT NULL {_SPECIES_CHECK},
        location TEXT,
        notes TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pen_assignments (
        id BIGSERIAL PRIMARY KEY,
        pen_id BIGINT NOT NULL REFERENCES pens (id) ON DELETE CASCADE,
        attendant_id BIGINT,
        supervisor_id BIGINT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        notes TEXT,
        assigned_date DATE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uniq_active_assignment_per_pen ON pen_assignments (pen_id) WHERE is_active",
    "CREATE INDEX IF NOT EXISTS idx_assignments_attendant ON pen_assignments (attendant_id, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_supervisor ON pen_assignments (supervisor_id, is_active)",
    f"""
    CREATE TABLE IF NOT EXISTS animals (
        id BIGSERIAL PRIMARY KEY,
        tag TEXT NOT NULL UNIQUE,
        name TEXT,
        identification_number TEXT,
        species TEXT NOT NULL {_SPECIES_CHECK},
        breed TEXT,
        gender TEXT NOT NULL DEFAULT 'unknown',
        date_of_birth DATE,
        dam_id BIGINT REFERENCES animals (id) ON DELETE SET NULL,
        sire_id BIGINT REFERENCES animals (id) ON DELETE SET NULL,
        pen_id BIGINT REFERENCES pens (id) ON DELETE SET NULL,
        health_status TEXT NOT NULL DEFAULT 'healthy',
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'deceased', 'deleted')),
        notes TEXT,
        created_by BIGINT,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CHECK (status != 'deceased' OR health_status = 'deceased'),
        CHECK (dam_id IS NULL OR dam_id != id),
        CHECK (sire_id IS NULL OR sire_id != id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_animals_pen_status ON animals (pen_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_animals_species ON animals (species)",
    "CREATE INDEX IF NOT EXISTS idx_animals_health_status ON animals (health_status)",
    "CREATE INDEX IF NOT EXISTS idx_animals_dam ON animals (dam_id)",
    "CREATE INDEX IF NOT EXISTS idx_animals_sire ON animals (sire_id)",
    """
    CREATE TABLE IF NOT EXISTS mortality_records (
        id BIGSERIAL PRIMARY KEY,
        animal_id BIGINT NOT NULL UNIQUE REFERENCES animals (id),
        cause_of_death TEXT NOT NULL,
        date_of_death DATE NOT NULL,
        reported_by BIGINT,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tag_sequences (
        species TEXT PRIMARY KEY,
        last_value BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS registry_events (
        id BIGSERIAL PRIMARY KEY,
        event_id TEXT NOT NULL UNIQUE,
        event_type TEXT NOT NULL,
        animal_id BIGINT,
        pen_id BIGINT,
        user_id BIGINT,
        payload TEXT NOT NULL DEFAULT '{}',
        event_time TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_registry_events_animal ON registry_events (animal_id)",
]

# Failures after which the transaction is known to be rolled back
_TRANSIENT_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.LockNotAvailableError,
    asyncpg.exceptions.QueryCanceledError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.CannotConnectNowError,
)

_CONNECTION_ERRORS = (
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def _translate_error(e: BaseException) -> RegistryError:
    if isinstance(e, asyncpg.exceptions.UniqueViolationError):
        return UniqueViolation(str(e), constraint=e.constraint_name)
    if isinstance(e, asyncpg.exceptions.IntegrityConstraintViolationError):
        return ConstraintViolation(str(e))
    if isinstance(e, _TRANSIENT_ERRORS) or isinstance(e, _CONNECTION_ERRORS):
        return TransientStorageError(str(e) or type(e).__name__)
    return StorageError(str(e))


class PostgresTransaction(Transaction):
    def __init__(self, connection: asyncpg.Connection):
        self.connection = connection

    async def fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        try:
            return await self.connection.fetch(query, *args)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            raise _translate_error(e) from e

    async def fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        try:
            return await self.connection.fetchrow(query, *args)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            raise _translate_error(e) from e

    async def fetchval(self, query: str, *args: Any) -> Any:
        try:
            return await self.connection.fetchval(query, *args)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            raise _translate_error(e) from e

    async def execute(self, query: str, *args: Any) -> None:
        try:
            await self.connection.execute(query, *args)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            raise _translate_error(e) from e

    async def fetchrow_for_update(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        return await self.fetchrow(f"{query} FOR UPDATE", *args)


class PostgresStore(RegistryStore):
    """
    Registry store backed by an asyncpg connection pool.

    Usage:
        store = PostgresStore(DATABASE_URL)
        await store.open()
        async with store.transaction() as tx:
            row = await tx.fetchrow("SELECT * FROM animals WHERE id = $1", animal_id)
        await store.close()
    """

    backend = "postgresql"

    def __init__(
        self,
        dsn: str = DATABASE_URL,
        min_size: int = DB_POOL_MIN_SIZE,
        max_size: int = DB_POOL_MAX_SIZE,
        command_timeout: float = DB_TIMEOUT,
        lock_timeout_ms: int = DB_LOCK_TIMEOUT_MS,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.lock_timeout_ms = int(lock_timeout_ms)
        self._pool: Optional[asyncpg.Pool] = None

    async def open(self) -> None:
        """
        Initialize the PostgreSQL connection pool and create the schema.
        Should be called on application startup.
        """
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                # SSL settings for Neon DB
                ssl='require' if 'neon' in self.dsn else None,
            )
            logger.info(f"✓ PostgreSQL connection pool initialized (min={self.min_size}, max={self.max_size})")
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise StorageUnavailable(f"Cannot connect to PostgreSQL: {e}") from e

        async with self.transaction() as tx:
            for statement in SCHEMA:
                await tx.execute(statement)

    async def close(self) -> None:
        """
        Close the PostgreSQL connection pool.
        Should be called on application shutdown.
        """
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("✓ PostgreSQL connection pool closed")

    def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call open() first.")
        return self._pool

    async def health_check(self) -> dict:
        status = await super().health_check()
        if self._pool is not None and status.get("status") == "healthy":
            status["pool_size"] = self._pool.get_size()
            status["pool_free"] = self._pool.get_idle_size()
        return status

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[PostgresTransaction]:
        pool = self.get_pool()
        try:
            connection = await pool.acquire(timeout=self.command_timeout)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            raise _translate_error(e) from e

        try:
            if readonly:
                tr = connection.transaction(isolation="repeatable_read", readonly=True)
            else:
                tr = connection.transaction(isolation="read_committed")
            try:
                await tr.start()
                if not readonly:
                    await connection.execute(f"SET LOCAL lock_timeout = '{self.lock_timeout_ms}ms'")
            except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
                raise _translate_error(e) from e

            try:
                yield PostgresTransaction(connection)
            except BaseException:
                await self._rollback(tr)
                raise

            try:
                await tr.commit()
            except _TRANSIENT_ERRORS as e:
                # The server refused the commit, so nothing was applied
                await self._rollback(tr)
                raise TransientStorageError(str(e)) from e
            except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
                raise IndeterminateFailure(f"Commit outcome unknown: {e}") from e
        finally:
            await pool.release(connection)

    @staticmethod
    async def _rollback(tr) -> None:
        try:
            await tr.rollback()
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            logger.error(f"PostgreSQL rollback failed: {e}")
