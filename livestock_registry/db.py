"""
SQLite Registry Store

Each transaction gets its own sqlite3 connection, driven from a dedicated
worker thread so a connection blocked on the database lock never stalls the
event loop. Write transactions start with BEGIN IMMEDIATE: SQLite's database
write lock is taken up front and held until COMMIT/ROLLBACK, which serializes
every check-and-insert against the same data. The connect timeout bounds how
long a writer waits for that lock.
"""

import asyncio
import functools
import logging
import re
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional

from .config import DB_LOCK_TIMEOUT_MS, DB_PATH
from .errors import (
    ConstraintViolation,
    IndeterminateFailure,
    RegistryError,
    StorageError,
    TransientStorageError,
    UniqueViolation,
)
from .store import RegistryStore, Transaction

logger = logging.getLogger(__name__)

# Explicit adapters; the implicit ones are deprecated since Python 3.12
sqlite3.register_adapter(date, lambda value: value.isoformat())
sqlite3.register_adapter(datetime, lambda value: value.isoformat())

_SPECIES_CHECK = "CHECK (species IN ('cattle', 'goat', 'sheep', 'pig', 'chicken'))"

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS pens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        capacity INTEGER NOT NULL CHECK (capacity > 0),
        species TEXT NOT NULL {_SPECIES_CHECK},
        location TEXT,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pen_assignments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        pen_id INTEGER NOT NULL REFERENCES pens (id) ON DELETE CASCADE,
        attendant_id INTEGER,
        supervisor_id INTEGER,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        notes TEXT,
        assigned_date TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uniq_active_assignment_per_pen ON pen_assignments (pen_id) WHERE is_active = 1",
    "CREATE INDEX IF NOT EXISTS idx_assignments_attendant ON pen_assignments (attendant_id, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_assignments_supervisor ON pen_assignments (supervisor_id, is_active)",
    f"""
    CREATE TABLE IF NOT EXISTS animals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tag TEXT NOT NULL UNIQUE,
        name TEXT,
        identification_number TEXT,
        species TEXT NOT NULL {_SPECIES_CHECK},
        breed TEXT,
        gender TEXT NOT NULL DEFAULT 'unknown',
        date_of_birth TEXT,
        dam_id INTEGER REFERENCES animals (id) ON DELETE SET NULL,
        sire_id INTEGER REFERENCES animals (id) ON DELETE SET NULL,
        pen_id INTEGER REFERENCES pens (id) ON DELETE SET NULL,
        health_status TEXT NOT NULL DEFAULT 'healthy',
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'deceased', 'deleted')),
        notes TEXT,
        created_by INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (status != 'deceased' OR health_status = 'deceased')
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_animals_pen_status ON animals (pen_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_animals_species ON animals (species)",
    "CREATE INDEX IF NOT EXISTS idx_animals_health_status ON animals (health_status)",
    "CREATE INDEX IF NOT EXISTS idx_animals_dam ON animals (dam_id)",
    "CREATE INDEX IF NOT EXISTS idx_animals_sire ON animals (sire_id)",
    """
    CREATE TABLE IF NOT EXISTS mortality_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        animal_id INTEGER NOT NULL UNIQUE REFERENCES animals (id),
        cause_of_death TEXT NOT NULL,
        date_of_death TEXT NOT NULL,
        reported_by INTEGER,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tag_sequences (
        species TEXT PRIMARY KEY,
        last_value INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS registry_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL UNIQUE,
        event_type TEXT NOT NULL,
        animal_id INTEGER,
        pen_id INTEGER,
        user_id INTEGER,
        payload TEXT NOT NULL DEFAULT '{}',
        event_time TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_registry_events_animal ON registry_events (animal_id)",
]

_PLACEHOLDER = re.compile(r"\$(\d+)")


def _to_sqlite(query: str) -> str:
    """Rewrite $1..$n placeholders into SQLite's numbered ?1..?n form."""
    return _PLACEHOLDER.sub(r"?\1", query)


def _translate_error(e: sqlite3.Error) -> RegistryError:
    message = str(e)
    if isinstance(e, sqlite3.IntegrityError):
        if message.startswith("UNIQUE constraint failed"):
            return UniqueViolation(message, constraint=message.split(":", 1)[-1].strip())
        return ConstraintViolation(message)
    if isinstance(e, sqlite3.OperationalError) and ("locked" in message or "busy" in message):
        return TransientStorageError(message)
    return StorageError(message)


def _unicode_lower(value: Any) -> Any:
    # SQLite's built-in lower() only folds ASCII
    return value.lower() if isinstance(value, str) else value


class SQLiteTransaction(Transaction):
    def __init__(self, conn: sqlite3.Connection, run):
        self._conn = conn
        self._run = run

    async def fetch(self, query: str, *args: Any) -> List[sqlite3.Row]:
        return await self._run(self._fetchall, query, args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[sqlite3.Row]:
        rows = await self._run(self._fetchall, query, args)
        return rows[0] if rows else None

    async def fetchval(self, query: str, *args: Any) -> Any:
        row = await self.fetchrow(query, *args)
        return row[0] if row is not None else None

    async def execute(self, query: str, *args: Any) -> None:
        await self._run(self._fetchall, query, args)

    async def fetchrow_for_update(self, query: str, *args: Any) -> Optional[sqlite3.Row]:
        # BEGIN IMMEDIATE already holds the database write lock
        return await self.fetchrow(query, *args)

    def _fetchall(self, query: str, args: tuple) -> List[sqlite3.Row]:
        # Always drain the cursor so RETURNING statements are finalized before COMMIT
        return self._conn.execute(_to_sqlite(query), args).fetchall()


class SQLiteStore(RegistryStore):
    """
    Registry store backed by a SQLite file.

    Usage:
        store = SQLiteStore("/var/lib/registry/registry.db")
        await store.open()
        async with store.transaction() as tx:
            row = await tx.fetchrow("SELECT * FROM animals WHERE id = $1", animal_id)
        await store.close()
    """

    backend = "sqlite"

    def __init__(self, path: str = DB_PATH, lock_timeout: float = DB_LOCK_TIMEOUT_MS / 1000):
        self.path = str(path)
        self.lock_timeout = lock_timeout

    async def open(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        await asyncio.get_running_loop().run_in_executor(None, self._enable_wal)
        async with self.transaction() as tx:
            for statement in SCHEMA:
                await tx.execute(statement)
        logger.info(f"✓ SQLite registry store ready at {self.path}")

    async def close(self) -> None:
        # Connections live only as long as their transaction
        logger.info("✓ SQLite registry store closed")

    def _enable_wal(self) -> None:
        conn = sqlite3.connect(self.path, timeout=self.lock_timeout)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        finally:
            conn.close()

    def _begin(self, readonly: bool) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=self.lock_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.row_factory = sqlite3.Row
            conn.create_function("lower", 1, _unicode_lower, deterministic=True)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("BEGIN" if readonly else "BEGIN IMMEDIATE")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[SQLiteTransaction]:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sqlite-tx")
        loop = asyncio.get_running_loop()

        async def run(fn, *args):
            try:
                return await loop.run_in_executor(executor, functools.partial(fn, *args))
            except sqlite3.Error as e:
                raise _translate_error(e) from e

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = await run(self._begin, readonly)
            try:
                yield SQLiteTransaction(conn, run)
            except BaseException:
                await self._rollback(run, conn)
                raise

            try:
                await run(conn.execute, "COMMIT")
            except TransientStorageError:
                # Busy at commit: nothing was written, safe to roll back and retry
                await self._rollback(run, conn)
                raise
            except StorageError as e:
                raise IndeterminateFailure(f"Commit outcome unknown: {e}") from e
        finally:
            if conn is not None:
                # Runs after any statement still in flight; closing also discards
                # a transaction that was never committed
                executor.submit(conn.close)
            executor.shutdown(wait=False)

    @staticmethod
    async def _rollback(run, conn: sqlite3.Connection) -> None:
        try:
            await run(conn.execute, "ROLLBACK")
        except StorageError as e:
            logger.error(f"SQLite rollback failed: {e}")
