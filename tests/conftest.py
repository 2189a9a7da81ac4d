import asyncio
import os
from contextlib import asynccontextmanager

import pytest

from livestock_registry.db import SQLiteStore
from livestock_registry.models import Caller, PenBody, Role, Species
from livestock_registry.services.pens import create_pen

TABLES = "registry_events, mortality_records, tag_sequences, pen_assignments, animals, pens"


@pytest.fixture(params=["sqlite", "postgres"])
def open_store(request, tmp_path):
    """
    Factory for an opened, empty registry store.

    Async scenarios run inside a single asyncio.run(), so the store (and the
    asyncpg pool behind the PostgreSQL one) lives on the loop that uses it.
    """
    dsn = os.getenv("TEST_DATABASE_URL")
    if request.param == "postgres" and not dsn:
        pytest.skip("TEST_DATABASE_URL not set")

    @asynccontextmanager
    async def factory():
        if request.param == "sqlite":
            store = SQLiteStore(str(tmp_path / "registry.db"))
        else:
            from livestock_registry.db_postgres import PostgresStore
            store = PostgresStore(dsn, min_size=1, max_size=25)
        await store.open()
        if request.param == "postgres":
            async with store.transaction() as tx:
                await tx.execute(f"TRUNCATE {TABLES} RESTART IDENTITY CASCADE")
        try:
            yield store
        finally:
            await store.close()

    return factory


@pytest.fixture
def run():
    return asyncio.run


async def make_pen(store, name="Pen A", capacity=5, species=Species.CATTLE):
    return await create_pen(store, PenBody(name=name, capacity=capacity, species=species))


ADMIN = Caller(id=1, role=Role.ADMIN)
MANAGER = Caller(id=2, role=Role.FARM_MANAGER)
