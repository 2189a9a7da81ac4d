from datetime import date

import pytest

from conftest import make_pen
from livestock_registry.errors import (
    AlreadyDeceased,
    AnimalNotFound,
    InvalidTransition,
    MortalityRecordNotFound,
)
from livestock_registry.models import AnimalBody, AnimalStatus, HealthStatus, Species
from livestock_registry.services.admission import create_animal
from livestock_registry.services.event_emitter import get_events_for_animal
from livestock_registry.services.lifecycle import (
    get_mortality_record,
    mark_deceased,
    remove_animal,
    update_health_status,
)
from livestock_registry.services.pens import get_pen
from livestock_registry.services.search import get_animal


def test_update_health_status_records_event(open_store, run):
    async def scenario():
        async with open_store() as store:
            animal = await create_animal(store, AnimalBody(species=Species.GOAT))
            updated = await update_health_status(store, animal.id, HealthStatus.SICK, notes="coughing", updated_by=4)
            return updated, await get_events_for_animal(store, animal.id)

    updated, events = run(scenario())
    assert updated.health_status is HealthStatus.SICK
    assert updated.notes == "coughing"
    assert events[0].event_type == "health_status_changed"
    assert events[0].payload["previous_status"] == "healthy"
    assert events[0].user_id == 4


def test_deceased_is_not_a_health_update(open_store, run):
    async def scenario():
        async with open_store() as store:
            animal = await create_animal(store, AnimalBody(species=Species.GOAT))
            await update_health_status(store, animal.id, HealthStatus.DECEASED)

    with pytest.raises(InvalidTransition):
        run(scenario())


def test_mark_deceased_is_atomic_and_once_only(open_store, run):
    async def scenario():
        async with open_store() as store:
            pen = await make_pen(store, capacity=2)
            animal = await create_animal(store, AnimalBody(species=Species.CATTLE, pen_id=pen.id))
            dead, record = await mark_deceased(store, animal.id, "lightning", date(2024, 5, 1), reported_by=9)
            with pytest.raises(AlreadyDeceased):
                await mark_deceased(store, animal.id, "again")
            with pytest.raises(AlreadyDeceased):
                await update_health_status(store, animal.id, HealthStatus.HEALTHY)
            stored = await get_mortality_record(store, animal.id)
            events = await get_events_for_animal(store, animal.id)
            return dead, record, stored, events, await get_pen(store, pen.id)

    dead, record, stored, events, pen = run(scenario())
    assert dead.status is AnimalStatus.DECEASED
    assert dead.health_status is HealthStatus.DECEASED
    assert record == stored
    assert stored.cause_of_death == "lightning"
    assert stored.date_of_death == date(2024, 5, 1)
    assert [e.event_type for e in events].count("death_recorded") == 1
    assert pen.occupancy == 0


def test_mark_deceased_unknown_animal(open_store, run):
    async def scenario():
        async with open_store() as store:
            await mark_deceased(store, 404, "unknown")

    with pytest.raises(AnimalNotFound):
        run(scenario())


def test_no_mortality_record_for_living_animal(open_store, run):
    async def scenario():
        async with open_store() as store:
            animal = await create_animal(store, AnimalBody(species=Species.PIG))
            await get_mortality_record(store, animal.id)

    with pytest.raises(MortalityRecordNotFound):
        run(scenario())


def test_remove_animal_is_soft_and_frees_pen(open_store, run):
    async def scenario():
        async with open_store() as store:
            pen = await make_pen(store, capacity=1)
            animal = await create_animal(store, AnimalBody(species=Species.CATTLE, pen_id=pen.id))
            removed = await remove_animal(store, animal.id)
            with pytest.raises(AnimalNotFound):
                await get_animal(store, animal.id)
            replacement = await create_animal(store, AnimalBody(species=Species.CATTLE, pen_id=pen.id))
            return removed, replacement

    removed, replacement = run(scenario())
    assert removed.status is AnimalStatus.DELETED
    assert replacement.pen_id == removed.pen_id
