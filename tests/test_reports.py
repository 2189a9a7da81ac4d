from datetime import date

import pytest

from conftest import ADMIN, make_pen
from livestock_registry.errors import AccessDenied, AnimalNotFound, PenNotFound
from livestock_registry.models import AnimalBody, Caller, Gender, HealthStatus, Role, Species
from livestock_registry.services.admission import create_animal
from livestock_registry.services.lifecycle import mark_deceased, remove_animal, update_health_status
from livestock_registry.services.pens import assign_pen
from livestock_registry.services.reports import (
    age_in_years,
    animals_in_pen,
    breeding_candidates,
    get_animal_details,
    health_alerts,
    livestock_stats,
)

ATTENDANT = Caller(id=10, role=Role.FARM_ATTENDANT)


async def _herd(store):
    north = await make_pen(store, name="North")
    south = await make_pen(store, name="South")
    await assign_pen(store, north.id, attendant_id=ATTENDANT.id, supervisor_id=20)

    def cow(name, gender, pen, **extra):
        return AnimalBody(species=Species.CATTLE, name=name, gender=gender, pen_id=pen.id, **extra)

    herd = {
        "bella": await create_animal(store, cow("Bella", Gender.FEMALE, north, date_of_birth=date(2020, 1, 1))),
        "atlas": await create_animal(store, cow("Atlas", Gender.MALE, north)),
        "clara": await create_animal(store, cow("Clara", Gender.FEMALE, south)),
        "dot": await create_animal(store, cow("Dot", Gender.FEMALE, north)),
        "gia": await create_animal(store, AnimalBody(species=Species.GOAT, name="Gia", gender=Gender.FEMALE)),
        "gone": await create_animal(store, AnimalBody(species=Species.GOAT, name="Gone")),
    }
    await update_health_status(store, herd["clara"].id, HealthStatus.SICK)
    await update_health_status(store, herd["gia"].id, HealthStatus.QUARANTINE)
    await mark_deceased(store, herd["dot"].id, "bloat")
    await remove_animal(store, herd["gone"].id)
    return north, south, herd


def test_stats_count_non_deleted_animals(open_store, run):
    async def scenario():
        async with open_store() as store:
            await _herd(store)
            return await livestock_stats(store), await livestock_stats(store, caller=ATTENDANT)

    everything, scoped = run(scenario())
    assert (everything.total_animals, everything.active_animals, everything.deceased_animals) == (5, 4, 1)
    assert (everything.healthy, everything.sick, everything.quarantine, everything.critical) == (2, 1, 1, 0)
    assert (everything.male, everything.female) == (1, 4)
    assert [(s.species, s.count) for s in everything.by_species] == [(Species.CATTLE, 3), (Species.GOAT, 1)]

    # only the attended pen: Bella, Atlas and the dead Dot
    assert (scoped.total_animals, scoped.active_animals, scoped.deceased_animals) == (3, 2, 1)
    assert [(s.species, s.count) for s in scoped.by_species] == [(Species.CATTLE, 2)]


def test_breeding_candidates_are_active_and_healthy(open_store, run):
    async def scenario():
        async with open_store() as store:
            north, _, _ = await _herd(store)
            return (
                north,
                await breeding_candidates(store, Species.CATTLE),
                await breeding_candidates(store, Species.CATTLE, gender=Gender.FEMALE),
                await breeding_candidates(store, Species.GOAT),
            )

    north, cattle, cows, goats = run(scenario())
    assert [a.name for a in cattle] == ["Atlas", "Bella"]
    bella = cows[0]
    assert [a.name for a in cows] == ["Bella"]
    assert bella.pen_name == "North"
    assert (bella.attendant_id, bella.supervisor_id) == (ATTENDANT.id, 20)
    assert bella.age_years == age_in_years(date(2020, 1, 1))
    assert cattle[0].age_years is None
    assert goats == []


def test_health_alerts_ordered_by_pen(open_store, run):
    async def scenario():
        async with open_store() as store:
            await _herd(store)
            return await health_alerts(store, caller=ADMIN), await health_alerts(store, caller=ATTENDANT)

    alerts, scoped = run(scenario())
    # unpenned animals come after every named pen
    assert [(a.animal.name, a.animal.pen_name) for a in alerts] == [("Clara", "South"), ("Gia", None)]
    assert alerts[0].alert_type == "health_alert"
    assert alerts[1].message.endswith("quarantine")
    assert scoped == []


def test_reports_deny_roles_without_animal_reads(open_store, run):
    async def scenario():
        async with open_store() as store:
            with pytest.raises(AccessDenied):
                await livestock_stats(store, caller=Caller(id=3, role=Role.INVESTOR))
            with pytest.raises(AccessDenied):
                await health_alerts(store, caller=Caller(id=3, role=Role.INVESTOR))

    run(scenario())


def test_animals_in_pen_and_details(open_store, run):
    async def scenario():
        async with open_store() as store:
            north, south, herd = await _herd(store)
            in_north = await animals_in_pen(store, north.id)
            hidden = await animals_in_pen(store, south.id, caller=ATTENDANT)
            details = await get_animal_details(store, herd["clara"].id)
            with pytest.raises(PenNotFound):
                await animals_in_pen(store, 999)
            with pytest.raises(AnimalNotFound):
                await get_animal_details(store, herd["gone"].id)
            return in_north, hidden, details

    in_north, hidden, details = run(scenario())
    # the dead Dot stays out of the pen listing
    assert [a.name for a in in_north] == ["Atlas", "Bella"]
    assert hidden == []
    assert details.pen_name == "South"
    assert details.attendant_id is None
    assert details.health_status is HealthStatus.SICK


def test_age_in_years():
    assert age_in_years(None) is None
    assert age_in_years(date(2020, 2, 29), today=date(2021, 2, 28)) == 0
    assert age_in_years(date(2020, 2, 29), today=date(2021, 3, 1)) == 1
    assert age_in_years(date(2019, 6, 15), today=date(2024, 6, 15)) == 5
