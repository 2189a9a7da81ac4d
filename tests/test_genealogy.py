from datetime import date

import pytest

from livestock_registry.errors import AnimalNotFound, InvalidParentage
from livestock_registry.models import AnimalBody, Gender, ParentRole, Species
from livestock_registry.services.admission import create_animal
from livestock_registry.services.genealogy import get_offspring, get_parents, iter_offspring, set_parents
from livestock_registry.services.lifecycle import mark_deceased, remove_animal


async def _family(store):
    dam = await create_animal(store, AnimalBody(species=Species.GOAT, gender=Gender.FEMALE))
    sire = await create_animal(store, AnimalBody(species=Species.GOAT, gender=Gender.MALE))
    kids = []
    for born in (date(2023, 3, 1), date(2024, 3, 1), None, date(2022, 3, 1)):
        kids.append(await create_animal(
            store,
            AnimalBody(species=Species.GOAT, dam_id=dam.id, sire_id=sire.id, date_of_birth=born),
        ))
    return dam, sire, kids


def test_offspring_and_parents_round_trip(open_store, run):
    async def scenario():
        async with open_store() as store:
            dam, sire, kids = await _family(store)
            by_dam = await get_offspring(store, dam.id, ParentRole.DAM)
            by_sire = await get_offspring(store, sire.id, "sire")
            parents = await get_parents(store, kids[0].id)
            return dam, sire, kids, by_dam, by_sire, parents

    dam, sire, kids, by_dam, by_sire, parents = run(scenario())
    # youngest first, unknown birth date last
    assert [a.id for a in by_dam] == [kids[1].id, kids[0].id, kids[3].id, kids[2].id]
    assert [a.id for a in by_sire] == [a.id for a in by_dam]
    assert parents.dam.id == dam.id
    assert parents.sire.id == sire.id


def test_offspring_batches_cover_everything(open_store, run):
    async def scenario():
        async with open_store() as store:
            dam, _, kids = await _family(store)
            walked = [a.id async for a in iter_offspring(store, dam.id, ParentRole.DAM, batch_size=1)]
            return kids, walked

    kids, walked = run(scenario())
    assert sorted(walked) == sorted(k.id for k in kids)
    assert len(walked) == len(set(walked))


def test_dead_parent_keeps_edges_removed_child_is_hidden(open_store, run):
    async def scenario():
        async with open_store() as store:
            dam, _, kids = await _family(store)
            await mark_deceased(store, dam.id, "old age")
            await remove_animal(store, kids[0].id)
            offspring = await get_offspring(store, dam.id, ParentRole.DAM)
            parents = await get_parents(store, kids[1].id)
            return kids, offspring, parents

    kids, offspring, parents = run(scenario())
    assert kids[0].id not in {a.id for a in offspring}
    assert len(offspring) == 3
    assert parents.dam is not None
    assert parents.dam.status.value == "deceased"


def test_offspring_of_unknown_parent(open_store, run):
    async def scenario():
        async with open_store() as store:
            await get_offspring(store, 12345, ParentRole.DAM)

    with pytest.raises(AnimalNotFound):
        run(scenario())


def test_animal_without_parents(open_store, run):
    async def scenario():
        async with open_store() as store:
            animal = await create_animal(store, AnimalBody(species=Species.PIG))
            return await get_parents(store, animal.id)

    parents = run(scenario())
    assert parents.dam is None and parents.sire is None


def test_set_parents_validation(open_store, run):
    async def scenario():
        async with open_store() as store:
            a = await create_animal(store, AnimalBody(species=Species.CATTLE))
            b = await create_animal(store, AnimalBody(species=Species.CATTLE))
            pig = await create_animal(store, AnimalBody(species=Species.PIG))
            for dam_id, sire_id in [(a.id, None), (b.id, b.id), (pig.id, None), (999, None)]:
                with pytest.raises(InvalidParentage):
                    await set_parents(store, a.id, dam_id, sire_id)
            updated = await set_parents(store, a.id, b.id, None)
            offspring = await get_offspring(store, b.id, ParentRole.DAM)
            return a, b, updated, offspring

    a, b, updated, offspring = run(scenario())
    assert updated.dam_id == b.id
    assert [o.id for o in offspring] == [a.id]
