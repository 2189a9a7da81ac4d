"""
Genealogy Index

Offspring and parent views derived from the dam_id/sire_id columns on
animals. Parent references are lookup-only: a parent that later dies or is
removed keeps its edges, because they are historical record.
"""

import logging
from datetime import date
from typing import AsyncIterator, List, Optional, Union

from .. import config
from ..errors import AnimalNotFound, InvalidParentage
from ..events.event_types import EventType, ParentageUpdatedPayload
from ..models import Animal, ParentRole, Parents, Species
from ..store import RegistryStore, Transaction, run_in_transaction, utcnow
from .event_emitter import emit_event
from .records import ANIMAL_COLUMNS, load_animal, row_to_animal

logger = logging.getLogger(__name__)

# Sorts animals without a birth date after every real date (descending order)
_UNKNOWN_BIRTH = date.min


async def check_parent(tx: Transaction, parent_id: int, species: Species, role: ParentRole) -> Animal:
    """A parent must exist when the edge is written and share the child's species."""
    try:
        parent = await load_animal(tx, parent_id, include_deleted=True)
    except AnimalNotFound:
        raise InvalidParentage(f"{role.value.capitalize()} {parent_id} does not exist")
    if parent.species != species:
        raise InvalidParentage(
            f"{role.value.capitalize()} {parent_id} is a {parent.species.value}, expected {species.value}"
        )
    return parent


def check_distinct_parents(dam_id: Optional[int], sire_id: Optional[int], animal_id: Optional[int] = None) -> None:
    if animal_id is not None and animal_id in (dam_id, sire_id):
        raise InvalidParentage("An animal cannot be its own parent")
    if dam_id is not None and dam_id == sire_id:
        raise InvalidParentage("Dam and sire must be different animals")


async def _load_parent(tx: Transaction, parent_id: Optional[int]) -> Optional[Animal]:
    if parent_id is None:
        return None
    row = await tx.fetchrow(f"SELECT {ANIMAL_COLUMNS} FROM animals WHERE id = $1", parent_id)
    return row_to_animal(row) if row is not None else None


async def iter_offspring(
    store: RegistryStore,
    parent_id: int,
    role: Union[ParentRole, str],
    batch_size: Optional[int] = None,
) -> AsyncIterator[Animal]:
    """
    Yield the non-deleted offspring of ``parent_id`` through the given parent
    role, youngest first (unknown birth dates last, then by id descending).

    Rows are fetched lazily in keyset batches; every call starts a new walk.

    Raises:
        AnimalNotFound: on first iteration, if the parent does not exist
    """
    column = ParentRole(role).column
    size = batch_size or config.GENEALOGY_BATCH_SIZE

    async def ensure_parent(tx: Transaction) -> Animal:
        return await load_animal(tx, parent_id, include_deleted=True)

    await run_in_transaction(store, ensure_parent, "get_offspring", readonly=True)

    cursor: Optional[tuple] = None
    while True:
        params: list = [parent_id, _UNKNOWN_BIRTH]
        after = ""
        if cursor is not None:
            after = """
              AND (COALESCE(date_of_birth, $2) < $3
                   OR (COALESCE(date_of_birth, $2) = $3 AND id < $4))
            """
            params.extend(cursor)
        params.append(size)

        query = f"""
            SELECT {ANIMAL_COLUMNS} FROM animals
            WHERE {column} = $1 AND status != 'deleted' {after}
            ORDER BY COALESCE(date_of_birth, $2) DESC, id DESC
            LIMIT ${len(params)}
        """

        async def fetch_batch(tx: Transaction) -> List[Animal]:
            rows = await tx.fetch(query, *params)
            return [row_to_animal(row) for row in rows]

        batch = await run_in_transaction(store, fetch_batch, "get_offspring", readonly=True)
        for animal in batch:
            yield animal
        if len(batch) < size:
            return
        last = batch[-1]
        cursor = (last.date_of_birth or _UNKNOWN_BIRTH, last.id)


async def get_offspring(store: RegistryStore, parent_id: int, role: Union[ParentRole, str]) -> List[Animal]:
    return [animal async for animal in iter_offspring(store, parent_id, role)]


async def get_parents(store: RegistryStore, animal_id: int) -> Parents:
    """Resolve dam and sire of an animal; either may be absent."""

    async def work(tx: Transaction) -> Parents:
        animal = await load_animal(tx, animal_id)
        return Parents(
            dam=await _load_parent(tx, animal.dam_id),
            sire=await _load_parent(tx, animal.sire_id),
        )

    return await run_in_transaction(store, work, "get_parents", readonly=True)


async def set_parents(
    store: RegistryStore,
    animal_id: int,
    dam_id: Optional[int],
    sire_id: Optional[int],
    updated_by: Optional[int] = None,
) -> Animal:
    """
    Correct the recorded parentage of an animal.

    Raises:
        AnimalNotFound: the animal does not exist
        InvalidParentage: self reference, same animal as dam and sire, missing
            parent, or parent of another species
    """

    async def work(tx: Transaction) -> Animal:
        animal = await load_animal(tx, animal_id, for_update=True)
        check_distinct_parents(dam_id, sire_id, animal_id)
        if dam_id is not None:
            await check_parent(tx, dam_id, animal.species, ParentRole.DAM)
        if sire_id is not None:
            await check_parent(tx, sire_id, animal.species, ParentRole.SIRE)

        row = await tx.fetchrow(
            f"""
            UPDATE animals SET dam_id = $1, sire_id = $2, updated_at = $3
            WHERE id = $4
            RETURNING {ANIMAL_COLUMNS}
            """,
            dam_id,
            sire_id,
            utcnow(),
            animal_id,
        )
        await emit_event(
            tx,
            EventType.PARENTAGE_UPDATED,
            ParentageUpdatedPayload(
                previous_dam_id=animal.dam_id,
                previous_sire_id=animal.sire_id,
                dam_id=dam_id,
                sire_id=sire_id,
            ),
            user_id=updated_by,
            animal_id=animal_id,
        )
        return row_to_animal(row)

    animal = await run_in_transaction(store, work, "set_parents")
    logger.info(f"Parentage of animal {animal_id} set to dam={dam_id} sire={sire_id}")
    return animal
