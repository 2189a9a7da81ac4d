"""
Admission Controller

Creates animals and moves them between pens while keeping two invariants:

- an animal in a pen has the pen's species;
- a pen never holds more active animals than its capacity.

The capacity check and the write that consumes the capacity happen in one
transaction while the pen row is locked (SELECT ... FOR UPDATE on PostgreSQL,
the database write lock on SQLite), so two callers can never both see the last
free place. Locks are always taken in the order animal row, pen row, tag
sequence row.
"""

import logging
from typing import Optional

from ..errors import (
    AlreadyDeceased,
    CapacityExceeded,
    DuplicateTag,
    SpeciesMismatch,
    TransientStorageError,
    UniqueViolation,
)
from ..events.event_types import AnimalAdmittedPayload, AnimalTransferredPayload, EventType
from ..models import Animal, AnimalBody, AnimalStatus, ParentRole, Pen, Species
from ..store import RegistryStore, Transaction, run_in_transaction, utcnow
from .event_emitter import emit_event
from .genealogy import check_distinct_parents, check_parent
from .records import ANIMAL_COLUMNS, active_occupancy, load_animal, load_pen, row_to_animal

logger = logging.getLogger(__name__)


async def _reserve_place(tx: Transaction, pen_id: int, species: Species) -> Pen:
    """Lock the pen and make sure one more active animal of ``species`` fits."""
    pen = await load_pen(tx, pen_id, for_update=True)
    if pen.species != species:
        raise SpeciesMismatch(species.value, pen.species.value)

    occupancy = await active_occupancy(tx, pen.id)
    if occupancy >= pen.capacity:
        raise CapacityExceeded(pen.id, pen.capacity, occupancy)
    return pen


async def next_tag(tx: Transaction, species: Species) -> str:
    """
    Draw the next "<PREFIX>-<N>" tag for a species.

    The counter row is created from the species head count on first use and
    advanced inside the caller's transaction, so it rolls back with it. Numbers
    already taken by explicitly tagged animals are skipped.
    """
    while True:
        value = await tx.fetchval(
            """
            INSERT INTO tag_sequences (species, last_value)
            VALUES ($1, (SELECT COUNT(*) FROM animals WHERE species = $1) + 1)
            ON CONFLICT (species) DO UPDATE SET last_value = tag_sequences.last_value + 1
            RETURNING last_value
            """,
            species.value,
        )
        tag = f"{species.tag_prefix}-{value}"
        taken = await tx.fetchval("SELECT 1 FROM animals WHERE tag = $1", tag)
        if not taken:
            return tag


async def _admit(tx: Transaction, data: AnimalBody, created_by: Optional[int]) -> Animal:
    check_distinct_parents(data.dam_id, data.sire_id)
    if data.dam_id is not None:
        await check_parent(tx, data.dam_id, data.species, ParentRole.DAM)
    if data.sire_id is not None:
        await check_parent(tx, data.sire_id, data.species, ParentRole.SIRE)

    if data.pen_id is not None:
        await _reserve_place(tx, data.pen_id, data.species)

    tag = (data.tag or "").strip()
    tag_generated = not tag
    if tag_generated:
        tag = await next_tag(tx, data.species)
    else:
        if await tx.fetchval("SELECT 1 FROM animals WHERE tag = $1", tag):
            raise DuplicateTag(tag)

    now = utcnow()
    try:
        row = await tx.fetchrow(
            f"""
            INSERT INTO animals (
                tag, name, identification_number, species, breed, gender, date_of_birth,
                dam_id, sire_id, pen_id, health_status, status, notes, created_by, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $15)
            RETURNING {ANIMAL_COLUMNS}
            """,
            tag,
            data.name,
            data.identification_number,
            data.species.value,
            data.breed,
            data.gender.value,
            data.date_of_birth,
            data.dam_id,
            data.sire_id,
            data.pen_id,
            data.health_status.value,
            AnimalStatus.ACTIVE.value,
            data.notes,
            created_by,
            now,
        )
    except UniqueViolation as e:
        if "tag" not in (e.constraint or ""):
            raise
        if tag_generated:
            # An explicit tag committed concurrently with the same number;
            # redraw in a fresh transaction.
            raise TransientStorageError(f"Generated tag {tag} was taken concurrently") from e
        raise DuplicateTag(tag) from e

    animal = row_to_animal(row)
    await emit_event(
        tx,
        EventType.ANIMAL_ADMITTED,
        AnimalAdmittedPayload(
            tag=animal.tag,
            species=animal.species.value,
            pen_id=animal.pen_id,
            dam_id=animal.dam_id,
            sire_id=animal.sire_id,
            tag_generated=tag_generated,
        ),
        user_id=created_by,
        animal_id=animal.id,
        pen_id=animal.pen_id,
    )
    return animal


async def create_animal(store: RegistryStore, data: AnimalBody, created_by: Optional[int] = None) -> Animal:
    """
    Register a new active animal, optionally straight into a pen.

    Raises:
        PenNotFound: the requested pen does not exist
        SpeciesMismatch: the pen holds another species
        CapacityExceeded: the pen is full at commit time
        DuplicateTag: an explicit tag is already in use
        InvalidParentage: dam/sire missing, of another species, or the same animal
        ConcurrentConflictExhausted: transient store conflicts on every attempt
    """

    async def work(tx: Transaction) -> Animal:
        return await _admit(tx, data, created_by)

    animal = await run_in_transaction(store, work, "create_animal")
    logger.info(f"Admitted {animal.species.value} {animal.tag} (id={animal.id}) into pen {animal.pen_id}")
    return animal


async def transfer_animal(
    store: RegistryStore,
    animal_id: int,
    new_pen_id: Optional[int],
    moved_by: Optional[int] = None,
) -> Animal:
    """
    Move an active animal to another pen (or out of any pen with ``None``).

    Moving an animal to the pen it is already in succeeds without writing.

    Raises:
        AnimalNotFound, AlreadyDeceased, PenNotFound, SpeciesMismatch,
        CapacityExceeded, ConcurrentConflictExhausted
    """

    async def work(tx: Transaction) -> Animal:
        animal = await load_animal(tx, animal_id, for_update=True)
        if animal.status is AnimalStatus.DECEASED:
            raise AlreadyDeceased(animal_id)
        if animal.pen_id == new_pen_id:
            return animal

        if new_pen_id is not None:
            await _reserve_place(tx, new_pen_id, animal.species)

        row = await tx.fetchrow(
            f"UPDATE animals SET pen_id = $1, updated_at = $2 WHERE id = $3 RETURNING {ANIMAL_COLUMNS}",
            new_pen_id,
            utcnow(),
            animal_id,
        )
        await emit_event(
            tx,
            EventType.ANIMAL_TRANSFERRED,
            AnimalTransferredPayload(from_pen_id=animal.pen_id, to_pen_id=new_pen_id),
            user_id=moved_by,
            animal_id=animal_id,
            pen_id=new_pen_id,
        )
        logger.info(f"Moved animal {animal.tag} from pen {animal.pen_id} to pen {new_pen_id}")
        return row_to_animal(row)

    return await run_in_transaction(store, work, "transfer_animal")
