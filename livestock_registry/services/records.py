"""
Row loading helpers shared by the registry services.

All helpers work inside an already open transaction.
"""

from typing import Optional

from ..errors import AnimalNotFound, PenNotFound
from ..models import Animal, AnimalStatus, Pen
from ..store import Transaction

ANIMAL_COLUMNS = """
    id, tag, name, identification_number, species, breed, gender, date_of_birth,
    dam_id, sire_id, pen_id, health_status, status, notes, created_by, created_at, updated_at
"""

PEN_COLUMNS = "id, name, capacity, species, location, notes, created_at, updated_at"


def row_to_animal(row) -> Animal:
    return Animal.model_validate(dict(row))


def row_to_pen(row, occupancy: Optional[int] = None) -> Pen:
    pen = Pen.model_validate(dict(row))
    if occupancy is not None:
        pen.occupancy = occupancy
    return pen


async def load_animal(
    tx: Transaction,
    animal_id: int,
    for_update: bool = False,
    include_deleted: bool = False,
) -> Animal:
    """Load one animal or raise AnimalNotFound. Soft-deleted animals count as missing unless asked for."""
    query = f"SELECT {ANIMAL_COLUMNS} FROM animals WHERE id = $1"
    if for_update:
        row = await tx.fetchrow_for_update(query, animal_id)
    else:
        row = await tx.fetchrow(query, animal_id)
    if row is None:
        raise AnimalNotFound(animal_id)
    animal = row_to_animal(row)
    if animal.status is AnimalStatus.DELETED and not include_deleted:
        raise AnimalNotFound(animal_id)
    return animal


async def load_pen(tx: Transaction, pen_id: int, for_update: bool = False) -> Pen:
    query = f"SELECT {PEN_COLUMNS} FROM pens WHERE id = $1"
    if for_update:
        row = await tx.fetchrow_for_update(query, pen_id)
    else:
        row = await tx.fetchrow(query, pen_id)
    if row is None:
        raise PenNotFound(pen_id)
    return row_to_pen(row)


async def active_occupancy(tx: Transaction, pen_id: int) -> int:
    """Number of active animals currently in the pen."""
    count = await tx.fetchval(
        "SELECT COUNT(*) FROM animals WHERE pen_id = $1 AND status = 'active'",
        pen_id,
    )
    return int(count or 0)
