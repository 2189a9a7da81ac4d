"""
Lifecycle State Machine

    active --update_health_status--> active (healthy/sick/quarantine/critical)
    active --mark_deceased---------> deceased (terminal)
    active|deceased --remove_animal--> deleted (soft delete)

Deceased and deleted animals stop counting towards pen occupancy; their rows
stay so genealogy and audit history remain readable.
"""

import logging
from datetime import date
from typing import Optional, Tuple

from ..errors import (
    AlreadyDeceased,
    InvalidTransition,
    MortalityRecordNotFound,
    UniqueViolation,
)
from ..events.event_types import (
    AnimalRemovedPayload,
    DeathRecordedPayload,
    EventType,
    HealthStatusChangedPayload,
)
from ..models import Animal, AnimalStatus, HealthStatus, MortalityRecord
from ..store import RegistryStore, Transaction, run_in_transaction, utcnow
from .event_emitter import emit_event
from .records import ANIMAL_COLUMNS, load_animal, row_to_animal

logger = logging.getLogger(__name__)

MORTALITY_COLUMNS = "id, animal_id, cause_of_death, date_of_death, reported_by, created_at"


async def update_health_status(
    store: RegistryStore,
    animal_id: int,
    new_status: HealthStatus,
    notes: Optional[str] = None,
    updated_by: Optional[int] = None,
) -> Animal:
    """
    Change the health status of an active animal.

    Raises:
        InvalidTransition: ``deceased`` requested here (use mark_deceased)
        AlreadyDeceased: the animal is dead
        AnimalNotFound: missing or removed
    """
    new_status = HealthStatus(new_status)
    if new_status is HealthStatus.DECEASED:
        raise InvalidTransition("Use the death record endpoint to mark an animal as deceased")

    async def work(tx: Transaction) -> Animal:
        animal = await load_animal(tx, animal_id, for_update=True)
        if animal.status is AnimalStatus.DECEASED:
            raise AlreadyDeceased(animal_id)
        if animal.health_status is new_status and notes is None:
            return animal

        row = await tx.fetchrow(
            f"""
            UPDATE animals SET health_status = $1, notes = COALESCE($2, notes), updated_at = $3
            WHERE id = $4
            RETURNING {ANIMAL_COLUMNS}
            """,
            new_status.value,
            notes,
            utcnow(),
            animal_id,
        )
        await emit_event(
            tx,
            EventType.HEALTH_STATUS_CHANGED,
            HealthStatusChangedPayload(
                previous_status=animal.health_status.value,
                new_status=new_status.value,
                notes=notes,
            ),
            user_id=updated_by,
            animal_id=animal_id,
            pen_id=animal.pen_id,
        )
        return row_to_animal(row)

    return await run_in_transaction(store, work, "update_health_status")


async def mark_deceased(
    store: RegistryStore,
    animal_id: int,
    cause_of_death: str,
    date_of_death: Optional[date] = None,
    reported_by: Optional[int] = None,
) -> Tuple[Animal, MortalityRecord]:
    """
    Record the death of an animal.

    The status change and the mortality record are written together; a second
    call for the same animal raises AlreadyDeceased and writes nothing.
    """
    death_date = date_of_death or date.today()

    async def work(tx: Transaction) -> Tuple[Animal, MortalityRecord]:
        animal = await load_animal(tx, animal_id, for_update=True)
        if animal.status is AnimalStatus.DECEASED:
            raise AlreadyDeceased(animal_id)

        now = utcnow()
        row = await tx.fetchrow(
            f"""
            UPDATE animals SET status = $1, health_status = $2, updated_at = $3
            WHERE id = $4
            RETURNING {ANIMAL_COLUMNS}
            """,
            AnimalStatus.DECEASED.value,
            HealthStatus.DECEASED.value,
            now,
            animal_id,
        )
        try:
            record_row = await tx.fetchrow(
                f"""
                INSERT INTO mortality_records (animal_id, cause_of_death, date_of_death, reported_by, created_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING {MORTALITY_COLUMNS}
                """,
                animal_id,
                cause_of_death,
                death_date,
                reported_by,
                now,
            )
        except UniqueViolation as e:
            raise AlreadyDeceased(animal_id) from e

        record = MortalityRecord.model_validate(dict(record_row))
        await emit_event(
            tx,
            EventType.DEATH_RECORDED,
            DeathRecordedPayload(
                mortality_record_id=record.id,
                cause_of_death=cause_of_death,
                date_of_death=death_date.isoformat(),
                previous_health_status=animal.health_status.value,
            ),
            user_id=reported_by,
            animal_id=animal_id,
            pen_id=animal.pen_id,
        )
        return row_to_animal(row), record

    dead, record = await run_in_transaction(store, work, "mark_deceased")
    logger.info(f"Recorded death of animal {dead.tag} (id={animal_id}): {cause_of_death}")
    return dead, record


async def remove_animal(store: RegistryStore, animal_id: int, removed_by: Optional[int] = None) -> Animal:
    """Soft delete: the row is kept with status 'deleted' and no longer occupies its pen."""

    async def work(tx: Transaction) -> Animal:
        animal = await load_animal(tx, animal_id, for_update=True)
        row = await tx.fetchrow(
            f"UPDATE animals SET status = $1, updated_at = $2 WHERE id = $3 RETURNING {ANIMAL_COLUMNS}",
            AnimalStatus.DELETED.value,
            utcnow(),
            animal_id,
        )
        await emit_event(
            tx,
            EventType.ANIMAL_REMOVED,
            AnimalRemovedPayload(previous_status=animal.status.value, pen_id=animal.pen_id),
            user_id=removed_by,
            animal_id=animal_id,
            pen_id=animal.pen_id,
        )
        return row_to_animal(row)

    animal = await run_in_transaction(store, work, "remove_animal")
    logger.info(f"Removed animal {animal.tag} (id={animal_id})")
    return animal


async def get_mortality_record(store: RegistryStore, animal_id: int) -> MortalityRecord:
    async def work(tx: Transaction) -> MortalityRecord:
        row = await tx.fetchrow(
            f"SELECT {MORTALITY_COLUMNS} FROM mortality_records WHERE animal_id = $1",
            animal_id,
        )
        if row is None:
            raise MortalityRecordNotFound(animal_id)
        return MortalityRecord.model_validate(dict(row))

    return await run_in_transaction(store, work, "get_mortality_record", readonly=True)
