"""
Herd Reports

Read-only views over the herd: overview statistics, breeding candidates,
health alerts and per-pen listings. Every view honours the caller's animal
read scope the same way the paginated search does, so a pen-scoped role only
counts and sees animals in the pens it is actively assigned to.
"""

import logging
from datetime import date
from typing import Any, List, Optional

from ..errors import AnimalNotFound
from ..models import (
    AnimalDetails,
    AnimalStatus,
    Caller,
    Gender,
    HealthAlert,
    HealthStatus,
    LivestockStats,
    Species,
    SpeciesCount,
)
from ..store import RegistryStore, Transaction, run_in_transaction
from .access_control import Action, ResourceKind, Scope, assignment_subquery, scope_for
from .records import ANIMAL_COLUMNS, load_pen

logger = logging.getLogger(__name__)

ALERT_HEALTH_STATUSES = (HealthStatus.SICK, HealthStatus.QUARANTINE, HealthStatus.CRITICAL)

_DETAIL_SELECT = """
    SELECT {columns},
           p.name AS pen_name, p.location AS pen_location,
           pa.attendant_id, pa.supervisor_id
    FROM animals a
    LEFT JOIN pens p ON p.id = a.pen_id
    LEFT JOIN pen_assignments pa ON pa.pen_id = a.pen_id AND pa.is_active
""".format(columns=", ".join(f"a.{column.strip()}" for column in ANIMAL_COLUMNS.split(",")))


def age_in_years(date_of_birth: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if date_of_birth is None:
        return None
    today = today or date.today()
    before_birthday = (today.month, today.day) < (date_of_birth.month, date_of_birth.day)
    return today.year - date_of_birth.year - int(before_birthday)


def row_to_details(row) -> AnimalDetails:
    details = AnimalDetails.model_validate(dict(row))
    details.age_years = age_in_years(details.date_of_birth)
    return details


def _scope_condition(caller: Optional[Caller], params: List[Any], column: str = "pen_id") -> Optional[str]:
    """
    Restrict ``column`` to the caller's assigned pens, binding the caller id
    into ``params``. Returns None for unrestricted callers.
    """
    if caller is None:
        return None
    scope = scope_for(caller, ResourceKind.ANIMAL, Action.READ)
    if scope is Scope.ALL:
        return None
    params.append(caller.id)
    return f"{column} IN ({assignment_subquery(scope, len(params))})"


async def livestock_stats(store: RegistryStore, caller: Optional[Caller] = None) -> LivestockStats:
    """
    Head counts over every non-deleted animal, plus active animals per species
    (largest group first).

    Raises:
        AccessDenied: the caller's role may not read animals
    """
    params: List[Any] = []
    conditions = ["status != 'deleted'"]
    scoped = _scope_condition(caller, params)
    if scoped:
        conditions.append(scoped)
    where_clause = " AND ".join(conditions)

    async def work(tx: Transaction) -> LivestockStats:
        overview = await tx.fetchrow(
            f"""
            SELECT
                COUNT(*) AS total_animals,
                COUNT(CASE WHEN status = 'active' THEN 1 END) AS active_animals,
                COUNT(CASE WHEN status = 'deceased' THEN 1 END) AS deceased_animals,
                COUNT(CASE WHEN health_status = 'healthy' THEN 1 END) AS healthy,
                COUNT(CASE WHEN health_status = 'sick' THEN 1 END) AS sick,
                COUNT(CASE WHEN health_status = 'quarantine' THEN 1 END) AS quarantine,
                COUNT(CASE WHEN health_status = 'critical' THEN 1 END) AS critical,
                COUNT(CASE WHEN gender = 'male' THEN 1 END) AS male,
                COUNT(CASE WHEN gender = 'female' THEN 1 END) AS female
            FROM animals
            WHERE {where_clause}
            """,
            *params,
        )
        species_rows = await tx.fetch(
            f"""
            SELECT species, COUNT(*) AS count
            FROM animals
            WHERE {where_clause} AND status = 'active'
            GROUP BY species
            ORDER BY COUNT(*) DESC, species
            """,
            *params,
        )
        counts = {key: int(value or 0) for key, value in dict(overview).items()}
        return LivestockStats(
            **counts,
            by_species=[SpeciesCount(species=row["species"], count=int(row["count"])) for row in species_rows],
        )

    return await run_in_transaction(store, work, "livestock_stats", readonly=True)


async def breeding_candidates(
    store: RegistryStore,
    species: Species,
    gender: Optional[Gender] = None,
    caller: Optional[Caller] = None,
) -> List[AnimalDetails]:
    """Active, healthy animals of one species (optionally one gender), by name."""
    params: List[Any] = [AnimalStatus.ACTIVE.value, HealthStatus.HEALTHY.value, Species(species).value]
    conditions = ["a.status = $1", "a.health_status = $2", "a.species = $3"]
    if gender is not None:
        params.append(Gender(gender).value)
        conditions.append(f"a.gender = ${len(params)}")
    scoped = _scope_condition(caller, params, "a.pen_id")
    if scoped:
        conditions.append(scoped)

    query = f"""
        {_DETAIL_SELECT}
        WHERE {" AND ".join(conditions)}
        ORDER BY a.name IS NULL, a.name, a.id
    """

    async def work(tx: Transaction) -> List[AnimalDetails]:
        return [row_to_details(row) for row in await tx.fetch(query, *params)]

    return await run_in_transaction(store, work, "breeding_candidates", readonly=True)


async def health_alerts(store: RegistryStore, caller: Optional[Caller] = None) -> List[HealthAlert]:
    """Active animals that are sick, quarantined or critical, grouped by pen name."""
    params: List[Any] = [AnimalStatus.ACTIVE.value] + [status.value for status in ALERT_HEALTH_STATUSES]
    conditions = ["a.status = $1", "a.health_status IN ($2, $3, $4)"]
    scoped = _scope_condition(caller, params, "a.pen_id")
    if scoped:
        conditions.append(scoped)

    query = f"""
        {_DETAIL_SELECT}
        WHERE {" AND ".join(conditions)}
        ORDER BY p.name IS NULL, p.name, a.name IS NULL, a.name, a.id
    """

    async def work(tx: Transaction) -> List[HealthAlert]:
        animals = [row_to_details(row) for row in await tx.fetch(query, *params)]
        return [
            HealthAlert(message=f"{animal.tag} is {animal.health_status.value}", animal=animal)
            for animal in animals
        ]

    alerts = await run_in_transaction(store, work, "health_alerts", readonly=True)
    logger.debug(f"{len(alerts)} health alerts")
    return alerts


async def animals_in_pen(store: RegistryStore, pen_id: int, caller: Optional[Caller] = None) -> List[AnimalDetails]:
    """
    Active animals currently in a pen, by name.

    Raises:
        PenNotFound: the pen does not exist
    """
    params: List[Any] = [pen_id, AnimalStatus.ACTIVE.value]
    conditions = ["a.pen_id = $1", "a.status = $2"]
    scoped = _scope_condition(caller, params, "a.pen_id")
    if scoped:
        conditions.append(scoped)

    query = f"""
        {_DETAIL_SELECT}
        WHERE {" AND ".join(conditions)}
        ORDER BY a.name IS NULL, a.name, a.id
    """

    async def work(tx: Transaction) -> List[AnimalDetails]:
        await load_pen(tx, pen_id)
        return [row_to_details(row) for row in await tx.fetch(query, *params)]

    return await run_in_transaction(store, work, "animals_in_pen", readonly=True)


async def get_animal_details(store: RegistryStore, animal_id: int) -> AnimalDetails:
    """One animal with its pen name/location, pen assignment and age."""

    async def work(tx: Transaction) -> AnimalDetails:
        row = await tx.fetchrow(f"{_DETAIL_SELECT} WHERE a.id = $1 AND a.status != 'deleted'", animal_id)
        if row is None:
            raise AnimalNotFound(animal_id)
        return row_to_details(row)

    return await run_in_transaction(store, work, "get_animal_details", readonly=True)
