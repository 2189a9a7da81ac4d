from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_store
from ..errors import AccessDenied
from ..models import (
    AnimalBody,
    Caller,
    DeathBody,
    Gender,
    HealthStatusBody,
    ParentageBody,
    ParentRole,
    Species,
    TransferBody,
)
from ..services.access_control import Action, ResourceKind, Scope, require_access, scope_for
from ..services.admission import create_animal, transfer_animal
from ..services.event_emitter import get_events_for_animal
from ..services.firebase_auth import get_caller
from ..services.genealogy import get_offspring, get_parents, set_parents
from ..services.lifecycle import get_mortality_record, mark_deceased, remove_animal, update_health_status
from ..services.reports import breeding_candidates, get_animal_details, health_alerts, livestock_stats
from ..services.search import get_animal, parse_filters, search
from ..store import RegistryStore

router = APIRouter(prefix="/animals", tags=["animals"])


async def _can_admit(store: RegistryStore, caller: Caller, pen_id: Optional[int]) -> None:
    if pen_id is not None:
        await require_access(store, caller, ResourceKind.PEN, pen_id, Action.ADMIT)
    elif scope_for(caller, ResourceKind.PEN, Action.ADMIT) is not Scope.ALL:
        # Unpenned animals are outside every pen-scoped caller's reach
        raise AccessDenied()


@router.post("", status_code=201)
async def register_animal(body: AnimalBody, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await _can_admit(store, caller, body.pen_id)
    return await create_animal(store, body, created_by=caller.id)


@router.get("")
async def list_animals(
    species: Optional[str] = None,
    health_status: Optional[str] = None,
    pen_id: Optional[str] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    """List animals the caller may see, filtered and paginated"""
    filters = parse_filters({
        "species": species,
        "health_status": health_status,
        "pen_id": pen_id,
        "status": status,
        "free_text": q,
    })
    return await search(store, filters, page=page, limit=limit, caller=caller)


@router.get("/stats")
async def stats(caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    """Herd overview counts and active animals per species"""
    return await livestock_stats(store, caller=caller)


@router.get("/breeding")
async def breeding(
    species: Species,
    gender: Optional[Gender] = None,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    animals = await breeding_candidates(store, species, gender=gender, caller=caller)
    return {"count": len(animals), "animals": animals}


@router.get("/alerts")
async def alerts(caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    found = await health_alerts(store, caller=caller)
    return {"count": len(found), "alerts": found}


@router.get("/{animal_id}")
async def read_animal(animal_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.READ)
    return await get_animal(store, animal_id)


@router.get("/{animal_id}/details")
async def read_animal_details(animal_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    """Animal with pen name/location, the pen's active assignment and age"""
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.READ)
    return await get_animal_details(store, animal_id)


@router.post("/{animal_id}/transfer")
async def transfer(
    animal_id: int,
    body: TransferBody,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.WRITE)
    if body.pen_id is not None:
        await require_access(store, caller, ResourceKind.PEN, body.pen_id, Action.ADMIT)
    else:
        scope_for(caller, ResourceKind.PEN, Action.ADMIT)
    return await transfer_animal(store, animal_id, body.pen_id, moved_by=caller.id)


@router.put("/{animal_id}/health")
async def set_health(
    animal_id: int,
    body: HealthStatusBody,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.WRITE)
    return await update_health_status(store, animal_id, body.status, notes=body.notes, updated_by=caller.id)


@router.put("/{animal_id}/parents")
async def correct_parents(
    animal_id: int,
    body: ParentageBody,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.WRITE)
    return await set_parents(store, animal_id, body.dam_id, body.sire_id, updated_by=caller.id)


@router.post("/{animal_id}/death", status_code=201)
async def record_death(
    animal_id: int,
    body: DeathBody,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.WRITE)
    animal, record = await mark_deceased(
        store, animal_id, body.cause_of_death, date_of_death=body.date_of_death, reported_by=caller.id
    )
    return {"animal": animal, "mortality_record": record}


@router.get("/{animal_id}/death")
async def read_death(animal_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.READ)
    return await get_mortality_record(store, animal_id)


@router.delete("/{animal_id}")
async def delete_animal(animal_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.WRITE)
    animal = await remove_animal(store, animal_id, removed_by=caller.id)
    return {"ok": True, "id": animal.id}


@router.get("/{animal_id}/offspring")
async def offspring(
    animal_id: int,
    role: ParentRole = Query(ParentRole.DAM),
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.READ)
    children = await get_offspring(store, animal_id, role)
    return {"count": len(children), "offspring": children}


@router.get("/{animal_id}/parents")
async def parents(animal_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.READ)
    return await get_parents(store, animal_id)


@router.get("/{animal_id}/events")
async def animal_events(
    animal_id: int,
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    """Audit trail of one animal, newest first"""
    await require_access(store, caller, ResourceKind.ANIMAL, animal_id, Action.READ)
    events = await get_events_for_animal(store, animal_id, limit)
    return {"count": len(events), "events": events}
