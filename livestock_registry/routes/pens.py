from fastapi import APIRouter, Depends, Query

from ..dependencies import get_store
from ..models import Caller, PenAssignmentBody, PenBody, PenUpdateBody
from ..services.access_control import SCOPE_COLUMNS, Action, ResourceKind, Scope, require_access, scope_for
from ..services.event_emitter import get_events_for_pen
from ..services.firebase_auth import get_caller
from ..services.pens import (
    assign_pen,
    assignments_for_user,
    create_pen,
    deactivate_assignment,
    delete_pen,
    get_pen,
    list_assignments,
    list_pens,
    update_pen,
)
from ..services.reports import animals_in_pen
from ..store import RegistryStore

router = APIRouter(prefix="/pens", tags=["pens"])


@router.get("")
async def read_pens(caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    """Pens with occupancy; pen-scoped roles only see their assigned pens"""
    scope = scope_for(caller, ResourceKind.PEN, Action.READ)
    pens = await list_pens(store)
    if scope is not Scope.ALL:
        column = SCOPE_COLUMNS[scope]
        mine = {a.pen_id for a in await assignments_for_user(store, caller.id) if getattr(a, column) == caller.id}
        pens = [pen for pen in pens if pen.id in mine]
    return {"count": len(pens), "pens": pens}


@router.post("", status_code=201)
async def add_pen(body: PenBody, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    scope_for(caller, ResourceKind.PEN, Action.MANAGE)
    return await create_pen(store, body, created_by=caller.id)


@router.get("/my-assignments")
async def my_assignments(caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    assignments = await assignments_for_user(store, caller.id)
    return {"count": len(assignments), "assignments": assignments}


@router.get("/assignments")
async def read_assignments(
    active_only: bool = Query(True),
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    scope_for(caller, ResourceKind.PEN, Action.MANAGE)
    assignments = await list_assignments(store, active_only=active_only)
    return {"count": len(assignments), "assignments": assignments}


@router.delete("/assignments/{assignment_id}")
async def end_assignment(assignment_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    scope_for(caller, ResourceKind.PEN, Action.MANAGE)
    return await deactivate_assignment(store, assignment_id, deactivated_by=caller.id)


@router.get("/{pen_id}")
async def read_pen(pen_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await require_access(store, caller, ResourceKind.PEN, pen_id, Action.READ)
    return await get_pen(store, pen_id)


@router.put("/{pen_id}")
async def edit_pen(
    pen_id: int,
    body: PenUpdateBody,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.PEN, pen_id, Action.MANAGE)
    return await update_pen(store, pen_id, body, updated_by=caller.id)


@router.delete("/{pen_id}")
async def remove_pen(pen_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    await require_access(store, caller, ResourceKind.PEN, pen_id, Action.MANAGE)
    await delete_pen(store, pen_id, deleted_by=caller.id)
    return {"ok": True}


@router.post("/{pen_id}/assignments", status_code=201)
async def add_assignment(
    pen_id: int,
    body: PenAssignmentBody,
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.PEN, pen_id, Action.MANAGE)
    return await assign_pen(
        store, pen_id, body.attendant_id, body.supervisor_id, notes=body.notes, assigned_by=caller.id
    )


@router.get("/{pen_id}/events")
async def pen_events(
    pen_id: int,
    limit: int = Query(100, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    store: RegistryStore = Depends(get_store),
):
    await require_access(store, caller, ResourceKind.PEN, pen_id, Action.READ)
    events = await get_events_for_pen(store, pen_id, limit)
    return {"count": len(events), "events": events}


@router.get("/{pen_id}/animals")
async def pen_animals(pen_id: int, caller: Caller = Depends(get_caller), store: RegistryStore = Depends(get_store)):
    """Active animals in a pen, by name"""
    await require_access(store, caller, ResourceKind.PEN, pen_id, Action.READ)
    animals = await animals_in_pen(store, pen_id, caller=caller)
    return {"count": len(animals), "animals": animals}
