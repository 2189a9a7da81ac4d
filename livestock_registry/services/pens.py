"""
Pen and pen assignment administration.

Pen species is fixed at creation: animals already placed were checked against
it. A pen holds at most one active assignment; assigning a pen deactivates the
previous assignment in the same transaction, and the old row is kept for audit.
"""

import logging
from datetime import date
from typing import List, Optional

from ..errors import (
    AssignmentNotFound,
    CapacityExceeded,
    DuplicatePenName,
    PenNotEmpty,
    UniqueViolation,
)
from ..events.event_types import EventType
from ..models import Pen, PenAssignment, PenBody, PenUpdateBody
from ..store import RegistryStore, Transaction, run_in_transaction, utcnow
from .event_emitter import emit_event
from .records import PEN_COLUMNS, active_occupancy, load_pen, row_to_pen

logger = logging.getLogger(__name__)

ASSIGNMENT_COLUMNS = """
    id, pen_id, attendant_id, supervisor_id, is_active, notes, assigned_date, created_at, updated_at
"""

_PEN_WITH_OCCUPANCY = """
    SELECT p.id, p.name, p.capacity, p.species, p.location, p.notes, p.created_at, p.updated_at,
           COALESCE(counts.occupancy, 0) AS occupancy
    FROM pens p
    LEFT JOIN (
        SELECT pen_id, COUNT(*) AS occupancy
        FROM animals
        WHERE status = 'active'
        GROUP BY pen_id
    ) counts ON counts.pen_id = p.id
"""


def _row_to_assignment(row) -> PenAssignment:
    return PenAssignment.model_validate(dict(row))


def _is_name_conflict(e: UniqueViolation) -> bool:
    return "name" in (e.constraint or "")


async def create_pen(store: RegistryStore, data: PenBody, created_by: Optional[int] = None) -> Pen:
    async def work(tx: Transaction) -> Pen:
        now = utcnow()
        try:
            row = await tx.fetchrow(
                f"""
                INSERT INTO pens (name, capacity, species, location, notes, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $6)
                RETURNING {PEN_COLUMNS}
                """,
                data.name.strip(),
                data.capacity,
                data.species.value,
                data.location,
                data.notes,
                now,
            )
        except UniqueViolation as e:
            if _is_name_conflict(e):
                raise DuplicatePenName(data.name.strip()) from e
            raise
        pen = row_to_pen(row, occupancy=0)
        await emit_event(
            tx,
            EventType.PEN_CREATED,
            {"name": pen.name, "capacity": pen.capacity, "species": pen.species.value},
            user_id=created_by,
            pen_id=pen.id,
        )
        return pen

    pen = await run_in_transaction(store, work, "create_pen")
    logger.info(f"Created pen '{pen.name}' (id={pen.id}) for {pen.species.value}, capacity {pen.capacity}")
    return pen


async def get_pen(store: RegistryStore, pen_id: int) -> Pen:
    async def work(tx: Transaction) -> Pen:
        pen = await load_pen(tx, pen_id)
        pen.occupancy = await active_occupancy(tx, pen_id)
        return pen

    return await run_in_transaction(store, work, "get_pen", readonly=True)


async def list_pens(store: RegistryStore) -> List[Pen]:
    async def work(tx: Transaction) -> List[Pen]:
        rows = await tx.fetch(f"{_PEN_WITH_OCCUPANCY} ORDER BY p.name")
        return [row_to_pen(row) for row in rows]

    return await run_in_transaction(store, work, "list_pens", readonly=True)


async def update_pen(
    store: RegistryStore,
    pen_id: int,
    data: PenUpdateBody,
    updated_by: Optional[int] = None,
) -> Pen:
    """
    Change name, capacity, location or notes of a pen.

    Raises:
        PenNotFound
        CapacityExceeded: the new capacity is below the current occupancy
        DuplicatePenName
    """
    changes = data.model_dump(exclude_unset=True)

    async def work(tx: Transaction) -> Pen:
        pen = await load_pen(tx, pen_id, for_update=True)
        occupancy = await active_occupancy(tx, pen_id)
        if not changes:
            pen.occupancy = occupancy
            return pen

        capacity = changes.get("capacity")
        if capacity is not None and capacity < occupancy:
            raise CapacityExceeded(pen_id, capacity, occupancy)
        if changes.get("name"):
            changes["name"] = changes["name"].strip()

        assignments = []
        params = []
        for column in ("name", "capacity", "location", "notes"):
            if column in changes:
                params.append(changes[column])
                assignments.append(f"{column} = ${len(params)}")
        params.append(utcnow())
        assignments.append(f"updated_at = ${len(params)}")
        params.append(pen_id)

        try:
            row = await tx.fetchrow(
                f"UPDATE pens SET {', '.join(assignments)} WHERE id = ${len(params)} RETURNING {PEN_COLUMNS}",
                *params,
            )
        except UniqueViolation as e:
            if _is_name_conflict(e):
                raise DuplicatePenName(changes.get("name") or pen.name) from e
            raise
        await emit_event(tx, EventType.PEN_UPDATED, changes, user_id=updated_by, pen_id=pen_id)
        return row_to_pen(row, occupancy=occupancy)

    return await run_in_transaction(store, work, "update_pen")


async def delete_pen(store: RegistryStore, pen_id: int, deleted_by: Optional[int] = None) -> None:
    """Delete an empty pen together with its assignments. Raises PenNotEmpty while active animals remain."""

    async def work(tx: Transaction) -> None:
        pen = await load_pen(tx, pen_id, for_update=True)
        occupancy = await active_occupancy(tx, pen_id)
        if occupancy > 0:
            raise PenNotEmpty(f"Pen '{pen.name}' still holds {occupancy} active animals; move them first")
        await tx.execute("DELETE FROM pen_assignments WHERE pen_id = $1", pen_id)
        await tx.execute("DELETE FROM pens WHERE id = $1", pen_id)
        await emit_event(tx, EventType.PEN_DELETED, {"name": pen.name}, user_id=deleted_by, pen_id=pen_id)

    await run_in_transaction(store, work, "delete_pen")
    logger.info(f"Deleted pen {pen_id}")


async def assign_pen(
    store: RegistryStore,
    pen_id: int,
    attendant_id: Optional[int] = None,
    supervisor_id: Optional[int] = None,
    notes: Optional[str] = None,
    assigned_by: Optional[int] = None,
) -> PenAssignment:
    """Make a new active assignment for a pen, replacing the current one."""

    async def work(tx: Transaction) -> PenAssignment:
        await load_pen(tx, pen_id, for_update=True)
        now = utcnow()
        await tx.execute(
            "UPDATE pen_assignments SET is_active = $1, updated_at = $2 WHERE pen_id = $3 AND is_active",
            False,
            now,
            pen_id,
        )
        row = await tx.fetchrow(
            f"""
            INSERT INTO pen_assignments (
                pen_id, attendant_id, supervisor_id, is_active, notes, assigned_date, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $7)
            RETURNING {ASSIGNMENT_COLUMNS}
            """,
            pen_id,
            attendant_id,
            supervisor_id,
            True,
            notes,
            date.today(),
            now,
        )
        assignment = _row_to_assignment(row)
        await emit_event(
            tx,
            EventType.PEN_ASSIGNED,
            {"assignment_id": assignment.id, "attendant_id": attendant_id, "supervisor_id": supervisor_id},
            user_id=assigned_by,
            pen_id=pen_id,
        )
        return assignment

    assignment = await run_in_transaction(store, work, "assign_pen")
    logger.info(f"Assigned pen {pen_id} to attendant={attendant_id} supervisor={supervisor_id}")
    return assignment


async def deactivate_assignment(
    store: RegistryStore,
    assignment_id: int,
    deactivated_by: Optional[int] = None,
) -> PenAssignment:
    """Deactivate an assignment; access granted through it ends with the commit."""

    async def work(tx: Transaction) -> PenAssignment:
        row = await tx.fetchrow_for_update(
            f"SELECT {ASSIGNMENT_COLUMNS} FROM pen_assignments WHERE id = $1",
            assignment_id,
        )
        if row is None:
            raise AssignmentNotFound(assignment_id)
        assignment = _row_to_assignment(row)
        if not assignment.is_active:
            return assignment

        row = await tx.fetchrow(
            f"UPDATE pen_assignments SET is_active = $1, updated_at = $2 WHERE id = $3 RETURNING {ASSIGNMENT_COLUMNS}",
            False,
            utcnow(),
            assignment_id,
        )
        await emit_event(
            tx,
            EventType.PEN_ASSIGNMENT_DEACTIVATED,
            {"assignment_id": assignment_id},
            user_id=deactivated_by,
            pen_id=assignment.pen_id,
        )
        return _row_to_assignment(row)

    return await run_in_transaction(store, work, "deactivate_assignment")


async def list_assignments(store: RegistryStore, active_only: bool = True) -> List[PenAssignment]:
    where = "WHERE is_active" if active_only else ""

    async def work(tx: Transaction) -> List[PenAssignment]:
        rows = await tx.fetch(f"SELECT {ASSIGNMENT_COLUMNS} FROM pen_assignments {where} ORDER BY pen_id, id DESC")
        return [_row_to_assignment(row) for row in rows]

    return await run_in_transaction(store, work, "list_assignments", readonly=True)


async def assignments_for_user(store: RegistryStore, user_id: int) -> List[PenAssignment]:
    """Active assignments naming the user as attendant or supervisor."""

    async def work(tx: Transaction) -> List[PenAssignment]:
        rows = await tx.fetch(
            f"""
            SELECT {ASSIGNMENT_COLUMNS} FROM pen_assignments
            WHERE is_active AND (attendant_id = $1 OR supervisor_id = $1)
            ORDER BY pen_id
            """,
            user_id,
        )
        return [_row_to_assignment(row) for row in rows]

    return await run_in_transaction(store, work, "assignments_for_user", readonly=True)
