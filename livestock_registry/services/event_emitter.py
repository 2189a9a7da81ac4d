"""
Event Emitter Service

This module writes the registry's audit trail.

Key principles:
- Events are INSERT-only (immutable)
- Each event has a unique UUID for idempotency
- Events are written with the caller's open transaction, so an operation
  that rolls back leaves no event behind
"""

import json
import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..events.event_types import ALL_EVENT_TYPES, ANIMAL_EVENTS, PEN_EVENTS, EventPayload, EventType
from ..models import RegistryEvent
from ..store import RegistryStore, Transaction, run_in_transaction, utcnow

logger = logging.getLogger(__name__)


async def emit_event(
    tx: Transaction,
    event_type: Union[EventType, str],
    payload: Union[EventPayload, Dict[str, Any]],
    user_id: Optional[int] = None,
    animal_id: Optional[int] = None,
    pen_id: Optional[int] = None,
    event_time: Optional[datetime] = None,
) -> str:
    """
    Record an immutable audit event inside an open transaction.

    Args:
        tx: The transaction carrying the change being recorded
        event_type: The type of event (from EventType enum or string)
        payload: Event data, a payload dataclass or a dict (JSON serialized)
        user_id: The staff user who triggered this event
        animal_id: The animal this event relates to, if any
        pen_id: The pen this event relates to, if any
        event_time: Business time of the event (defaults to now)

    Returns:
        The UUID of the created event

    Raises:
        ValueError: unknown event type, or an animal/pen event without the
            id of the animal/pen it is about
    """
    if event_type not in ALL_EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type!r}")
    event_type = EventType(event_type)
    if event_type in ANIMAL_EVENTS and animal_id is None:
        raise ValueError(f"{event_type.value} events need an animal_id")
    if event_type in PEN_EVENTS and pen_id is None:
        raise ValueError(f"{event_type.value} events need a pen_id")

    event_type_str = event_type.value
    event_id = str(uuid.uuid4())
    data = asdict(payload) if is_dataclass(payload) else dict(payload)

    await tx.execute(
        """
        INSERT INTO registry_events (event_id, event_type, animal_id, pen_id, user_id, payload, event_time)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        """,
        event_id,
        event_type_str,
        animal_id,
        pen_id,
        user_id,
        json.dumps(data, default=str),
        event_time or utcnow(),
    )
    logger.debug(f"Recorded event {event_type_str} ({event_id}) animal={animal_id} pen={pen_id}")
    return event_id


def _row_to_event(row) -> RegistryEvent:
    record = dict(row)
    record["payload"] = json.loads(record.get("payload") or "{}")
    return RegistryEvent.model_validate(record)


async def get_events_for_animal(store: RegistryStore, animal_id: int, limit: int = 100) -> List[RegistryEvent]:
    """Audit trail of one animal, newest first."""

    async def work(tx: Transaction) -> List[RegistryEvent]:
        rows = await tx.fetch(
            """
            SELECT id, event_id, event_type, animal_id, pen_id, user_id, payload, event_time
            FROM registry_events
            WHERE animal_id = $1
            ORDER BY id DESC
            LIMIT $2
            """,
            animal_id,
            limit,
        )
        return [_row_to_event(row) for row in rows]

    return await run_in_transaction(store, work, "get_events_for_animal", readonly=True)


async def get_events_for_pen(store: RegistryStore, pen_id: int, limit: int = 100) -> List[RegistryEvent]:
    """Audit trail of one pen (admissions, transfers, assignments), newest first."""

    async def work(tx: Transaction) -> List[RegistryEvent]:
        rows = await tx.fetch(
            """
            SELECT id, event_id, event_type, animal_id, pen_id, user_id, payload, event_time
            FROM registry_events
            WHERE pen_id = $1
            ORDER BY id DESC
            LIMIT $2
            """,
            pen_id,
            limit,
        )
        return [_row_to_event(row) for row in rows]

    return await run_in_transaction(store, work, "get_events_for_pen", readonly=True)
