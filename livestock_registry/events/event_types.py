"""
Registry Event Type Definitions

This module defines the audit event types written by the registry core.
Events are immutable records of business facts that have occurred.

Key principles:
- Events are immutable - they cannot be modified or deleted
- Events are written in the same transaction as the change they describe
- Events carry all data needed to understand what happened
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class EventType(str, Enum):
    """
    Audit event types for the livestock registry.

    Naming convention: {entity}_{action_past_tense}
    """

    # ==========================================================================
    # ANIMAL EVENTS
    # ==========================================================================

    ANIMAL_ADMITTED = "animal_admitted"
    ANIMAL_TRANSFERRED = "animal_transferred"
    HEALTH_STATUS_CHANGED = "health_status_changed"
    DEATH_RECORDED = "death_recorded"
    PARENTAGE_UPDATED = "parentage_updated"

    # Compensating event, the row is only marked deleted
    ANIMAL_REMOVED = "animal_removed"

    # ==========================================================================
    # PEN EVENTS
    # ==========================================================================

    PEN_CREATED = "pen_created"
    PEN_UPDATED = "pen_updated"
    PEN_DELETED = "pen_deleted"
    PEN_ASSIGNED = "pen_assigned"
    PEN_ASSIGNMENT_DEACTIVATED = "pen_assignment_deactivated"


ANIMAL_EVENTS: List[EventType] = [
    EventType.ANIMAL_ADMITTED,
    EventType.ANIMAL_TRANSFERRED,
    EventType.HEALTH_STATUS_CHANGED,
    EventType.DEATH_RECORDED,
    EventType.PARENTAGE_UPDATED,
    EventType.ANIMAL_REMOVED,
]

PEN_EVENTS: List[EventType] = [
    EventType.PEN_CREATED,
    EventType.PEN_UPDATED,
    EventType.PEN_DELETED,
    EventType.PEN_ASSIGNED,
    EventType.PEN_ASSIGNMENT_DEACTIVATED,
]

ALL_EVENT_TYPES: List[EventType] = ANIMAL_EVENTS + PEN_EVENTS


@dataclass
class EventPayload:
    """
    Base structure for event payloads.

    All events should include:
    - The data that changed
    - Previous value (for transitions)
    - New value
    """
    pass


@dataclass
class AnimalAdmittedPayload(EventPayload):
    """Payload for animal_admitted event"""
    tag: str
    species: str
    pen_id: Optional[int] = None
    dam_id: Optional[int] = None
    sire_id: Optional[int] = None
    tag_generated: bool = False


@dataclass
class AnimalTransferredPayload(EventPayload):
    """Payload for animal_transferred event"""
    from_pen_id: Optional[int]
    to_pen_id: Optional[int]


@dataclass
class HealthStatusChangedPayload(EventPayload):
    """Payload for health_status_changed event"""
    previous_status: str
    new_status: str
    notes: Optional[str] = None


@dataclass
class DeathRecordedPayload(EventPayload):
    """Payload for death_recorded event"""
    mortality_record_id: int
    cause_of_death: str
    date_of_death: str
    previous_health_status: Optional[str] = None


@dataclass
class ParentageUpdatedPayload(EventPayload):
    """Payload for parentage_updated event"""
    previous_dam_id: Optional[int]
    previous_sire_id: Optional[int]
    dam_id: Optional[int]
    sire_id: Optional[int]


@dataclass
class AnimalRemovedPayload(EventPayload):
    """Payload for animal_removed event (replaces DELETE)"""
    previous_status: str
    pen_id: Optional[int] = None
