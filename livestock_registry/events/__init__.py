"""
Registry Events Module

Audit event types for the livestock registry. Events are immutable records of
business facts, written alongside the change they describe.
"""

from .event_types import (
    EventType,
    ANIMAL_EVENTS,
    PEN_EVENTS,
    ALL_EVENT_TYPES,
)

__all__ = [
    'EventType',
    'ANIMAL_EVENTS',
    'PEN_EVENTS',
    'ALL_EVENT_TYPES',
]
