import pytest

from conftest import make_pen
from livestock_registry.events import ALL_EVENT_TYPES, ANIMAL_EVENTS, PEN_EVENTS, EventType
from livestock_registry.services.event_emitter import emit_event, get_events_for_pen


def test_event_groups_cover_every_type():
    assert set(ALL_EVENT_TYPES) == set(EventType)
    assert not set(ANIMAL_EVENTS) & set(PEN_EVENTS)


def test_unknown_event_type_rejected(open_store, run):
    async def scenario():
        async with open_store() as store:
            pen = await make_pen(store)
            with pytest.raises(ValueError, match="Unknown event type"):
                async with store.transaction() as tx:
                    await emit_event(tx, "pen_painted", {}, pen_id=pen.id)
            return pen, await get_events_for_pen(store, pen.id)

    pen, events = run(scenario())
    assert [e.event_type for e in events] == ["pen_created"]


def test_event_needs_its_subject(open_store, run):
    async def scenario():
        async with open_store() as store:
            async with store.transaction() as tx:
                with pytest.raises(ValueError, match="animal_id"):
                    await emit_event(tx, EventType.DEATH_RECORDED, {})
                with pytest.raises(ValueError, match="pen_id"):
                    await emit_event(tx, "pen_updated", {"capacity": 3})
                return await emit_event(tx, "pen_created", {"name": "Loose"}, pen_id=99)

    assert run(scenario())
