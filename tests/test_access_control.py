import pytest

from conftest import ADMIN, make_pen
from livestock_registry.errors import AccessDenied
from livestock_registry.models import AnimalBody, Caller, Role, Species
from livestock_registry.services.access_control import (
    POLICY,
    Action,
    ResourceKind,
    Scope,
    check_access,
    require_access,
    scope_for,
)
from livestock_registry.services.admission import create_animal, transfer_animal
from livestock_registry.services.pens import assign_pen, deactivate_assignment

ATTENDANT = Caller(id=10, role=Role.FARM_ATTENDANT)
SUPERVISOR = Caller(id=20, role=Role.SUPERVISOR)


def test_role_labels():
    assert Role.parse("Admin User") is Role.ADMIN
    assert Role.parse("Farm Attendant") is Role.FARM_ATTENDANT
    with pytest.raises(ValueError):
        Role.parse("Owner")


def test_policy_is_a_closed_allowlist():
    for role in (Role.INVESTOR, Role.STAFF, Role.PASTURE_OFFICER, Role.FEED_PRODUCTION_OFFICER):
        assert not [key for key in POLICY if key[0] is role]
        with pytest.raises(AccessDenied):
            scope_for(Caller(id=1, role=role), ResourceKind.ANIMAL, Action.READ)
    assert scope_for(Caller(id=1, role=Role.VETERINARY_DOCTOR), ResourceKind.ANIMAL, Action.WRITE) is Scope.ALL
    with pytest.raises(AccessDenied):
        scope_for(ATTENDANT, ResourceKind.PEN, Action.MANAGE)


def test_attendant_scoped_to_active_assignment(open_store, run):
    async def scenario():
        async with open_store() as store:
            pen_x = await make_pen(store, name="X")
            pen_y = await make_pen(store, name="Y")
            in_x = await create_animal(store, AnimalBody(species=Species.CATTLE, pen_id=pen_x.id))
            in_y = await create_animal(store, AnimalBody(species=Species.CATTLE, pen_id=pen_y.id))
            unpenned = await create_animal(store, AnimalBody(species=Species.CATTLE))
            assignment = await assign_pen(store, pen_x.id, attendant_id=ATTENDANT.id)

            seen = {
                "x": await check_access(store, ATTENDANT, ResourceKind.ANIMAL, in_x.id, Action.WRITE),
                "y": await check_access(store, ATTENDANT, ResourceKind.ANIMAL, in_y.id, Action.READ),
                "unpenned": await check_access(store, ATTENDANT, ResourceKind.ANIMAL, unpenned.id, Action.READ),
                "missing": await check_access(store, ATTENDANT, ResourceKind.ANIMAL, 9999, Action.READ),
                "pen_x": await check_access(store, ATTENDANT, ResourceKind.PEN, pen_x.id, Action.READ),
            }

            # access follows the animal, not a cached decision
            await transfer_animal(store, in_y.id, pen_x.id)
            seen["moved_in"] = await check_access(store, ATTENDANT, ResourceKind.ANIMAL, in_y.id, Action.READ)

            await deactivate_assignment(store, assignment.id)
            seen["after_deactivation"] = await check_access(store, ATTENDANT, ResourceKind.ANIMAL, in_x.id, Action.READ)
            return seen

    seen = run(scenario())
    assert seen["x"].allowed and seen["x"].scope is Scope.ATTENDED_PENS
    assert seen["pen_x"].allowed
    assert seen["moved_in"].allowed
    for key in ("y", "unpenned", "missing", "after_deactivation"):
        assert not seen[key].allowed, key


def test_supervisor_uses_supervisor_column(open_store, run):
    async def scenario():
        async with open_store() as store:
            pen = await make_pen(store)
            await assign_pen(store, pen.id, attendant_id=SUPERVISOR.id)
            as_attendant_only = await check_access(store, SUPERVISOR, ResourceKind.PEN, pen.id, Action.ADMIT)
            await assign_pen(store, pen.id, supervisor_id=SUPERVISOR.id)
            as_supervisor = await check_access(store, SUPERVISOR, ResourceKind.PEN, pen.id, Action.ADMIT)
            return as_attendant_only, as_supervisor

    as_attendant_only, as_supervisor = run(scenario())
    assert not as_attendant_only.allowed
    assert as_supervisor.allowed


def test_require_access_hides_existence(open_store, run):
    async def scenario():
        async with open_store() as store:
            pen = await make_pen(store)
            errors = []
            for resource_id in (pen.id, 424242):
                with pytest.raises(AccessDenied) as excinfo:
                    await require_access(store, ATTENDANT, ResourceKind.PEN, resource_id, Action.READ)
                errors.append(str(excinfo.value))
            admin = await require_access(store, ADMIN, ResourceKind.PEN, 424242, Action.MANAGE)
            return errors, admin

    errors, admin = run(scenario())
    assert errors[0] == errors[1] == "Access denied"
    assert admin.allowed
