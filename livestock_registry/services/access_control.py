"""
Access Scoping Authority

Decides whether a caller may act on an animal or pen. The policy is a closed
allowlist: a (role, resource kind, action) triple missing from POLICY is
denied. Pen-scoped grants are resolved against the caller's *active* pen
assignments, queried fresh on every check so a transfer or a deactivated
assignment takes effect on the next request.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..errors import AccessDenied
from ..models import Caller, Role
from ..store import RegistryStore, Transaction, run_in_transaction

logger = logging.getLogger(__name__)

DENIED_MESSAGE = "Access denied"


class ResourceKind(str, Enum):
    ANIMAL = "animal"
    PEN = "pen"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    ADMIT = "admit"  # place an animal into a pen
    MANAGE = "manage"  # create/update/delete pens and assignments


class Scope(str, Enum):
    ALL = "all"
    ATTENDED_PENS = "attended_pens"
    SUPERVISED_PENS = "supervised_pens"


# Assignment column that links a pen-scoped caller to a pen
SCOPE_COLUMNS = {
    Scope.ATTENDED_PENS: "attendant_id",
    Scope.SUPERVISED_PENS: "supervisor_id",
}


def _grant(role: Role, scope: Scope, *rules: Tuple[ResourceKind, Action]) -> Dict[Tuple[Role, ResourceKind, Action], Scope]:
    return {(role, kind, action): scope for kind, action in rules}


_EVERYTHING = [(kind, action) for kind in ResourceKind for action in Action]

POLICY: Dict[Tuple[Role, ResourceKind, Action], Scope] = {
    **_grant(Role.ADMIN, Scope.ALL, *_EVERYTHING),
    **_grant(Role.FARM_MANAGER, Scope.ALL, *_EVERYTHING),
    **_grant(
        Role.VETERINARY_DOCTOR,
        Scope.ALL,
        (ResourceKind.ANIMAL, Action.READ),
        (ResourceKind.ANIMAL, Action.WRITE),
        (ResourceKind.PEN, Action.READ),
    ),
    **_grant(
        Role.SUPERVISOR,
        Scope.SUPERVISED_PENS,
        (ResourceKind.ANIMAL, Action.READ),
        (ResourceKind.ANIMAL, Action.WRITE),
        (ResourceKind.PEN, Action.READ),
        (ResourceKind.PEN, Action.ADMIT),
    ),
    **_grant(
        Role.FARM_ATTENDANT,
        Scope.ATTENDED_PENS,
        (ResourceKind.ANIMAL, Action.READ),
        (ResourceKind.ANIMAL, Action.WRITE),
        (ResourceKind.PEN, Action.READ),
    ),
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    scope: Optional[Scope] = None
    reason: str = ""


def scope_for(caller: Caller, kind: ResourceKind, action: Action) -> Scope:
    """Scope granted to the caller's role, or AccessDenied when the policy has no rule."""
    scope = POLICY.get((caller.role, ResourceKind(kind), Action(action)))
    if scope is None:
        logger.warning(f"Denied {caller.role.value} {caller.id}: no {action} rule for {kind}")
        raise AccessDenied(DENIED_MESSAGE)
    return scope


def assignment_subquery(scope: Scope, param: int) -> str:
    """SQL selecting the pen ids a pen-scoped caller (bound at ``$param``) is actively assigned to."""
    column = SCOPE_COLUMNS[scope]
    return f"SELECT pen_id FROM pen_assignments WHERE is_active AND {column} = ${param}"


async def _pen_of(tx: Transaction, kind: ResourceKind, resource_id: int) -> Optional[int]:
    if kind is ResourceKind.PEN:
        return resource_id
    return await tx.fetchval(
        "SELECT pen_id FROM animals WHERE id = $1 AND status != 'deleted'",
        resource_id,
    )


async def check_access(
    store: RegistryStore,
    caller: Caller,
    kind: ResourceKind,
    resource_id: Optional[int],
    action: Action,
) -> AccessDecision:
    """
    Decide whether ``caller`` may perform ``action`` on one resource.

    Pen-scoped callers are allowed only when the resource's current pen has an
    active assignment naming them. Unpenned animals, unassigned pens and
    resources that do not exist all get the same denial.
    """
    kind = ResourceKind(kind)
    action = Action(action)
    scope = POLICY.get((caller.role, kind, action))
    if scope is None:
        decision = AccessDecision(False, None, "no rule for role")
    elif scope is Scope.ALL:
        return AccessDecision(True, scope, "role grants all records")
    elif resource_id is None:
        decision = AccessDecision(False, scope, "no pen to scope against")
    else:
        column = SCOPE_COLUMNS[scope]

        async def work(tx: Transaction) -> bool:
            pen_id = await _pen_of(tx, kind, resource_id)
            if pen_id is None:
                return False
            found = await tx.fetchval(
                f"SELECT 1 FROM pen_assignments WHERE pen_id = $1 AND {column} = $2 AND is_active",
                pen_id,
                caller.id,
            )
            return bool(found)

        if await run_in_transaction(store, work, "check_access", readonly=True):
            return AccessDecision(True, scope, "active pen assignment")
        decision = AccessDecision(False, scope, "no active pen assignment")

    logger.warning(
        f"Denied {caller.role.value} {caller.id} {action.value} on {kind.value} {resource_id}: {decision.reason}"
    )
    return decision


async def require_access(
    store: RegistryStore,
    caller: Caller,
    kind: ResourceKind,
    resource_id: Optional[int],
    action: Action,
) -> AccessDecision:
    decision = await check_access(store, caller, kind, resource_id, action)
    if not decision.allowed:
        raise AccessDenied(DENIED_MESSAGE)
    return decision
