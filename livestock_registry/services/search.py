"""
Query Facade

Paginated, filtered animal listings. The count and the page are built from the
same filter clause and read in the same transaction, so ``total`` always
describes the rows being paged over.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .. import config
from ..errors import InvalidFilter
from ..models import Animal, Caller, SearchFilters, SearchResult
from ..store import RegistryStore, Transaction, run_in_transaction
from .access_control import Action, ResourceKind, Scope, assignment_subquery, scope_for
from .records import ANIMAL_COLUMNS, load_animal, row_to_animal

logger = logging.getLogger(__name__)


def _like_pattern(text: str) -> str:
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def build_filter_clause(filters: SearchFilters, scope: Optional[Scope] = None, caller_id: Optional[int] = None) -> Tuple[str, list]:
    """
    Generate WHERE clause and parameters for an animal listing.
    Returns: (where_clause, params)
    """
    conditions: List[str] = []
    params: List[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    if filters.status is not None:
        conditions.append(f"status = {bind(filters.status.value)}")
    else:
        conditions.append("status != 'deleted'")
    if filters.species is not None:
        conditions.append(f"species = {bind(filters.species.value)}")
    if filters.health_status is not None:
        conditions.append(f"health_status = {bind(filters.health_status.value)}")
    if filters.pen_id is not None:
        conditions.append(f"pen_id = {bind(filters.pen_id)}")
    if filters.free_text and filters.free_text.strip():
        p = bind(_like_pattern(filters.free_text.strip()))
        conditions.append(
            f"(LOWER(name) LIKE {p} ESCAPE '\\' OR LOWER(tag) LIKE {p} ESCAPE '\\'"
            f" OR LOWER(identification_number) LIKE {p} ESCAPE '\\')"
        )
    if scope is not None and scope is not Scope.ALL:
        params.append(caller_id)
        conditions.append(f"pen_id IN ({assignment_subquery(scope, len(params))})")

    return " AND ".join(conditions), params


def parse_filters(raw: Dict[str, Any]) -> SearchFilters:
    """Parse query-string style filters; unknown keys and bad values raise InvalidFilter."""
    cleaned = {key: value for key, value in raw.items() if value not in (None, "")}
    try:
        return SearchFilters.model_validate(cleaned)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'filters'}: {err['msg']}" for err in e.errors()
        )
        raise InvalidFilter(f"Invalid filter: {problems}") from e


async def search(
    store: RegistryStore,
    filters: Optional[SearchFilters] = None,
    page: int = 1,
    limit: Optional[int] = None,
    caller: Optional[Caller] = None,
) -> SearchResult:
    """
    List animals matching ``filters``, newest first.

    ``limit`` is clamped to SEARCH_MAX_LIMIT. When ``caller`` is given,
    pen-scoped roles only see animals in pens they are actively assigned to.

    Raises:
        InvalidFilter: page or limit below 1
        AccessDenied: the caller's role may not read animals
    """
    filters = filters or SearchFilters()
    if limit is None:
        limit = config.SEARCH_DEFAULT_LIMIT
    if page < 1:
        raise InvalidFilter("page must be 1 or greater")
    if limit < 1:
        raise InvalidFilter("limit must be 1 or greater")
    limit = min(limit, config.SEARCH_MAX_LIMIT)

    scope = scope_for(caller, ResourceKind.ANIMAL, Action.READ) if caller is not None else None
    where_clause, params = build_filter_clause(filters, scope, caller.id if caller else None)
    offset = (page - 1) * limit
    n = len(params)

    async def work(tx: Transaction) -> SearchResult:
        total = await tx.fetchval(f"SELECT COUNT(*) FROM animals WHERE {where_clause}", *params)
        rows = await tx.fetch(
            f"""
            SELECT {ANIMAL_COLUMNS} FROM animals
            WHERE {where_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ${n + 1} OFFSET ${n + 2}
            """,
            *params,
            limit,
            offset,
        )
        return SearchResult(
            items=[row_to_animal(row) for row in rows],
            total=int(total or 0),
            page=page,
            limit=limit,
        )

    result = await run_in_transaction(store, work, "search", readonly=True)
    logger.debug(f"Search {filters.model_dump(exclude_none=True)} page={page} -> {len(result.items)}/{result.total}")
    return result


async def get_animal(store: RegistryStore, animal_id: int) -> Animal:
    async def work(tx: Transaction) -> Animal:
        return await load_animal(tx, animal_id)

    return await run_in_transaction(store, work, "get_animal", readonly=True)
