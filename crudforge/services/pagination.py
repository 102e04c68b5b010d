from __future__ import annotations

import base64
import binascii
import json
import logging
import math
from typing import Any, Iterable, Optional

from sqlalchemy import and_, false, func, or_, select
from sqlalchemy.orm import Session

from crudforge.core.config import settings
from crudforge.core.http_logging import current_request_id
from crudforge.db.schema import column_exists, columns_map, mapped_attribute, primary_key_name, table_name
from crudforge.resources.policy import PaginationType, ResourcePolicy
from crudforge.schemas.pagination import CursorPage, LengthAwarePage, PageResult, SimplePage
from crudforge.schemas.params import RequestParams
from crudforge.services.query_builder import QueryPlan
from crudforge.services.serialization import serialize_value
from crudforge.services.value_coercion import CoercionError, coerce_value

logger = logging.getLogger(__name__)

PAGE_PARAM = "page"
PER_PAGE_PARAM = "per_page"
CURSOR_PARAM = "cursor"
CURSOR_COLUMN_PARAM = "cursor_column"


def supported_types() -> dict[str, str]:
    return {item.value: item.description() for item in PaginationType}


def is_valid_pagination_type(value: str) -> bool:
    return value in PaginationType.values()


def resolve_per_page(policy: ResourcePolicy, params: RequestParams, max_per_page: Optional[int] = None) -> int:
    ceiling = max(1, max_per_page if max_per_page is not None else settings.MAX_PER_PAGE)
    requested = params.get_int(PER_PAGE_PARAM, policy.per_page)
    return min(max(1, requested), ceiling)


# Largest OFFSET a signed 64-bit database integer holds.
MAX_OFFSET = 2**63 - 1


def _current_page(params: RequestParams, per_page: int) -> int:
    page = max(1, params.get_int(PAGE_PARAM, 1))
    last_reachable = MAX_OFFSET // per_page
    if page > last_reachable:
        logger.debug("page_number_capped requested=%s page=%s request_id=%s", page, last_reachable, current_request_id())
        return last_reachable
    return page


def encode_cursor(values: dict[str, Any], *, forward: bool = True) -> str:
    payload = {"values": serialize_value(values), "next": forward}
    encoded = base64.urlsafe_b64encode(json.dumps(payload, sort_keys=True).encode("utf-8"))
    return encoded.decode("ascii")


def decode_cursor(token: Optional[str]) -> Optional[dict[str, Any]]:
    """Decoded cursor payload, or None for a missing or unreadable token."""
    if not token:
        return None
    try:
        padded = token + "=" * (-len(token) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        logger.debug("cursor_token_unreadable")
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("values"), dict):
        return None
    return payload


def paginate(
    db: Session,
    plan: QueryPlan,
    policy: ResourcePolicy,
    params: RequestParams,
    *,
    max_per_page: Optional[int] = None,
) -> PageResult:
    per_page = resolve_per_page(policy, params, max_per_page)
    if policy.pagination_type is PaginationType.SIMPLE:
        return simple_paginate(db, plan, per_page, _current_page(params, per_page))
    if policy.pagination_type is PaginationType.CURSOR:
        return cursor_paginate(db, plan, per_page, params, hidden=policy.hidden)
    return length_aware_paginate(db, plan, per_page, _current_page(params, per_page))


def length_aware_paginate(db: Session, plan: QueryPlan, per_page: int, page: int) -> LengthAwarePage:
    total = db.scalar(select(func.count()).select_from(plan.filtered_statement().subquery())) or 0
    items = db.scalars(plan.statement().offset((page - 1) * per_page).limit(per_page)).all()
    return LengthAwarePage(
        items=list(items),
        total=total,
        per_page=per_page,
        current_page=page,
        last_page=max(1, math.ceil(total / per_page)),
    )


def simple_paginate(db: Session, plan: QueryPlan, per_page: int, page: int) -> SimplePage:
    rows = db.scalars(plan.statement().offset((page - 1) * per_page).limit(per_page + 1)).all()
    return SimplePage(
        items=list(rows[:per_page]),
        per_page=per_page,
        current_page=page,
        has_more=len(rows) > per_page,
    )


def resolve_cursor_column(
    db: Session,
    plan: QueryPlan,
    params: RequestParams,
    hidden: Iterable[str] = (),
) -> str:
    """Requested ``cursor_column`` if the table really has it and it is not hidden, else the primary key."""
    default_column = primary_key_name(plan.model)
    requested = params.get_str(CURSOR_COLUMN_PARAM)
    if not requested or requested == default_column:
        return default_column
    if requested in set(hidden):
        logger.debug(
            "cursor_column_hidden requested=%s column=%s request_id=%s",
            requested,
            default_column,
            current_request_id(),
        )
        return default_column
    if not column_exists(db, table_name(plan.model), requested) or mapped_attribute(plan.model, requested) is None:
        logger.debug(
            "cursor_column_fallback requested=%s column=%s request_id=%s",
            requested,
            default_column,
            current_request_id(),
        )
        return default_column
    return requested


def prepare_cursor_ordering(plan: QueryPlan, cursor_column: str) -> None:
    plan.add_ordering(cursor_column, "asc")
    # Keyset pages need a unique tail.
    plan.add_ordering(primary_key_name(plan.model), "asc")
    if plan.columns:
        for item in plan.orderings:
            if item.column not in plan.columns:
                plan.columns.append(item.column)


def _decode_values(plan: QueryPlan, raw_values: dict[str, Any]) -> Optional[list[Any]]:
    columns = columns_map(plan.model)
    values = []
    for item in plan.orderings:
        if item.column not in raw_values or item.column not in columns:
            return None
        try:
            values.append(coerce_value(columns[item.column], raw_values[item.column]))
        except CoercionError:
            return None
    return values


def _cursor_order_by(plan: QueryPlan, forward: bool) -> list[Any]:
    """Keyset ordering: NULLs sort last walking forward, first walking back."""
    clauses = []
    for item in plan.orderings:
        attr = mapped_attribute(plan.model, item.column)
        ascending = (item.direction == "asc") == forward
        clause = attr.asc() if ascending else attr.desc()
        clauses.append(clause.nulls_last() if forward else clause.nulls_first())
    return clauses


def _past(attr, value: Any, ascending: bool, forward: bool):
    """Rows strictly beyond ``value`` on one column, None when there are none."""
    if value is None:
        # NULLs close the forward order, so only non-NULLs lie behind them.
        return None if forward else attr.is_not(None)
    beyond = attr > value if ascending else attr < value
    return or_(beyond, attr.is_(None)) if forward else beyond


def _same(attr, value: Any):
    return attr.is_(None) if value is None else attr == value


def _keyset_condition(plan: QueryPlan, values: list[Any], forward: bool):
    clauses = []
    for index, item in enumerate(plan.orderings):
        attr = mapped_attribute(plan.model, item.column)
        ascending = (item.direction == "asc") == forward
        step = _past(attr, values[index], ascending, forward)
        if step is None:
            continue
        leading = [
            _same(mapped_attribute(plan.model, prev.column), values[pos])
            for pos, prev in enumerate(plan.orderings[:index])
        ]
        clauses.append(and_(*leading, step))
    if not clauses:
        return false()
    return or_(*clauses)


def _cursor_for(plan: QueryPlan, row: Any, forward: bool) -> str:
    return encode_cursor({item.column: getattr(row, item.column) for item in plan.orderings}, forward=forward)


def cursor_paginate(
    db: Session,
    plan: QueryPlan,
    per_page: int,
    params: RequestParams,
    *,
    hidden: Iterable[str] = (),
) -> CursorPage:
    cursor_column = resolve_cursor_column(db, plan, params, hidden)
    prepare_cursor_ordering(plan, cursor_column)

    cursor = decode_cursor(params.get_str(CURSOR_PARAM))
    values = _decode_values(plan, cursor["values"]) if cursor else None
    forward = True if values is None else bool(cursor.get("next", True))

    stmt = plan.filtered_statement()
    if values is not None:
        stmt = stmt.where(_keyset_condition(plan, values, forward))
    stmt = stmt.order_by(*_cursor_order_by(plan, forward))
    options = plan.loader_options()
    if options:
        stmt = stmt.options(*options)

    rows = list(db.scalars(stmt.limit(per_page + 1)).all())
    has_more = len(rows) > per_page
    items = rows[:per_page]
    if not forward:
        items.reverse()

    next_cursor = None
    prev_cursor = None
    if items:
        if (forward and has_more) or not forward:
            next_cursor = _cursor_for(plan, items[-1], True)
        if (not forward and has_more) or (forward and values is not None):
            prev_cursor = _cursor_for(plan, items[0], False)
    return CursorPage(
        items=items,
        per_page=per_page,
        cursor_column=cursor_column,
        next_cursor=next_cursor,
        prev_cursor=prev_cursor,
    )
