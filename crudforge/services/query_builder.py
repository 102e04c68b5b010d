from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy import false, or_, select
from sqlalchemy.orm import load_only, selectinload
from sqlalchemy.sql import Select

from crudforge.core.errors import InvalidFieldError, InvalidParameterError
from crudforge.core.http_logging import current_request_id
from crudforge.db.schema import columns_map, mapped_attribute, primary_key_name
from crudforge.resources.policy import ResourcePolicy
from crudforge.schemas.params import RequestParams
from crudforge.services.field_policy import FieldOperation, ensure_field_allowed, is_field_allowed
from crudforge.services.filter_expression import parse_filter
from crudforge.services.value_coercion import CoercionError, coerce_value

logger = logging.getLogger(__name__)

_RELATION_CHARS_RE = re.compile(r"[^a-zA-Z0-9_.]")
_FIELD_CHARS_RE = re.compile(r"[^a-zA-Z0-9_]")


class TrashedScope(str, Enum):
    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"


@dataclass(frozen=True)
class Ordering:
    column: str
    direction: str = "asc"


@dataclass
class QueryPlan:
    """Per-request query state; turned into a ``Select`` by :meth:`statement`."""

    model: type
    orderings: list[Ordering] = field(default_factory=list)
    predicates: list[Any] = field(default_factory=list)
    relations: list[str] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    trashed: Optional[TrashedScope] = None
    deleted_at_column: str = "deleted_at"

    def has_ordering(self, column: str) -> bool:
        return any(item.column == column for item in self.orderings)

    def add_ordering(self, column: str, direction: str = "asc") -> None:
        if not self.has_ordering(column):
            self.orderings.append(Ordering(column, direction))

    def scope_predicates(self) -> list[Any]:
        if self.trashed in (None, TrashedScope.INCLUDE):
            return []
        deleted_at = mapped_attribute(self.model, self.deleted_at_column)
        if deleted_at is None:
            return []
        if self.trashed is TrashedScope.ONLY:
            return [deleted_at.is_not(None)]
        return [deleted_at.is_(None)]

    def order_by_clauses(self) -> list[Any]:
        clauses = []
        for item in self.orderings:
            column = mapped_attribute(self.model, item.column)
            if column is None:
                continue
            clauses.append(column.desc() if item.direction == "desc" else column.asc())
        return clauses

    def loader_options(self) -> list[Any]:
        options = []
        if self.columns:
            attrs = [mapped_attribute(self.model, name) for name in self.columns]
            options.append(load_only(*[attr for attr in attrs if attr is not None]))
        for path in self.relations:
            option = _relation_loader(self.model, path)
            if option is not None:
                options.append(option)
        return options

    def filtered_statement(self) -> Select:
        """Model select with predicates and scope, without ordering."""
        stmt = select(self.model)
        conditions = [*self.predicates, *self.scope_predicates()]
        if conditions:
            stmt = stmt.where(*conditions)
        return stmt

    def statement(self) -> Select:
        stmt = self.filtered_statement()
        order_by = self.order_by_clauses()
        if order_by:
            stmt = stmt.order_by(*order_by)
        options = self.loader_options()
        if options:
            stmt = stmt.options(*options)
        return stmt


def _relation_loader(model: type, path: str):
    current = model
    option = None
    for name in path.split("."):
        relationships = current.__mapper__.relationships
        if not name or name not in relationships:
            return None
        attr = getattr(current, name)
        option = selectinload(attr) if option is None else option.selectinload(attr)
        current = relationships[name].mapper.class_
    return option


def _log_dropped(event: str, **details: Any) -> None:
    fields = " ".join(f"{key}={value}" for key, value in details.items())
    logger.debug("%s %s request_id=%s", event, fields, current_request_id())


def _normalize_direction(value: Any) -> str:
    direction = str(value or "").strip().lower()
    return direction if direction in {"asc", "desc"} else "asc"


def _check_field(field_name: str, operation: FieldOperation, allowed: tuple[str, ...], model: type, strict: bool) -> bool:
    if not is_field_allowed(field_name, allowed):
        if strict:
            ensure_field_allowed(field_name, operation, allowed)
        _log_dropped("query_field_dropped", operation=operation, field=field_name)
        return False
    if mapped_attribute(model, field_name) is None:
        # Wildcard lists accept names the model does not map.
        if strict:
            raise InvalidFieldError(field_name, str(operation), allowed)
        _log_dropped("query_field_unmapped", operation=operation, field=field_name)
        return False
    return True


def apply_sorting(plan: QueryPlan, policy: ResourcePolicy, params: RequestParams, strict: bool) -> None:
    sort_by = params.get_str("sort_by")
    if not sort_by or not policy.sortable:
        return
    if not _check_field(sort_by, FieldOperation.SORT, policy.sortable, plan.model, strict):
        return
    plan.add_ordering(sort_by, _normalize_direction(params.get("sort_direction", "asc")))


def apply_filtering(plan: QueryPlan, policy: ResourcePolicy, params: RequestParams, strict: bool) -> None:
    columns = columns_map(plan.model)
    for filter_key, raw_value in params.get_map("filter").items():
        expression = parse_filter(filter_key, raw_value)
        if expression is None:
            continue
        if not _check_field(expression.field, FieldOperation.FILTER, policy.filterable, plan.model, strict):
            continue
        column = columns.get(expression.field)
        attr = mapped_attribute(plan.model, expression.field)
        try:
            predicate = expression.to_predicate(attr, lambda value: coerce_value(column, value))
        except CoercionError as exc:
            if strict:
                raise InvalidParameterError(f"filter[{filter_key}]", exc.kind, exc.value) from exc
            _log_dropped("query_filter_value_dropped", key=filter_key, kind=exc.kind)
            continue
        if predicate is None:
            _log_dropped("query_filter_shape_dropped", key=filter_key)
            continue
        plan.predicates.append(predicate)


def _backend_search_predicate(plan: QueryPlan, policy: ResourcePolicy, search: str):
    """Restrict to the keys the search backend returns; no keys or a failing backend match nothing."""
    try:
        keys = list(policy.search_backend(search) or ())
    except Exception:
        logger.warning(
            "search_backend_failed model=%s request_id=%s",
            plan.model.__name__,
            current_request_id(),
            exc_info=True,
        )
        return false()
    if not keys:
        return false()
    pk = mapped_attribute(plan.model, primary_key_name(plan.model))
    column = columns_map(plan.model)[primary_key_name(plan.model)]
    try:
        keys = [coerce_value(column, key) for key in keys]
    except CoercionError:
        logger.warning("search_backend_bad_keys model=%s request_id=%s", plan.model.__name__, current_request_id())
        return false()
    return pk.in_(keys)


def apply_searching(plan: QueryPlan, policy: ResourcePolicy, params: RequestParams) -> None:
    search = params.get_str("search")
    if not search or not policy.searchable:
        return
    if policy.search_backend is not None:
        plan.predicates.append(_backend_search_predicate(plan, policy, search))
        return
    conditions = []
    for name in policy.searchable:
        attr = mapped_attribute(plan.model, name)
        if attr is None:
            continue
        conditions.append(attr.ilike(f"%{search}%"))
    if conditions:
        plan.predicates.append(or_(*conditions))


def apply_soft_deletes(plan: QueryPlan, policy: ResourcePolicy, params: RequestParams) -> None:
    if not policy.soft_deletes:
        return
    plan.deleted_at_column = policy.deleted_at_column
    if params.get_bool("only_trashed"):
        plan.trashed = TrashedScope.ONLY
    elif params.get_bool("include_trashed"):
        plan.trashed = TrashedScope.INCLUDE
    else:
        plan.trashed = TrashedScope.EXCLUDE


def apply_relations(plan: QueryPlan, params: RequestParams) -> None:
    for raw in params.get_list("with"):
        name = _RELATION_CHARS_RE.sub("", str(raw))
        if not name or name in plan.relations:
            continue
        if _relation_loader(plan.model, name) is None:
            _log_dropped("query_relation_dropped", relation=name)
            continue
        plan.relations.append(name)


def apply_field_selection(plan: QueryPlan, policy: ResourcePolicy, params: RequestParams) -> None:
    requested = params.get_list("fields")
    if not requested:
        return
    known = columns_map(plan.model)
    selected: list[str] = []
    for raw in requested:
        name = _FIELD_CHARS_RE.sub("", str(raw))
        if not name or name in selected:
            continue
        if name not in known or name in policy.hidden:
            _log_dropped("query_field_selection_dropped", field=name)
            continue
        selected.append(name)
    pk = primary_key_name(plan.model)
    if pk not in selected:
        selected.insert(0, pk)
    plan.columns = selected


def build_query(
    model: type,
    policy: ResourcePolicy,
    params: RequestParams,
    *,
    strict: Optional[bool] = None,
) -> QueryPlan:
    """Compose sort, filter, search, trashed scope, relations and field selection.

    Disallowed or malformed directives are dropped unless ``strict`` (or
    ``policy.strict``) asks for :class:`InvalidFieldError` instead.
    """
    strict = policy.strict if strict is None else strict
    plan = QueryPlan(model=model)
    apply_sorting(plan, policy, params, strict)
    apply_filtering(plan, policy, params, strict)
    apply_searching(plan, policy, params)
    apply_soft_deletes(plan, policy, params)
    apply_relations(plan, params)
    apply_field_selection(plan, policy, params)
    return plan
