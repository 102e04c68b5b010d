from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from crudforge.db.schema import columns_map, mapped_attribute, primary_key_name
from crudforge.resources.policy import ResourcePolicy
from crudforge.services.query_builder import TrashedScope
from crudforge.services.value_coercion import CoercionError, coerce_value

TIMESTAMP_FIELDS = {"created_at", "updated_at"}


def _system_fields(model: type, policy: ResourcePolicy) -> set[str]:
    fields = set(TIMESTAMP_FIELDS)
    fields.add(primary_key_name(model))
    if policy.soft_deletes:
        fields.add(policy.deleted_at_column)
    return fields


def _validate_with_rules(policy: ResourcePolicy, operation: str, payload: Any) -> Any:
    schema = policy.rules_for(operation)
    if schema is None:
        return payload
    try:
        validated = schema.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))
    return validated.model_dump(exclude_unset=operation == "update")


def _sanitize_payload(model: type, policy: ResourcePolicy, payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    columns = columns_map(model)
    system = _system_fields(model, policy)
    mutable_columns = {name for name in columns if name not in system}

    unknown_fields = sorted(set(payload.keys()) - mutable_columns)
    if unknown_fields:
        raise HTTPException(status_code=400, detail="Unknown fields: " + ", ".join(unknown_fields))

    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        column = columns[key]
        if value is None:
            if not column.nullable:
                raise HTTPException(status_code=400, detail=f'Field "{key}" cannot be null')
            cleaned[key] = None
            continue
        try:
            cleaned[key] = coerce_value(column, value)
        except CoercionError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    return cleaned


def prepare_payload(model: type, policy: ResourcePolicy, operation: str, payload: Any) -> dict[str, Any]:
    """Validate ``payload`` for store/update and reduce it to writable columns."""
    return _sanitize_payload(model, policy, _validate_with_rules(policy, operation, payload))


def _pk_value(model: type, row_id: str) -> Any:
    pk_name = primary_key_name(model)
    try:
        return coerce_value(columns_map(model)[pk_name], row_id)
    except CoercionError:
        # An id of the wrong type cannot match any row.
        raise HTTPException(status_code=404, detail="Record not found")


def load_row_or_404(
    db: Session,
    model: type,
    policy: ResourcePolicy,
    row_id: str,
    *,
    trashed: TrashedScope = TrashedScope.INCLUDE,
):
    pk_attr = mapped_attribute(model, primary_key_name(model))
    stmt = select(model).where(pk_attr == _pk_value(model, row_id))
    deleted_at = mapped_attribute(model, policy.deleted_at_column) if policy.soft_deletes else None
    if deleted_at is not None:
        if trashed is TrashedScope.ONLY:
            stmt = stmt.where(deleted_at.is_not(None))
        elif trashed is TrashedScope.EXCLUDE:
            stmt = stmt.where(deleted_at.is_(None))
    entity = db.scalars(stmt).first()
    if entity is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return entity
