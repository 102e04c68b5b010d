from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Float, Integer, JSON, Numeric

logger = logging.getLogger(__name__)


def columns_map(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {column.key: column for column in mapper.columns}


def mapped_attribute(model: type, name: str) -> Any:
    """Return the instrumented column attribute for ``name`` or None."""
    mapper = sa_inspect(model)
    prop = mapper.column_attrs.get(name) if name else None
    if prop is None:
        return None
    return getattr(model, prop.key)


def primary_key_name(model: type) -> str:
    pk = sa_inspect(model).primary_key
    if len(pk) != 1:
        raise ValueError(f"{model.__name__} must have exactly one primary key column")
    mapper = sa_inspect(model)
    return mapper.get_property_by_column(pk[0]).key


def table_name(model: type) -> str:
    return sa_inspect(model).local_table.name


def column_python_type(column: Any):
    try:
        return column.type.python_type
    except Exception:
        return None


def column_kind(column: Any) -> str:
    col_type = column.type
    if isinstance(col_type, Boolean):
        return "boolean"
    if isinstance(col_type, (Integer, Numeric, Float)):
        return "number"
    if isinstance(col_type, DateTime):
        return "datetime"
    if isinstance(col_type, Date):
        return "date"
    if isinstance(col_type, JSON):
        return "json"
    if column_python_type(column) is uuid.UUID:
        return "uuid"
    return "text"


def column_exists(db: Session, table: str, column: str) -> bool:
    """Check the live database schema; any introspection failure counts as missing."""
    if not column:
        return False
    try:
        inspector = sa_inspect(db.get_bind())
        return any(item.get("name") == column for item in inspector.get_columns(table))
    except SQLAlchemyError:
        logger.warning("column_introspection_failed table=%s column=%s", table, column, exc_info=True)
        return False
