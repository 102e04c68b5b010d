from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from sqlalchemy import inspect as sa_inspect


def serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    return value


def row_to_dict(row: Any, *, hidden: Iterable[str] = (), relations: Iterable[str] = ()) -> dict[str, Any]:
    """Loaded column values of ``row`` plus the requested relations, minus ``hidden``."""
    state = sa_inspect(row)
    mapper = state.mapper
    skip = set(hidden)
    unloaded = state.unloaded
    payload = {
        prop.key: serialize_value(getattr(row, prop.key))
        for prop in mapper.column_attrs
        if prop.key not in skip and prop.key not in unloaded
    }
    nested: dict[str, list[str]] = {}
    for path in relations:
        head, _, rest = path.partition(".")
        nested.setdefault(head, [])
        if rest:
            nested[head].append(rest)
    for name, children in nested.items():
        if name not in mapper.relationships or name in unloaded:
            continue
        value = getattr(row, name)
        if value is None:
            payload[name] = None
        elif isinstance(value, (list, tuple, set)):
            payload[name] = [row_to_dict(item, relations=children) for item in value]
        else:
            payload[name] = row_to_dict(value, relations=children)
    return payload
