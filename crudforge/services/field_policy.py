from __future__ import annotations

from enum import Enum
from typing import Iterable

from crudforge.core.errors import InvalidFieldError

WILDCARD = "*"


class FieldOperation(str, Enum):
    SORT = "sort"
    FILTER = "filter"
    SEARCH = "search"

    def __str__(self) -> str:
        return self.value


def is_wildcard(allowed: Iterable[str]) -> bool:
    return WILDCARD in tuple(allowed)


def is_field_allowed(field: str, allowed: Iterable[str]) -> bool:
    """Exact allowlist membership, or anything when the list holds ``*``.

    An empty allowlist disables the operation, so nothing is allowed.
    """
    allowed = tuple(allowed)
    if WILDCARD in allowed:
        return True
    return field in allowed


def ensure_field_allowed(field: str, operation: FieldOperation | str, allowed: Iterable[str]) -> None:
    allowed = tuple(allowed)
    if not is_field_allowed(field, allowed):
        raise InvalidFieldError(field, str(operation), allowed)
