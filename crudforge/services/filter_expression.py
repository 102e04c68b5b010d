from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict


class FilterOperator(str, Enum):
    EQ = "eq"
    NOT = "not"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"

    @classmethod
    def parse(cls, value: str) -> "FilterOperator":
        """Exact, case-sensitive match; unknown operators degrade to equality."""
        try:
            return cls(value)
        except ValueError:
            return cls.EQ


class FilterExpression(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOperator = FilterOperator.EQ
    raw_value: Any

    def in_values(self) -> list[Any]:
        if isinstance(self.raw_value, (list, tuple)):
            return list(self.raw_value)
        if isinstance(self.raw_value, str):
            return self.raw_value.split(",")
        return [self.raw_value]

    def between_bounds(self) -> Optional[tuple[Any, Any]]:
        """Exactly two bounds, or None when the value has any other shape."""
        if isinstance(self.raw_value, (list, tuple)):
            values = list(self.raw_value)
        elif isinstance(self.raw_value, str):
            values = self.raw_value.split(",")
        else:
            return None
        if len(values) != 2:
            return None
        return values[0], values[1]

    def to_predicate(self, column: Any, coerce: Callable[[Any], Any] = lambda value: value):
        """Translate into a SQLAlchemy predicate on ``column``; None drops the filter."""
        op = self.operator
        if op is FilterOperator.IN:
            return column.in_([coerce(value) for value in self.in_values()])
        if op is FilterOperator.NOT_IN:
            return column.not_in([coerce(value) for value in self.in_values()])
        if op is FilterOperator.BETWEEN:
            bounds = self.between_bounds()
            if bounds is None:
                return None
            return column.between(coerce(bounds[0]), coerce(bounds[1]))
        value = coerce(self.raw_value)
        if op is FilterOperator.NOT:
            return column != value
        if op is FilterOperator.GT:
            return column > value
        if op is FilterOperator.GTE:
            return column >= value
        if op is FilterOperator.LT:
            return column < value
        if op is FilterOperator.LTE:
            return column <= value
        return column == value


def parse_filter(filter_key: str, raw_value: Any) -> Optional[FilterExpression]:
    """``price:gte`` -> field ``price``, operator ``gte``; no operator means ``eq``.

    A ``None`` value means "no filter" whatever the operator.
    """
    if raw_value is None:
        return None
    field, _, operator = str(filter_key).partition(":")
    return FilterExpression(
        field=field,
        operator=FilterOperator.parse(operator) if operator else FilterOperator.EQ,
        raw_value=raw_value,
    )
