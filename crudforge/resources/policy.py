from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

OPERATIONS = ("index", "show", "store", "update", "destroy")
SOFT_DELETE_OPERATIONS = ("restore", "force_delete")
ALL_OPERATIONS = OPERATIONS + SOFT_DELETE_OPERATIONS


class PaginationType(str, Enum):
    LENGTH_AWARE = "paginate"
    SIMPLE = "simplePaginate"
    CURSOR = "cursorPaginate"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]

    @classmethod
    def default(cls) -> "PaginationType":
        return cls.LENGTH_AWARE

    @classmethod
    def from_string(cls, value: str) -> "PaginationType":
        try:
            return cls(value)
        except ValueError:
            return cls.default()

    def description(self) -> str:
        return {
            PaginationType.LENGTH_AWARE: "Length-aware pagination with total count",
            PaginationType.SIMPLE: "Simple pagination without total count",
            PaginationType.CURSOR: "Cursor-based pagination for large datasets",
        }[self]


class NoRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"

    def rules_for(self, operation: str) -> Optional[type[BaseModel]]:
        return None


class UniformRules(BaseModel):
    """One payload schema shared by store and update."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["uniform"] = "uniform"
    schema_: type[BaseModel] = Field(alias="schema")

    def rules_for(self, operation: str) -> Optional[type[BaseModel]]:
        return self.schema_


class PerOperationRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["per_operation"] = "per_operation"
    schemas: dict[str, type[BaseModel]] = Field(default_factory=dict)

    def rules_for(self, operation: str) -> Optional[type[BaseModel]]:
        return self.schemas.get(operation)


ValidationRules = Union[NoRules, UniformRules, PerOperationRules]


def validation_rules(value: Any) -> ValidationRules:
    """Resolve the loose declaration forms into one of the rule variants.

    Accepts None, a pydantic model class, a ``{operation: model}`` mapping or
    an already resolved variant.
    """
    if value is None:
        return NoRules()
    if isinstance(value, (NoRules, UniformRules, PerOperationRules)):
        return value
    if isinstance(value, type) and issubclass(value, BaseModel):
        return UniformRules(schema=value)
    if isinstance(value, dict):
        return PerOperationRules(schemas=dict(value))
    raise TypeError(f"Unsupported validation declaration: {value!r}")


class ResourcePolicy(BaseModel):
    """Resolved, read-only API exposure of one model."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    prefix: str = "api"
    resource_name: str
    only: tuple[str, ...] = ()
    except_: tuple[str, ...] = ()
    paginated: bool = True
    pagination_type: PaginationType = PaginationType.LENGTH_AWARE
    per_page: int = 15
    sortable: tuple[str, ...] = ()
    filterable: tuple[str, ...] = ()
    searchable: tuple[str, ...] = ()
    # Called with the search term, returns matching primary keys.
    search_backend: Optional[Callable[[str], Any]] = None
    soft_deletes: bool = False
    deleted_at_column: str = "deleted_at"
    validation: ValidationRules = Field(default_factory=NoRules)
    dependencies: tuple[Callable[..., Any], ...] = ()
    operation_dependencies: dict[str, tuple[Callable[..., Any], ...]] = Field(default_factory=dict)
    hidden: tuple[str, ...] = ()
    strict: bool = False

    @property
    def operations(self) -> tuple[str, ...]:
        available = OPERATIONS + SOFT_DELETE_OPERATIONS if self.soft_deletes else OPERATIONS
        if self.only:
            return tuple(op for op in available if op in self.only)
        if self.except_:
            return tuple(op for op in available if op not in self.except_)
        return available

    def allows_operation(self, operation: str) -> bool:
        return operation in self.operations

    def dependencies_for(self, operation: str) -> list[Callable[..., Any]]:
        return [*self.dependencies, *self.operation_dependencies.get(operation, ())]

    def rules_for(self, operation: str) -> Optional[type[BaseModel]]:
        return self.validation.rules_for(operation)

    def with_soft_deletes(self, enabled: bool) -> "ResourcePolicy":
        return self.model_copy(update={"soft_deletes": enabled})

    def query_features(self) -> dict[str, Any]:
        return {
            "sortable": list(self.sortable),
            "filterable": list(self.filterable),
            "searchable": list(self.searchable),
            "search_backend": self.search_backend is not None,
        }
