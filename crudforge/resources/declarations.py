from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crudforge.resources.policy import ALL_OPERATIONS, PaginationType

DECLARATION_ATTR = "__api_resource__"


class ApiResource(BaseModel):
    """Options declared on a model class with :func:`api_resource`.

    ``None`` means "not set" so discovery can tell an explicit choice from a
    default (``prefix`` falls back to the configured API prefix, ``per_page``
    to the configured page size, ``soft_deletes`` to column detection,
    ``external_search`` to a ``search_keys`` classmethod on the model).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    prefix: Optional[str] = None
    name: Optional[str] = None
    only: tuple[str, ...] = ()
    except_: tuple[str, ...] = ()
    dependencies: tuple[Callable[..., Any], ...] = ()
    operation_dependencies: dict[str, tuple[Callable[..., Any], ...]] = Field(default_factory=dict)
    paginated: bool = True
    pagination_type: PaginationType = PaginationType.LENGTH_AWARE
    per_page: Optional[int] = None
    sortable: tuple[str, ...] = ()
    filterable: tuple[str, ...] = ()
    searchable: tuple[str, ...] = ()
    search_backend: Optional[Callable[[str], Any]] = None
    external_search: Optional[bool] = None
    soft_deletes: Optional[bool] = None
    validation: Any = None
    hidden: tuple[str, ...] = ()
    strict: bool = False

    @field_validator("only", "except_")
    @classmethod
    def _known_operations(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [op for op in value if op not in ALL_OPERATIONS]
        if unknown:
            raise ValueError(f"Unknown operations: {', '.join(unknown)}")
        return value

    @field_validator("pagination_type", mode="before")
    @classmethod
    def _pagination_type(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, PaginationType):
            return PaginationType.from_string(value)
        return value

    @property
    def soft_deletes_explicitly_set(self) -> bool:
        return self.soft_deletes is not None


def _as_tuple(value: Optional[Iterable[Any]]) -> tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def api_resource(
    *,
    prefix: Optional[str] = None,
    name: Optional[str] = None,
    only: Optional[Iterable[str]] = None,
    except_: Optional[Iterable[str]] = None,
    dependencies: Optional[Iterable[Callable[..., Any]]] = None,
    operation_dependencies: Optional[dict[str, Iterable[Callable[..., Any]]]] = None,
    paginated: bool = True,
    pagination_type: PaginationType | str = PaginationType.LENGTH_AWARE,
    per_page: Optional[int] = None,
    sortable: Optional[Iterable[str]] = None,
    filterable: Optional[Iterable[str]] = None,
    searchable: Optional[Iterable[str]] = None,
    search_backend: Optional[Callable[[str], Any]] = None,
    external_search: Optional[bool] = None,
    soft_deletes: Optional[bool] = None,
    validation: Any = None,
    hidden: Optional[Iterable[str]] = None,
    strict: bool = False,
):
    """Mark a mapped model class as an auto-generated REST resource.

    Example::

        @api_resource(sortable=["name", "price"], filterable=["status"], searchable=["name"])
        class Product(Base, UUIDMixin):
            __tablename__ = "products"
            ...
    """
    declaration = ApiResource(
        prefix=prefix,
        name=name,
        only=_as_tuple(only),
        except_=_as_tuple(except_),
        dependencies=_as_tuple(dependencies),
        operation_dependencies={op: _as_tuple(deps) for op, deps in (operation_dependencies or {}).items()},
        paginated=paginated,
        pagination_type=pagination_type,
        per_page=per_page,
        sortable=_as_tuple(sortable),
        filterable=_as_tuple(filterable),
        searchable=_as_tuple(searchable),
        search_backend=search_backend,
        external_search=external_search,
        soft_deletes=soft_deletes,
        validation=validation,
        hidden=_as_tuple(hidden),
        strict=strict,
    )

    def _decorate(cls: type) -> type:
        setattr(cls, DECLARATION_ATTR, declaration)
        return cls

    return _decorate


def declaration_for(model: type) -> Optional[ApiResource]:
    # Only the class itself, subclasses of a resource do not inherit exposure.
    value = model.__dict__.get(DECLARATION_ATTR)
    return value if isinstance(value, ApiResource) else None
