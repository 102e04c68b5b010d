from __future__ import annotations

import importlib
import logging
import pkgutil
from types import ModuleType
from typing import Any, Callable, Iterable, Optional

from crudforge.core.config import settings
from crudforge.db.schema import columns_map
from crudforge.db.session import Base
from crudforge.resources.declarations import ApiResource, declaration_for
from crudforge.resources.policy import ResourcePolicy, validation_rules

logger = logging.getLogger(__name__)

SEARCH_KEYS_ATTR = "search_keys"


def _kebab_case(name: str) -> str:
    raw = (name or "").strip().replace("_", "-")
    chars: list[str] = []
    for index, ch in enumerate(raw):
        if ch.isupper() and index > 0 and raw[index - 1].isalnum() and raw[index - 1] != "-":
            chars.append("-")
        chars.append(ch.lower())
    return "".join(chars)


def _pluralize(word: str) -> str:
    if not word:
        return word
    lower = word.lower()
    if lower.endswith("y") and len(word) > 1 and lower[-2] not in "aeiou":
        return word[:-1] + "ies"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def resource_name_for(model: type, declaration: ApiResource) -> str:
    if declaration.name:
        return declaration.name.strip("/")
    parts = _kebab_case(model.__name__).split("-")
    parts[-1] = _pluralize(parts[-1])
    return "-".join(parts)


def normalize_prefix(prefix: Optional[str], default_prefix: Optional[str] = None) -> str:
    """``v1`` and ``/v1`` become ``api/v1``; prefixes already rooted at ``api`` are kept."""
    base = (default_prefix or settings.DEFAULT_API_PREFIX).strip("/")
    value = (prefix or "").strip().strip("/")
    if not value or value == base:
        return base
    if value.startswith(base + "/"):
        return value
    return f"{base}/{value}"


def _uses_soft_deletes(model: type, column: str = "deleted_at") -> bool:
    return column in columns_map(model)


def _search_backend(model: type, declaration: ApiResource) -> Optional[Callable[[str], Any]]:
    """Explicit backend, else the model's ``search_keys`` unless external search is switched off."""
    if declaration.external_search is False:
        return None
    if declaration.search_backend is not None:
        return declaration.search_backend
    backend = getattr(model, SEARCH_KEYS_ATTR, None)
    if callable(backend):
        return backend
    if declaration.external_search:
        raise ValueError(f"{model.__name__} enables external search but has no {SEARCH_KEYS_ATTR}()")
    return None


def resolve_policy(model: type, declaration: ApiResource) -> ResourcePolicy:
    if declaration.soft_deletes_explicitly_set:
        soft_deletes = bool(declaration.soft_deletes)
    else:
        soft_deletes = _uses_soft_deletes(model)
    policy = ResourcePolicy(
        prefix=normalize_prefix(declaration.prefix),
        resource_name=resource_name_for(model, declaration),
        only=declaration.only,
        except_=declaration.except_,
        paginated=declaration.paginated,
        pagination_type=declaration.pagination_type,
        per_page=declaration.per_page or settings.DEFAULT_PER_PAGE,
        sortable=declaration.sortable,
        filterable=declaration.filterable,
        searchable=declaration.searchable,
        search_backend=_search_backend(model, declaration),
        validation=validation_rules(declaration.validation),
        dependencies=declaration.dependencies,
        operation_dependencies=declaration.operation_dependencies,
        hidden=declaration.hidden,
        strict=declaration.strict,
    )
    if soft_deletes:
        policy = policy.with_soft_deletes(True)
    return policy


def _import_recursive(module: ModuleType | str) -> list[ModuleType]:
    root = importlib.import_module(module) if isinstance(module, str) else module
    found = [root]
    path = getattr(root, "__path__", None)
    if path is None:
        return found
    for info in pkgutil.iter_modules(path):
        if info.name.startswith("_"):
            continue
        found.extend(_import_recursive(f"{root.__name__}.{info.name}"))
    return found


def discover_resources(
    modules: Iterable[ModuleType | str] | None = None,
    *,
    base: type = Base,
) -> dict[type, ResourcePolicy]:
    """Import model modules and resolve every ``@api_resource`` class found on ``base``."""
    scanned: set[str] = set()
    for module in modules if modules is not None else settings.model_modules_list:
        scanned.update(m.__name__ for m in _import_recursive(module))

    resources: dict[type, ResourcePolicy] = {}
    for mapper in base.registry.mappers:
        model = mapper.class_
        if scanned and model.__module__ not in scanned:
            continue
        declaration = declaration_for(model)
        if declaration is None:
            continue
        policy = resolve_policy(model, declaration)
        resources[model] = policy
        logger.debug(
            "resource_discovered model=%s path=/%s/%s operations=%s",
            model.__name__,
            policy.prefix,
            policy.resource_name,
            ",".join(policy.operations),
        )
    return dict(sorted(resources.items(), key=lambda item: (item[1].prefix, item[1].resource_name)))
