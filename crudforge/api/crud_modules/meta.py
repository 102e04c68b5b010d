from __future__ import annotations

import re
from typing import Any

from fastapi import APIRouter, Request
from fastapi.routing import APIRoute

from crudforge.db.schema import column_kind, columns_map, primary_key_name, table_name
from crudforge.resources.policy import ResourcePolicy

SCHEMA_PATH = "/__schema__"
_PATH_PARAM_RE = re.compile(r"\{([^}]+)\}")

router = APIRouter()


def _fields_payload(model: type, policy: ResourcePolicy) -> list[dict[str, Any]]:
    pk = primary_key_name(model)
    fields = []
    for name, column in columns_map(model).items():
        if name in policy.hidden:
            continue
        fields.append(
            {
                "name": name,
                "kind": column_kind(column),
                "nullable": bool(column.nullable),
                "primary_key": name == pk,
            }
        )
    return fields


def resource_meta_payload(model: type, policy: ResourcePolicy) -> dict[str, Any]:
    return {
        "name": model.__name__,
        "table": table_name(model),
        "path": f"/{policy.prefix}/{policy.resource_name}",
        "operations": list(policy.operations),
        "fields": _fields_payload(model, policy),
        "hidden": list(policy.hidden),
        "query": policy.query_features(),
        "pagination": {
            "enabled": policy.paginated,
            "type": policy.pagination_type.value,
            "per_page": policy.per_page,
        },
        "soft_deletes": policy.soft_deletes,
    }


def _routes_payload(request: Request) -> list[dict[str, Any]]:
    rows = []
    for route in request.app.routes:
        if not isinstance(route, APIRoute) or route.path == SCHEMA_PATH:
            continue
        for method in sorted(route.methods - {"HEAD"}):
            rows.append(
                {
                    "method": method,
                    "uri": route.path,
                    "name": route.name,
                    "parameters": [{"name": param, "required": True} for param in _PATH_PARAM_RE.findall(route.path)],
                }
            )
    return rows


@router.get(SCHEMA_PATH, include_in_schema=False)
def api_schema(request: Request):
    resources = getattr(request.app.state, "crud_resources", {}) or {}
    return {
        "routes": _routes_payload(request),
        "resources": [resource_meta_payload(model, policy) for model, policy in resources.items()],
    }
