from __future__ import annotations

import logging

from fastapi import FastAPI

from crudforge.api.crud_modules.router import build_resource_router
from crudforge.resources.policy import ResourcePolicy

logger = logging.getLogger(__name__)


def register_resources(app: FastAPI, resources: dict[type, ResourcePolicy]) -> None:
    registered = dict(getattr(app.state, "crud_resources", {}) or {})
    for model, policy in resources.items():
        app.include_router(build_resource_router(model, policy), prefix=f"/{policy.prefix}")
        registered[model] = policy
        logger.info(
            "resource_registered model=%s path=/%s/%s operations=%s",
            model.__name__,
            policy.prefix,
            policy.resource_name,
            ",".join(policy.operations),
        )
    app.state.crud_resources = registered
