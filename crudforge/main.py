from __future__ import annotations

from types import ModuleType
from typing import Iterable, Optional

from fastapi import FastAPI

from crudforge.api.crud_modules.meta import router as schema_router
from crudforge.api.router import register_resources
from crudforge.core.config import settings
from crudforge.core.errors import install_error_handlers
from crudforge.core.http_logging import install_request_logging
from crudforge.resources.discovery import discover_resources
from crudforge.resources.policy import ResourcePolicy


def create_app(
    resources: Optional[dict[type, ResourcePolicy]] = None,
    *,
    modules: Optional[Iterable[ModuleType | str]] = None,
) -> FastAPI:
    """Build the API application.

    Explicit ``resources`` win; otherwise models are discovered from
    ``modules`` (or ``CRUDFORGE_MODEL_MODULES``) when auto discovery is on.
    """
    app = FastAPI(title=settings.APP_NAME, version="0.1.0")
    install_request_logging(app)
    install_error_handlers(app)

    if resources is None and settings.AUTO_DISCOVER_ROUTES:
        resources = discover_resources(modules)
    register_resources(app, resources or {})

    if settings.SCHEMA_ENDPOINT_ENABLED:
        app.include_router(schema_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
