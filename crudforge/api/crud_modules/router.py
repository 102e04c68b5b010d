from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from crudforge.db.session import get_db
from crudforge.resources.policy import ResourcePolicy
from crudforge.schemas.params import RequestParams

from .service import (
    destroy_service,
    force_delete_service,
    index_service,
    restore_service,
    show_service,
    store_service,
    update_service,
)


def build_resource_router(model: type, policy: ResourcePolicy) -> APIRouter:
    """CRUD routes for ``model`` limited to the operations its policy allows."""
    router = APIRouter(prefix=f"/{policy.resource_name}", tags=[policy.resource_name])
    name = policy.resource_name

    def _deps(operation: str) -> list[Any]:
        return [Depends(dependency) for dependency in policy.dependencies_for(operation)]

    if policy.allows_operation("index"):

        @router.get("", name=f"{name}.index", dependencies=_deps("index"))
        def index(request: Request, db: Session = Depends(get_db)):
            return index_service(model, policy, RequestParams.from_query_params(request.query_params), db)

    if policy.allows_operation("store"):

        @router.post("", name=f"{name}.store", status_code=201, dependencies=_deps("store"))
        def store(payload: dict[str, Any], db: Session = Depends(get_db)):
            return store_service(model, policy, payload, db)

    if policy.allows_operation("show"):

        @router.get("/{row_id}", name=f"{name}.show", dependencies=_deps("show"))
        def show(row_id: str, db: Session = Depends(get_db)):
            return show_service(model, policy, row_id, db)

    if policy.allows_operation("update"):

        @router.api_route("/{row_id}", methods=["PUT", "PATCH"], name=f"{name}.update", dependencies=_deps("update"))
        def update(row_id: str, payload: dict[str, Any], db: Session = Depends(get_db)):
            return update_service(model, policy, row_id, payload, db)

    if policy.allows_operation("destroy"):

        @router.delete("/{row_id}", name=f"{name}.destroy", status_code=204, dependencies=_deps("destroy"))
        def destroy(row_id: str, db: Session = Depends(get_db)):
            destroy_service(model, policy, row_id, db)
            return Response(status_code=204)

    if policy.allows_operation("restore"):

        @router.post("/{row_id}/restore", name=f"{name}.restore", dependencies=_deps("restore"))
        def restore(row_id: str, db: Session = Depends(get_db)):
            return restore_service(model, policy, row_id, db)

    if policy.allows_operation("force_delete"):

        @router.delete("/{row_id}/force", name=f"{name}.force_delete", status_code=204, dependencies=_deps("force_delete"))
        def force_delete(row_id: str, db: Session = Depends(get_db)):
            force_delete_service(model, policy, row_id, db)
            return Response(status_code=204)

    return router
