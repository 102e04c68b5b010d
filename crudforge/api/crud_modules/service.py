from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crudforge.models.common import SoftDeleteMixin, utcnow
from crudforge.resources.policy import ResourcePolicy
from crudforge.schemas.params import RequestParams
from crudforge.services.pagination import paginate
from crudforge.services.query_builder import TrashedScope, build_query
from crudforge.services.serialization import row_to_dict

from .payloads import load_row_or_404, prepare_payload

logger = logging.getLogger(__name__)


def _integrity_error(db: Session, exc: IntegrityError) -> HTTPException:
    db.rollback()
    logger.info("crud_integrity_error: %s", exc.orig)
    return HTTPException(status_code=400, detail="Data constraint violation")


def _soft_deletes_disabled() -> HTTPException:
    return HTTPException(status_code=400, detail="Soft deletes are not enabled for this resource")


def _mark_trashed(row: Any, policy: ResourcePolicy, trashed: bool) -> None:
    if isinstance(row, SoftDeleteMixin) and policy.deleted_at_column == "deleted_at":
        if trashed:
            row.soft_delete()
        else:
            row.restore()
        return
    setattr(row, policy.deleted_at_column, utcnow() if trashed else None)


def index_service(model: type, policy: ResourcePolicy, params: RequestParams, db: Session) -> dict[str, Any]:
    plan = build_query(model, policy, params)

    def _serialize(row: Any) -> dict[str, Any]:
        return row_to_dict(row, hidden=policy.hidden, relations=plan.relations)

    if not policy.paginated:
        rows = db.scalars(plan.statement()).all()
        return {"data": [_serialize(row) for row in rows]}
    return paginate(db, plan, policy, params).to_payload(_serialize)


def show_service(model: type, policy: ResourcePolicy, row_id: str, db: Session) -> dict[str, Any]:
    row = load_row_or_404(db, model, policy, row_id)
    return row_to_dict(row, hidden=policy.hidden)


def store_service(model: type, policy: ResourcePolicy, payload: Any, db: Session) -> dict[str, Any]:
    data = prepare_payload(model, policy, "store", payload)
    row = model(**data)
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        raise _integrity_error(db, exc)
    db.refresh(row)
    return row_to_dict(row, hidden=policy.hidden)


def update_service(model: type, policy: ResourcePolicy, row_id: str, payload: Any, db: Session) -> dict[str, Any]:
    row = load_row_or_404(db, model, policy, row_id)
    data = prepare_payload(model, policy, "update", payload)
    for key, value in data.items():
        setattr(row, key, value)
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        raise _integrity_error(db, exc)
    db.refresh(row)
    return row_to_dict(row, hidden=policy.hidden)


def destroy_service(model: type, policy: ResourcePolicy, row_id: str, db: Session) -> None:
    row = load_row_or_404(db, model, policy, row_id, trashed=TrashedScope.EXCLUDE)
    if policy.soft_deletes:
        _mark_trashed(row, policy, True)
        db.add(row)
    else:
        db.delete(row)
    try:
        db.commit()
    except IntegrityError as exc:
        raise _integrity_error(db, exc)


def restore_service(model: type, policy: ResourcePolicy, row_id: str, db: Session) -> dict[str, Any]:
    if not policy.soft_deletes:
        raise _soft_deletes_disabled()
    row = load_row_or_404(db, model, policy, row_id, trashed=TrashedScope.ONLY)
    _mark_trashed(row, policy, False)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row_to_dict(row, hidden=policy.hidden)


def force_delete_service(model: type, policy: ResourcePolicy, row_id: str, db: Session) -> None:
    if not policy.soft_deletes:
        raise _soft_deletes_disabled()
    row = load_row_or_404(db, model, policy, row_id)
    db.delete(row)
    try:
        db.commit()
    except IntegrityError as exc:
        raise _integrity_error(db, exc)
