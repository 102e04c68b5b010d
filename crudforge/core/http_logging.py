from __future__ import annotations

import logging
import re
from contextvars import ContextVar
from time import perf_counter
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-ID"
_ACCEPTED_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,128}")
_LOG = logging.getLogger("crudforge.http")

# Set per request by the middleware; read by error responses and query logs.
_request_id: ContextVar[Optional[str]] = ContextVar("crudforge_request_id", default=None)


def current_request_id() -> Optional[str]:
    return _request_id.get()


def accept_request_id(raw: Optional[str]) -> str:
    """Caller supplied id when it is a safe token, otherwise a fresh one."""
    candidate = (raw or "").strip()
    if candidate and _ACCEPTED_ID_RE.fullmatch(candidate):
        return candidate
    return uuid4().hex


def install_request_logging(app: FastAPI) -> None:
    """Tag every request with an id and log one line per resource call."""

    @app.middleware("http")
    async def _tag_request(request: Request, call_next):
        request_id = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        started_at = perf_counter()
        try:
            response = await call_next(request)
        finally:
            _request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        query = request.url.query
        _LOG.info(
            "crud_request request_id=%s method=%s path=%s query=%s status=%s elapsed_ms=%.1f",
            request_id,
            request.method,
            request.url.path,
            query or "-",
            response.status_code,
            (perf_counter() - started_at) * 1000.0,
        )
        return response
