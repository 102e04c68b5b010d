from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crudforge.core.config import settings

_LOG = logging.getLogger("crudforge.errors")


class CrudForgeError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidFieldError(CrudForgeError):
    """A field was rejected by the allowlist of a strict query operation."""

    def __init__(self, field: str, operation: str, allowed_fields: Iterable[str], status_code: int = 400):
        self.field = field
        self.operation = str(operation)
        self.allowed_fields = tuple(allowed_fields)
        super().__init__(_field_error_message(self.field, self.operation, self.allowed_fields), status_code)


class InvalidParameterError(CrudForgeError):
    def __init__(self, parameter: str, expected_type: str, actual_value: Any, status_code: int = 400):
        self.parameter = parameter
        self.expected_type = expected_type
        self.actual_value = actual_value
        super().__init__(_parameter_error_message(parameter, expected_type, actual_value), status_code)


def _field_error_message(field: str, operation: str, allowed_fields: tuple[str, ...]) -> str:
    if "*" in allowed_fields:
        return (
            f"Field '{field}' is not allowed for {operation}. This API accepts any field due to wildcard (*) "
            f"configuration, but '{field}' may not exist on this model."
        )
    if not allowed_fields:
        return f"Field '{field}' is not allowed for {operation}. No fields are configured as allowed for this operation."
    return f"Field '{field}' is not allowed for {operation}. Allowed fields are: {', '.join(allowed_fields)}"


def _parameter_error_message(parameter: str, expected_type: str, actual_value: Any) -> str:
    actual_type = type(actual_value).__name__
    shown = f"'{actual_value}'" if isinstance(actual_value, str) else str(actual_value)
    return f"Invalid parameter '{parameter}'. Expected {expected_type}, but received {actual_type} {shown}."


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CrudForgeError)
    async def _crudforge_error_handler(request: Request, exc: CrudForgeError):
        request_id = getattr(request.state, "request_id", None)
        _LOG.info("%s %s rejected request_id=%s: %s", request.method, request.url.path, request_id, exc.message)
        body: dict[str, Any] = {"detail": exc.message}
        if request_id:
            body["request_id"] = request_id
        if settings.APP_DEBUG:
            body["exception"] = type(exc).__name__
        return JSONResponse(body, status_code=exc.status_code)
