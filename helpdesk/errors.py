"""Centralized API error helpers and standard error schema.

Provides:
- api_error(...) -> HTTPException with JSON detail: {"error": {"code": str, "message": str, "details": ...}}
- make_validation_error_response(...) -> dict payload used by exception handler
- HelpdeskError and its subclasses, raised by the domain layer (access scope,
  key allocation, storage) and rendered with the same payload by
  `register_error_handlers`.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


def api_error(status_code: int, code: str, message: str, details: Optional[Any] = None, headers: Optional[dict] = None) -> HTTPException:
    payload: dict = {"error": {"code": code, "message": message}}
    if details is not None:
        payload["error"]["details"] = details
    return HTTPException(status_code=status_code, detail=payload, headers=headers)


def make_validation_error_response(errors: Any) -> dict:
    # Use FastAPI's jsonable_encoder to safely convert potential exception objects
    payload = {"error": {"code": "validation_error", "message": "Validation error", "details": errors}}
    return jsonable_encoder(payload)


class HelpdeskError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Any] = None):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict:
        payload: dict = {"error": {"code": self.code, "message": self.message}}
        if self.details is not None:
            payload["error"]["details"] = self.details
        return jsonable_encoder(payload)


class ValidationFailed(HelpdeskError):
    """Malformed or missing input; raised before any mutation."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls("Validation error", details=[{"loc": ["body", field], "msg": message, "type": "value_error"}])


class NotFound(HelpdeskError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Conflict(HelpdeskError):
    """Unique-constraint or lock-wait conflict. `retryable` marks lock timeouts."""

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Any] = None, retryable: bool = False):
        super().__init__(message, code=code, details=details)
        self.retryable = retryable


class Forbidden(HelpdeskError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class StorageFailure(HelpdeskError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "storage_unavailable"


def register_error_handlers(app: FastAPI) -> None:
    """Render HelpdeskError subclasses with the standard error payload."""

    @app.exception_handler(HelpdeskError)
    async def helpdesk_error_handler(request: Request, exc: HelpdeskError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.debug("%s on %s: %s", exc.code, request.url.path, exc.message)
        headers = {"Retry-After": "1"} if isinstance(exc, Conflict) and exc.retryable else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


__all__ = [
    "api_error",
    "make_validation_error_response",
    "HelpdeskError",
    "ValidationFailed",
    "NotFound",
    "Conflict",
    "Forbidden",
    "StorageFailure",
    "register_error_handlers",
]
