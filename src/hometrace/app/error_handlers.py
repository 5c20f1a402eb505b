"""Render every error as ``{"error": {"code", "message", "details"?}}``."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from hometrace.domain.errors import DuplicateError, HomeTraceError, InternalError, ValidationError

logger = logging.getLogger(__name__)


async def hometrace_error_handler(request: Request, exc: HomeTraceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Collapse FastAPI's validation errors into ``{field: [messages]}``."""
    fields: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        fields.setdefault(".".join(loc) or "body", []).append(error.get("msg", "Invalid value"))

    logger.warning("Validation error for %s: %s", request.url.path, fields)
    err = ValidationError("Request validation failed", fields)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def integrity_error_handler(request: Request, exc: IntegrityError):
    # A unique constraint lost a race the service-level check could not see
    logger.warning("Integrity error for %s: %s", request.url.path, exc.orig)
    err = DuplicateError("Resource already exists")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error for %s %s", request.method, request.url.path)
    err = InternalError()
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HomeTraceError, hometrace_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
