"""
Confluence — Exception Handlers

Every failure leaves the API in one envelope:
``{error, status_code, detail, request_id}`` plus handler-specific fields.
Bad bars name the offending index so callers can fix their payload.
"""

from __future__ import annotations

import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

import structlog

from confluence.exceptions import InvalidBar

log = structlog.get_logger(__name__)


def _error_response(request: Request, status_code: int, detail, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "status_code": status_code,
            "detail": detail,
            **extra,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


def _field_errors(exc: RequestValidationError) -> list[dict]:
    """Flatten pydantic errors to ``bars.3.high``-style field paths."""
    return [
        {
            "field": ".".join(str(loc) for loc in err.get("loc", [])),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(request, exc.status_code, exc.detail)

    @app.exception_handler(InvalidBar)
    async def invalid_bar_handler(request: Request, exc: InvalidBar):
        log.warning(
            "invalid_bar",
            path=request.url.path,
            index=exc.index,
            reason=exc.reason,
        )
        return _error_response(request, 422, exc.reason, index=exc.index)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = _field_errors(exc)
        log.warning("validation_error", path=request.url.path, errors=errors)
        return _error_response(request, 422, "Validation error", errors=errors)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # Engine bugs surface here; the payload stays generic.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        return _error_response(request, 500, "Internal server error")
