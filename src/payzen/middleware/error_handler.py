"""Global error handlers: every failure is rendered as the standard envelope."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from payzen.config import Settings
from payzen.errors import PayZenError, UpstreamUnavailable
from payzen.responses import failure

logger = structlog.get_logger()


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})
    return details


def setup_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Register global exception handlers."""

    @app.exception_handler(PayZenError)
    async def payzen_error_handler(request: Request, exc: PayZenError) -> JSONResponse:
        """Render domain errors with their own status code."""
        headers = None
        if isinstance(exc, UpstreamUnavailable):
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(failure(exc.message, message=exc.hint, details=exc.details, data=exc.data)),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle routing and framework HTTP errors."""
        if exc.status_code == 404 and exc.detail == "Not Found":
            error = "Route not found"
        else:
            error = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=failure(error),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors as 400 with per-field details."""
        return JSONResponse(
            status_code=400,
            content=failure("Validation failed", details=_validation_details(exc)),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; the message is exposed only in debug."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=failure("Internal server error", message=str(exc) if settings.debug else None),
        )
