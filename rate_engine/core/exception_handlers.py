"""Global exception handlers for consistent error responses.

- AppError subclasses map to 400 / 403 / 404
- Unexpected exceptions become a generic 500 with no internals leaked
- Every error body carries the request id
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rate_engine.core.errors import (
    AppError,
    AuthenticationAppError,
    NotFoundAppError,
    ValidationAppError,
)
from rate_engine.core.logging import get_request_id

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[AppError], int]] = [
    (ValidationAppError, 400),
    (AuthenticationAppError, 403),
    (NotFoundAppError, 404),
]


def status_for(exc: AppError) -> int:
    """HTTP status for a domain error; unknown subclasses are client errors."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a domain error as ``{"error": {code, message, request_id, details?}}``."""
    status_code = status_for(exc)

    logger.warning(
        "http.app_error",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "path": request.url.path,
        },
    )

    return JSONResponse(status_code=status_code, content={"error": exc.to_payload(get_request_id())})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Safety net for anything not handled elsewhere."""
    logger.error(
        "http.unhandled_exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on ``app``."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
