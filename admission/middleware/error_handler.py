"""Exception handlers producing ``{error, message, path}`` bodies."""

from typing import Any

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from admission.core.exceptions import AppException, NonexistentLocalTimeError

logger = structlog.get_logger(__name__)


def error_body(request: Request, error: str, message: Any, **extra: Any) -> dict[str, Any]:
    """Build the common error payload."""
    return {"error": error, "message": message, **extra, "path": str(request.url)}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle application exceptions with their own status code.

    Args:
        request: Request object
        exc: Application exception

    Returns:
        JSON error response
    """
    if exc.status_code >= 500:
        logger.error("application_error", error=exc.__class__.__name__, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.__class__.__name__, exc.message),
    )


async def nonexistent_local_time_handler(
    request: Request,
    exc: NonexistentLocalTimeError,
) -> JSONResponse:
    """Reject clinic-local times that fall in a daylight-saving gap."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(request, "NonexistentLocalTime", str(exc)),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions raised by FastAPI and dependencies."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, "HTTPException", exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle request validation errors.

    Returns:
        JSON error response with validation details
    """
    # ctx may hold exception instances, which are not JSON serializable
    details = [
        {key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            request,
            "ValidationError",
            "Request validation failed",
            details=details,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unhandled_exception", error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(request, "InternalServerError", "An unexpected error occurred"),
    )
