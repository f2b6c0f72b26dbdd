"""Exception handlers for the mailview FastAPI application.

Engine outcomes are never errors here: a refused or failed archive is an
HTTP 200 whose body carries the failure outcome. These handlers cover the
cases where a request cannot reach the engine at all.
"""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from models.mailbox import FolderNotOpenError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: str, detail: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": detail, **extra},
    )


async def folder_not_open_handler(request: Request, exc: FolderNotOpenError):
    """Answer 409 when a route needs an open folder and none is open.

    Args:
        request: The incoming request.
        exc: The raised FolderNotOpenError.

    Returns:
        JSONResponse pointing the client at ``POST /mailbox/open``.
    """
    return _error_response(
        status.HTTP_409_CONFLICT,
        "Folder Not Open",
        exc.message,
        suggestion="Open a folder with POST /mailbox/open",
    )


async def validation_exception_handler(request: Request, exc: ValidationError):
    """Answer 422 for model validation errors raised inside a route."""
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        "The request data failed validation",
        validation_errors=exc.errors(include_url=False),
    )


async def value_error_handler(request: Request, exc: ValueError):
    """Answer 400 for invalid values, such as an unknown selection mode."""
    return _error_response(
        status.HTTP_400_BAD_REQUEST, "Invalid Value", str(exc), type="ValueError"
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Answer 500 for anything else; the traceback goes to the log only.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse naming the exception type.
    """
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "An unexpected error occurred",
        type=type(exc).__name__,
    )
