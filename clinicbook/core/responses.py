"""
Error response formatting.

Every failure a client sees has the same shape:

    {"error": "Human-readable, localized message"}

No structured error codes are exposed. Handlers raise ``ApiError`` for
expected failures (validation, not found, conflicts); the exception handler
registered in ``main`` renders it.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """An expected failure with an HTTP status and a user-facing message."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class BadRequest(ApiError):
    def __init__(self, message: str):
        super().__init__(400, message)


class NotFound(ApiError):
    def __init__(self, message: str):
        super().__init__(404, message)


class Conflict(ApiError):
    def __init__(self, message: str):
        super().__init__(409, message)


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.message, exc.status_code)
