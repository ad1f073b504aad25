"""
Core module - configuration, database, messages and response formatting.
"""
from .config import Settings, get_settings
from .db import AsyncSessionLocal, Base, engine, get_session, get_session_factory
from .responses import (
    ApiError,
    BadRequest,
    Conflict,
    NotFound,
    api_error_handler,
    error_response,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "get_session",
    "get_session_factory",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Responses
    "ApiError",
    "BadRequest",
    "Conflict",
    "NotFound",
    "api_error_handler",
    "error_response",
]
