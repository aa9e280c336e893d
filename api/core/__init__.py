"""Core utilities for the users API.

This module exports commonly used utilities for easy importing:
    from core import get_logger, RequestContext, NotFoundError
"""

from core.context import RequestContext
from core.errors import (
    ConflictError,
    DomainError,
    ErrorKind,
    InternalError,
    InvalidError,
    NotFoundError,
)
from core.logger import bind_contextvars, clear_contextvars, get_logger

__all__ = [
    "get_logger",
    "bind_contextvars",
    "clear_contextvars",
    "RequestContext",
    "DomainError",
    "ErrorKind",
    "NotFoundError",
    "ConflictError",
    "InvalidError",
    "InternalError",
]
