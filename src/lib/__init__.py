"""
Lib package for the Quit-Plan Engine.

Contains shared utilities:
- errors.py: Error codes, default messages, HTTP mapping, error response builder
- exceptions.py: QuitPlanError hierarchy raised by the engine
- logging.py: structlog configuration
"""

from src.lib.errors import (
    AUTH_REQUIRED,
    CONFLICT,
    FORBIDDEN,
    INTERNAL_ERROR,
    INVALID_TRANSITION,
    NOT_FOUND,
    PHASES_INCOMPLETE,
    VALIDATION_ERROR,
    build_error_response,
    get_error_message,
    http_status_for,
)
from src.lib.exceptions import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PhasesIncompleteError,
    QuitPlanError,
    StoreError,
    ValidationError,
)

__all__ = [
    # Error codes
    "AUTH_REQUIRED",
    "CONFLICT",
    "FORBIDDEN",
    "INTERNAL_ERROR",
    "INVALID_TRANSITION",
    "NOT_FOUND",
    "PHASES_INCOMPLETE",
    "VALIDATION_ERROR",
    "build_error_response",
    "get_error_message",
    "http_status_for",
    # Exceptions
    "QuitPlanError",
    "ConfigurationError",
    "ConflictError",
    "ForbiddenError",
    "InvalidTransitionError",
    "NotFoundError",
    "PhasesIncompleteError",
    "StoreError",
    "ValidationError",
]
