"""
Centralized Error Response Builder for the Quit-Plan Engine.

Provides consistent error codes, default messages, and structured error
responses for use across the API and service layers.

Error codes are constants; each maps to a default English message that the
caller may override with a more specific one (for example the engine's
"cannot complete: 2 phases remaining").
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Error Code Constants
# =============================================================================

AUTH_REQUIRED = "AUTH_REQUIRED"
NOT_FOUND = "NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
FORBIDDEN = "FORBIDDEN"
INVALID_TRANSITION = "INVALID_TRANSITION"
PHASES_INCOMPLETE = "PHASES_INCOMPLETE"
CONFLICT = "CONFLICT"

# =============================================================================
# Default messages
# =============================================================================

_ERROR_MESSAGES: dict[str, str] = {
    AUTH_REQUIRED: "Authentication is required.",
    NOT_FOUND: "The requested plan or phase was not found.",
    VALIDATION_ERROR: "Invalid input. Please check your request.",
    INTERNAL_ERROR: "An internal error occurred. Please try again.",
    FORBIDDEN: "You do not have permission to perform this action.",
    INVALID_TRANSITION: "This action is not available for the plan in its current status.",
    PHASES_INCOMPLETE: "The plan still has unfinished phases.",
    CONFLICT: "The plan was changed by someone else. Reload and try again.",
}

# HTTP status used by the API layer for each code
HTTP_STATUS: dict[str, int] = {
    AUTH_REQUIRED: 401,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    INVALID_TRANSITION: 409,
    CONFLICT: 409,
    PHASES_INCOMPLETE: 422,
    VALIDATION_ERROR: 422,
    INTERNAL_ERROR: 500,
}


# =============================================================================
# Error Response Builder
# =============================================================================


def get_error_message(code: str) -> str:
    """
    Get the default message for an error code.

    Falls back to a generic message if the error code is unknown.

    Args:
        code: Error code constant (e.g. NOT_FOUND, CONFLICT)

    Returns:
        Default message string
    """
    return _ERROR_MESSAGES.get(code, "An error occurred.")


def http_status_for(code: str) -> int:
    """Return the HTTP status code for an error code (500 if unknown)."""
    return HTTP_STATUS.get(code, 500)


def build_error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build a structured error response dict.

    The returned dict is the ``error`` field of the API response envelope:
    { "code": "...", "message": "..." }

    If no message is provided, the default message for the code is used.

    Args:
        code: Error code constant
        message: Optional override message
        details: Optional additional error details (plan id, action, status)

    Returns:
        Structured error dict: {"code": str, "message": str, "details": dict | None}
    """
    resolved_message = message if message is not None else get_error_message(code)
    error: dict[str, Any] = {
        "code": code,
        "message": resolved_message,
    }
    if details is not None:
        error["details"] = details
    return error


__all__ = [
    # Error code constants
    "AUTH_REQUIRED",
    "NOT_FOUND",
    "VALIDATION_ERROR",
    "INTERNAL_ERROR",
    "FORBIDDEN",
    "INVALID_TRANSITION",
    "PHASES_INCOMPLETE",
    "CONFLICT",
    "HTTP_STATUS",
    # Functions
    "get_error_message",
    "http_status_for",
    "build_error_response",
]
