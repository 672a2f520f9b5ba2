"""
Custom exception hierarchy for the Quit-Plan Engine.

Every failure the engine can report to a caller is one of the kinds below.
All inherit from QuitPlanError, so callers can catch the whole family while
still branching on the specific kind.

Each exception carries the context a caller needs to render a message:
- plan_id: the plan the operation targeted (if known)
- action: the lifecycle action that was attempted (if any)
- status: the plan's status at the time of the attempt (if known)
- code: a stable error code from src.lib.errors
"""

from __future__ import annotations

from typing import Any

from src.lib import errors


class QuitPlanError(Exception):
    """Base exception for all Quit-Plan Engine errors."""

    code: str = errors.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        plan_id: int | None = None,
        action: str | None = None,
        status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.plan_id = plan_id
        self.action = action
        self.status = status
        self.details = details or {}

    def context(self) -> dict[str, Any]:
        """Return the error context as a plain dict (for logs and API details)."""
        ctx: dict[str, Any] = {}
        if self.plan_id is not None:
            ctx["plan_id"] = self.plan_id
        if self.action is not None:
            ctx["action"] = self.action
        if self.status is not None:
            ctx["status"] = self.status
        ctx.update(self.details)
        return ctx


class ConfigurationError(QuitPlanError):
    """Missing or invalid configuration values."""

    code = errors.INTERNAL_ERROR


class InvalidTransitionError(QuitPlanError):
    """The action is not defined for the plan's current status."""

    code = errors.INVALID_TRANSITION


class ForbiddenError(QuitPlanError):
    """The acting role (or identity) may not perform this action in this state."""

    code = errors.FORBIDDEN


class ValidationError(QuitPlanError):
    """Missing feedback, malformed dates, phase-order violations and similar."""

    code = errors.VALIDATION_ERROR


class PhasesIncompleteError(QuitPlanError):
    """A plan was marked complete while some of its phases are unfinished."""

    code = errors.PHASES_INCOMPLETE

    def __init__(self, remaining: int, **kwargs: Any) -> None:
        noun = "phase" if remaining == 1 else "phases"
        super().__init__(f"cannot complete: {remaining} {noun} remaining", **kwargs)
        self.remaining = remaining
        self.details.setdefault("remaining", remaining)


class ConflictError(QuitPlanError):
    """The plan changed since the caller read it (stale version)."""

    code = errors.CONFLICT


class NotFoundError(QuitPlanError):
    """A plan or phase id could not be resolved."""

    code = errors.NOT_FOUND


class StoreError(QuitPlanError):
    """The backing store failed for a reason other than a version conflict."""

    code = errors.INTERNAL_ERROR


__all__ = [
    "QuitPlanError",
    "ConfigurationError",
    "InvalidTransitionError",
    "ForbiddenError",
    "ValidationError",
    "PhasesIncompleteError",
    "ConflictError",
    "NotFoundError",
    "StoreError",
]
