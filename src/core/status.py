"""
Plan status, lifecycle actions, and actor roles.

The canonical status enum is the only status representation the engine
works with. Older clients and the legacy REST payloads use a handful of
synonyms ("IN_PROGRESS", "REJECTED", "PENDING", ...); they are collapsed here,
at the boundary, by normalize_status() and never leak further in.
"""

from __future__ import annotations

from enum import StrEnum


class PlanStatus(StrEnum):
    """Lifecycle status of a quit plan."""

    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    DENIED = "DENIED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """True for statuses a plan never leaves."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[PlanStatus] = frozenset({
    PlanStatus.DENIED,
    PlanStatus.COMPLETED,
    PlanStatus.FAILED,
    PlanStatus.CANCELLED,
})

# Statuses that produce an outcome label
CLOSED_WITH_OUTCOME: frozenset[PlanStatus] = frozenset({
    PlanStatus.COMPLETED,
    PlanStatus.FAILED,
    PlanStatus.DENIED,
})


class PlanAction(StrEnum):
    """Actions that move (or keep) a plan through its lifecycle."""

    SUBMIT = "submit"
    APPROVE = "approve"
    DENY = "deny"
    ACCEPT = "accept"
    DECLINE = "decline"
    MARK_COMPLETE = "mark_complete"
    MARK_FAILED = "mark_failed"
    UPDATE = "update"
    CANCEL = "cancel"


class ActorRole(StrEnum):
    """Who is acting on a plan."""

    MEMBER = "member"
    COACH = "coach"
    ADMIN = "admin"
    SYSTEM = "system"


# Legacy status spellings -> canonical status
STATUS_SYNONYMS: dict[str, PlanStatus] = {
    "DRAFT": PlanStatus.DRAFT,
    "PENDING": PlanStatus.PENDING_APPROVAL,
    "PENDING_APPROVAL": PlanStatus.PENDING_APPROVAL,
    "WAITING_APPROVAL": PlanStatus.PENDING_APPROVAL,
    "ACTIVE": PlanStatus.ACTIVE,
    "IN_PROGRESS": PlanStatus.ACTIVE,
    "APPROVED": PlanStatus.ACTIVE,
    "ACCEPTED": PlanStatus.ACTIVE,
    "DENIED": PlanStatus.DENIED,
    "REJECTED": PlanStatus.DENIED,
    "DECLINED": PlanStatus.DENIED,
    "COMPLETED": PlanStatus.COMPLETED,
    "COMPLETE": PlanStatus.COMPLETED,
    "FAILED": PlanStatus.FAILED,
    "INCOMPLETE": PlanStatus.FAILED,
    "CANCELLED": PlanStatus.CANCELLED,
    "CANCELED": PlanStatus.CANCELLED,
    "DISABLED": PlanStatus.CANCELLED,
}


def normalize_status(value: str | PlanStatus | None) -> PlanStatus | None:
    """
    Map any known status spelling to the canonical PlanStatus.

    Matching is case-insensitive and treats spaces and dashes as underscores.

    Args:
        value: Status string from a client or legacy payload

    Returns:
        Canonical PlanStatus, or None if the value is empty or unknown

    Example:
        >>> normalize_status("in-progress")
        <PlanStatus.ACTIVE: 'ACTIVE'>
        >>> normalize_status("Rejected")
        <PlanStatus.DENIED: 'DENIED'>
    """
    if value is None:
        return None
    if isinstance(value, PlanStatus):
        return value
    key = str(value).strip().upper().replace("-", "_").replace(" ", "_")
    return STATUS_SYNONYMS.get(key)


def normalize_role(value: str | ActorRole | None) -> ActorRole | None:
    """Map a role string ("Coach", "MEMBER", ...) to ActorRole, or None if unknown."""
    if value is None:
        return None
    if isinstance(value, ActorRole):
        return value
    try:
        return ActorRole(str(value).strip().lower())
    except ValueError:
        return None


__all__ = [
    "PlanStatus",
    "PlanAction",
    "ActorRole",
    "TERMINAL_STATUSES",
    "CLOSED_WITH_OUTCOME",
    "STATUS_SYNONYMS",
    "normalize_status",
    "normalize_role",
]
