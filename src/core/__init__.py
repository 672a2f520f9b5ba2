"""
Core lifecycle vocabulary for the Quit-Plan Engine.

Exports:
    - PlanStatus, PlanAction, ActorRole: canonical enums
    - normalize_status / normalize_role: legacy spellings -> enums
    - TransitionRule, TRANSITIONS: the lifecycle transition table
"""

from .status import (
    CLOSED_WITH_OUTCOME,
    STATUS_SYNONYMS,
    TERMINAL_STATUSES,
    ActorRole,
    PlanAction,
    PlanStatus,
    normalize_role,
    normalize_status,
)
from .transitions import TRANSITIONS, TransitionRule, available_actions, find_rule, is_permitted

__all__ = [
    "ActorRole",
    "PlanAction",
    "PlanStatus",
    "CLOSED_WITH_OUTCOME",
    "STATUS_SYNONYMS",
    "TERMINAL_STATUSES",
    "normalize_role",
    "normalize_status",
    "TRANSITIONS",
    "TransitionRule",
    "available_actions",
    "find_rule",
    "is_permitted",
]
