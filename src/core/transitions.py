"""
Quit-Plan Lifecycle Transition Table.

One row per (from-status, action): the resulting status and the roles
allowed to trigger it. The engine looks rows up here and nowhere else.

    DRAFT            --submit (member|coach)-------> PENDING_APPROVAL
    PENDING_APPROVAL --approve (coach)-------------> ACTIVE
    PENDING_APPROVAL --deny (coach)----------------> DENIED
    PENDING_APPROVAL --accept (member)-------------> ACTIVE
    PENDING_APPROVAL --decline (member)------------> DENIED
    ACTIVE           --mark_complete (coach)-------> COMPLETED
    ACTIVE           --mark_failed (coach|system)--> FAILED
    ACTIVE           --update (coach)--------------> ACTIVE
    <non-terminal>   --cancel (member|coach)-------> CANCELLED
"""

from __future__ import annotations

from dataclasses import dataclass

from src.core.status import TERMINAL_STATUSES, ActorRole, PlanAction, PlanStatus


@dataclass(frozen=True)
class TransitionRule:
    """A single legal transition."""

    source: PlanStatus
    action: PlanAction
    target: PlanStatus
    roles: frozenset[ActorRole]


_MEMBER_OR_COACH = frozenset({ActorRole.MEMBER, ActorRole.COACH})
_COACH = frozenset({ActorRole.COACH})
_MEMBER = frozenset({ActorRole.MEMBER})

_RULES: list[TransitionRule] = [
    TransitionRule(PlanStatus.DRAFT, PlanAction.SUBMIT, PlanStatus.PENDING_APPROVAL, _MEMBER_OR_COACH),
    TransitionRule(PlanStatus.PENDING_APPROVAL, PlanAction.APPROVE, PlanStatus.ACTIVE, _COACH),
    TransitionRule(PlanStatus.PENDING_APPROVAL, PlanAction.DENY, PlanStatus.DENIED, _COACH),
    TransitionRule(PlanStatus.PENDING_APPROVAL, PlanAction.ACCEPT, PlanStatus.ACTIVE, _MEMBER),
    TransitionRule(PlanStatus.PENDING_APPROVAL, PlanAction.DECLINE, PlanStatus.DENIED, _MEMBER),
    TransitionRule(PlanStatus.ACTIVE, PlanAction.MARK_COMPLETE, PlanStatus.COMPLETED, _COACH),
    TransitionRule(
        PlanStatus.ACTIVE,
        PlanAction.MARK_FAILED,
        PlanStatus.FAILED,
        frozenset({ActorRole.COACH, ActorRole.SYSTEM}),
    ),
    TransitionRule(PlanStatus.ACTIVE, PlanAction.UPDATE, PlanStatus.ACTIVE, _COACH),
]

# cancel is legal from every non-terminal status
_RULES.extend(
    TransitionRule(status, PlanAction.CANCEL, PlanStatus.CANCELLED, _MEMBER_OR_COACH)
    for status in PlanStatus
    if status not in TERMINAL_STATUSES
)

TRANSITIONS: dict[tuple[PlanStatus, PlanAction], TransitionRule] = {
    (rule.source, rule.action): rule for rule in _RULES
}


def find_rule(status: PlanStatus, action: PlanAction) -> TransitionRule | None:
    """Return the rule for (status, action), or None if the action is undefined there."""
    return TRANSITIONS.get((status, action))


def is_permitted(status: PlanStatus, action: PlanAction, role: ActorRole) -> bool:
    """True if `role` may perform `action` on a plan in `status`."""
    rule = find_rule(status, action)
    return rule is not None and role in rule.roles


def available_actions(status: PlanStatus, role: ActorRole) -> list[PlanAction]:
    """
    List the actions `role` may take on a plan in `status`.

    Used by UIs to decide which buttons to show (accept/deny/complete...).
    """
    return [
        rule.action
        for rule in _RULES
        if rule.source == status and role in rule.roles
    ]


__all__ = [
    "TransitionRule",
    "TRANSITIONS",
    "find_rule",
    "is_permitted",
    "available_actions",
]
