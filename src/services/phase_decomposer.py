"""
Phase/Goal Decomposer for the Quit-Plan Engine.

Turns an addiction-severity tier into the ordered phase sequence a plan runs
through once it becomes ACTIVE, and merges coach-written goals into it.

The templates are policy data, not computed: the same tier always yields the
same sequence, in the same order, with the same text.

Tiers:
- LOW: light smokers, short three-stage plan
- MEDIUM: the standard four-stage plan (preparation, action, maintenance, completion)
- HIGH: adds a gradual-reduction stage before quit day
- SEVERE: adds a medical assessment and a withdrawal-management stage
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import StrEnum
from typing import Any

from src.lib.exceptions import ValidationError

logger = logging.getLogger(__name__)


class AddictionTier(StrEnum):
    """Addiction-severity classification used to pick default phases."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    SEVERE = "SEVERE"


# Legacy spellings from the smoking-status screens
TIER_SYNONYMS: dict[str, AddictionTier] = {
    "LOW": AddictionTier.LOW,
    "NONE": AddictionTier.LOW,
    "LIGHT": AddictionTier.LOW,
    "MILD": AddictionTier.LOW,
    "MEDIUM": AddictionTier.MEDIUM,
    "MODERATE": AddictionTier.MEDIUM,
    "HIGH": AddictionTier.HIGH,
    "HEAVY": AddictionTier.HIGH,
    "SEVERE": AddictionTier.SEVERE,
}

# Quiz score upper bounds (inclusive) per tier
_QUIZ_TIER_BOUNDS: list[tuple[int, AddictionTier]] = [
    (7, AddictionTier.LOW),
    (15, AddictionTier.MEDIUM),
    (25, AddictionTier.HIGH),
]


@dataclass(frozen=True)
class PhaseTemplate:
    """A default phase for a tier."""

    name: str
    objective: str
    duration: str
    recommend_goal: str
    days: int


@dataclass
class PhaseDraft:
    """A template numbered, scheduled, and filled with goals; ready to persist."""

    phase_order: int
    name: str
    objective: str
    duration: str
    recommend_goal: str
    goals: list[str] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "phase_order": self.phase_order,
            "name": self.name,
            "objective": self.objective,
            "duration": self.duration,
            "recommend_goal": self.recommend_goal,
            "goals": list(self.goals),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


_PREPARATION = PhaseTemplate(
    name="Preparation",
    objective="Get ready mentally and physically for quit day",
    duration="1 week",
    recommend_goal="Set a quit date and remove cigarettes from home, car and workplace",
    days=7,
)
_ACTION_SHORT = PhaseTemplate(
    name="Action",
    objective="Stop smoking and apply coping strategies to stay smoke-free",
    duration="2 weeks",
    recommend_goal="Stay completely smoke-free and log every craving",
    days=14,
)
_MAINTENANCE_SHORT = PhaseTemplate(
    name="Maintenance",
    objective="Strengthen commitment and prevent relapse",
    duration="2 weeks",
    recommend_goal="Practice one relapse-prevention strategy every day",
    days=14,
)

PHASE_TEMPLATES: dict[AddictionTier, tuple[PhaseTemplate, ...]] = {
    AddictionTier.LOW: (
        _PREPARATION,
        _ACTION_SHORT,
        _MAINTENANCE_SHORT,
    ),
    AddictionTier.MEDIUM: (
        _PREPARATION,
        PhaseTemplate(
            name="Action",
            objective="Stop smoking and apply coping strategies to stay smoke-free",
            duration="3 weeks",
            recommend_goal="Stay completely smoke-free and log every craving",
            days=21,
        ),
        PhaseTemplate(
            name="Maintenance",
            objective="Strengthen commitment and prevent relapse",
            duration="4 weeks",
            recommend_goal="Avoid the top three personal triggers for four weeks",
            days=28,
        ),
        PhaseTemplate(
            name="Completion",
            objective="Finish the programme and build a smoke-free lifestyle",
            duration="1 week",
            recommend_goal="Write a long-term smoke-free plan with your coach",
            days=7,
        ),
    ),
    AddictionTier.HIGH: (
        PhaseTemplate(
            name="Preparation",
            objective="Get ready mentally and physically for quit day",
            duration="2 weeks",
            recommend_goal="Set a quit date and identify your main smoking triggers",
            days=14,
        ),
        PhaseTemplate(
            name="Gradual Reduction",
            objective="Cut daily cigarettes in steps before quit day",
            duration="3 weeks",
            recommend_goal="Halve the number of cigarettes smoked per day",
            days=21,
        ),
        PhaseTemplate(
            name="Action",
            objective="Stop smoking and manage withdrawal symptoms",
            duration="4 weeks",
            recommend_goal="Stay smoke-free using nicotine replacement as prescribed",
            days=28,
        ),
        PhaseTemplate(
            name="Maintenance",
            objective="Strengthen commitment and prevent relapse",
            duration="6 weeks",
            recommend_goal="Attend a weekly check-in with your coach",
            days=42,
        ),
    ),
    AddictionTier.SEVERE: (
        PhaseTemplate(
            name="Medical Assessment",
            objective="Review health status and medication options with a professional",
            duration="1 week",
            recommend_goal="Complete a medical consultation about cessation medication",
            days=7,
        ),
        PhaseTemplate(
            name="Preparation",
            objective="Get ready mentally and physically for quit day",
            duration="2 weeks",
            recommend_goal="Set a quit date and arrange a support person",
            days=14,
        ),
        PhaseTemplate(
            name="Gradual Reduction",
            objective="Cut daily cigarettes in steps before quit day",
            duration="4 weeks",
            recommend_goal="Reduce to fewer than five cigarettes per day",
            days=28,
        ),
        PhaseTemplate(
            name="Withdrawal Management",
            objective="Stop smoking and get through acute withdrawal",
            duration="4 weeks",
            recommend_goal="Follow the medication schedule and log withdrawal symptoms daily",
            days=28,
        ),
        PhaseTemplate(
            name="Maintenance",
            objective="Strengthen commitment and prevent relapse",
            duration="8 weeks",
            recommend_goal="Stay smoke-free and join a support group",
            days=56,
        ),
    ),
}


def normalize_tier(value: str | AddictionTier | None) -> AddictionTier | None:
    """
    Map a tier spelling (canonical or legacy) to AddictionTier.

    Args:
        value: Tier string, case-insensitive

    Returns:
        AddictionTier, or None if empty or unknown
    """
    if value is None:
        return None
    if isinstance(value, AddictionTier):
        return value
    return TIER_SYNONYMS.get(str(value).strip().upper())


def tier_from_quiz_points(points: int) -> AddictionTier:
    """
    Classify an initial-quiz score.

    Args:
        points: Total quiz points (negative values count as 0)

    Returns:
        LOW (<=7), MEDIUM (<=15), HIGH (<=25), SEVERE otherwise
    """
    for upper, tier in _QUIZ_TIER_BOUNDS:
        if points <= upper:
            return tier
    return AddictionTier.SEVERE


def decompose(tier: str | AddictionTier) -> list[PhaseTemplate]:
    """
    Return the ordered phase templates for a tier.

    Args:
        tier: Addiction tier (legacy spellings accepted)

    Returns:
        New list of templates in execution order

    Raises:
        ValidationError: If the tier is unknown
    """
    resolved = normalize_tier(tier)
    if resolved is None:
        raise ValidationError(f"Unknown addiction tier: {tier!r}", details={"tier": str(tier)})
    return list(PHASE_TEMPLATES[resolved])


def _clean_goals(raw: Sequence[str] | str | None) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    return [goal.strip() for goal in raw if isinstance(goal, str) and goal.strip()]


def attach_goals(
    templates: Sequence[PhaseTemplate],
    overrides: Mapping[int, Sequence[str] | str] | Sequence[Sequence[str] | str | None] | None = None,
) -> list[PhaseDraft]:
    """
    Number templates 1..n and fill each phase's goal list.

    An override for a phase replaces the default goal list. Phases without
    an override (or whose override is blank) get [recommend_goal].

    Args:
        templates: Ordered phase templates
        overrides: Coach goals per phase, keyed by 0-based template index
            (a mapping) or aligned positionally (a sequence)

    Returns:
        PhaseDraft list with phase_order 1..n in template order

    Raises:
        ValidationError: If an override index does not match any template
    """
    if overrides is None:
        by_index: dict[int, Sequence[str] | str] = {}
    elif isinstance(overrides, Mapping):
        by_index = dict(overrides)
    else:
        by_index = {i: goals for i, goals in enumerate(overrides) if goals is not None}

    unknown = [i for i in by_index if not 0 <= i < len(templates)]
    if unknown:
        raise ValidationError(
            f"Goal overrides reference unknown phase index(es): {sorted(unknown)}",
            details={"phase_count": len(templates)},
        )

    drafts: list[PhaseDraft] = []
    for index, template in enumerate(templates):
        goals = _clean_goals(by_index.get(index)) or [template.recommend_goal]
        drafts.append(
            PhaseDraft(
                phase_order=index + 1,
                name=template.name,
                objective=template.objective,
                duration=template.duration,
                recommend_goal=template.recommend_goal,
                goals=goals,
            )
        )
    return drafts


def schedule_phases(
    drafts: list[PhaseDraft],
    templates: Sequence[PhaseTemplate],
    start: date | None,
) -> list[PhaseDraft]:
    """
    Lay phases out back to back from `start`, using each template's day span.

    Leaves dates unset when there is no start date.
    """
    if start is None:
        return drafts
    cursor = start
    for draft, template in zip(drafts, templates, strict=True):
        draft.start_date = cursor
        draft.end_date = cursor + timedelta(days=template.days - 1)
        cursor = draft.end_date + timedelta(days=1)
    return drafts


def build_phase_plan(
    tier: str | AddictionTier,
    start: date | None = None,
    overrides: Mapping[int, Sequence[str] | str] | Sequence[Sequence[str] | str | None] | None = None,
) -> list[PhaseDraft]:
    """Decompose a tier, attach goals, and schedule the result from `start`."""
    templates = decompose(tier)
    drafts = attach_goals(templates, overrides)
    logger.debug("Built %d phases for tier %s", len(drafts), tier)
    return schedule_phases(drafts, templates, start)


def validate_phase_order(orders: Sequence[int]) -> None:
    """
    Check that phase orders are exactly 1..n.

    Raises:
        ValidationError: On gaps, duplicates, or a sequence not starting at 1
    """
    expected = list(range(1, len(orders) + 1))
    if sorted(orders) != expected:
        raise ValidationError(
            f"Phase order must be contiguous from 1, got {sorted(orders)}",
            details={"phase_orders": sorted(orders)},
        )


__all__ = [
    "AddictionTier",
    "PhaseTemplate",
    "PhaseDraft",
    "PHASE_TEMPLATES",
    "normalize_tier",
    "tier_from_quiz_points",
    "decompose",
    "attach_goals",
    "schedule_phases",
    "build_phase_plan",
    "validate_phase_order",
]
