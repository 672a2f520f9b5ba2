"""
Progress & Outcome Calculator for the Quit-Plan Engine.

The single place where a plan's completion percentage and outcome label are
derived. Screens render these values; they never recompute them.

Progress:
1. DENIED / CANCELLED plans: 0%, progress bar hidden.
2. Server counters (progress_in_day, duration_in_days) when both are valid
   numbers and duration >= 0.
3. Otherwise date arithmetic over [start_date, end_date].
4. Percent is clamped to [0, 100]; bad input degrades to 0.

Outcome label (COMPLETED / FAILED / DENIED only):
- Server completion_quality wins (title-cased).
- COMPLETED: excellent / good / fair / needs improvement by percent.
- FAILED: "failed". DENIED: "rejected".

Nothing in this module raises: progress display is non-critical.
"""

from __future__ import annotations

import logging
import math
import string
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from src.config.policy import OutcomeThresholds, get_policy
from src.core.status import CLOSED_WITH_OUTCOME, PlanStatus, normalize_status

logger = logging.getLogger(__name__)

# Where a ProgressResult came from
SOURCE_SUPPRESSED = "suppressed"
SOURCE_SERVER = "server"
SOURCE_DATES = "dates"
SOURCE_INVALID = "invalid"

LABEL_EXCELLENT = "excellent"
LABEL_GOOD = "good"
LABEL_FAIR = "fair"
LABEL_NEEDS_IMPROVEMENT = "needs improvement"
LABEL_COMPLETED = "completed"
LABEL_FAILED = "failed"
LABEL_REJECTED = "rejected"

TONE_NORMAL = "normal"
TONE_SUCCESS = "success"
TONE_EXCEPTION = "exception"


@dataclass(frozen=True)
class ProgressResult:
    """Derived progress of a plan."""

    percent: int = 0
    days_passed: int = 0
    total_days: int = 0
    visible: bool = True
    source: str = SOURCE_INVALID
    # Server counters present but duration_in_days == 0
    zero_duration: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "percent": self.percent,
            "days_passed": self.days_passed,
            "total_days": self.total_days,
            "visible": self.visible,
        }


# =============================================================================
# Input helpers (tolerant of ORM objects, dataclasses and raw dicts)
# =============================================================================


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def plan_field(plan: Any, name: str) -> Any:
    """Read `name` from an object or mapping; mappings may use camelCase keys."""
    if isinstance(plan, Mapping):
        if name in plan:
            return plan[name]
        return plan.get(_camel(name))
    return getattr(plan, name, None)


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _today(now: date | datetime | None) -> date:
    if now is None:
        return datetime.now(UTC).date()
    return now.date() if isinstance(now, datetime) else now


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def plan_status_of(plan: Any) -> PlanStatus | None:
    """Canonical status of a plan-like object, or None if missing/unknown."""
    return normalize_status(plan_field(plan, "status"))


# =============================================================================
# Progress
# =============================================================================


def compute_progress(plan: Any, now: date | datetime | None = None) -> ProgressResult:
    """
    Derive completion percentage and day counts for a plan.

    Args:
        plan: QuitPlan, dataclass, or mapping with plan fields
        now: Reference date (defaults to today, UTC)

    Returns:
        ProgressResult; never raises
    """
    try:
        return _compute_progress(plan, _today(now))
    except Exception:  # pragma: no cover - last-resort guard
        logger.exception("Progress computation failed for plan %s", plan_field(plan, "id"))
        return ProgressResult()


def _compute_progress(plan: Any, today: date) -> ProgressResult:
    status = plan_status_of(plan)

    if status in (PlanStatus.DENIED, PlanStatus.CANCELLED):
        return ProgressResult(visible=False, source=SOURCE_SUPPRESSED)

    progress_in_day = _number(plan_field(plan, "progress_in_day"))
    duration_in_days = _number(plan_field(plan, "duration_in_days"))

    if progress_in_day is not None and duration_in_days is not None and duration_in_days >= 0:
        total = int(duration_in_days)
        if total == 0:
            logger.warning(
                "Plan %s has duration_in_days=0 with progress_in_day=%s; progress forced to 0",
                plan_field(plan, "id"),
                progress_in_day,
            )
            return ProgressResult(source=SOURCE_SERVER, zero_duration=True)
        percent = _round_half_up(progress_in_day / duration_in_days * 100)
        return ProgressResult(
            percent=_clamp(percent, 0, 100),
            days_passed=_clamp(int(progress_in_day), 0, total),
            total_days=total,
            source=SOURCE_SERVER,
        )

    start = as_date(plan_field(plan, "start_date"))
    end = as_date(plan_field(plan, "end_date"))
    if start is None or end is None:
        return ProgressResult(source=SOURCE_INVALID)

    total = (end - start).days
    if total < 0:
        logger.warning("Plan %s ends before it starts (%s > %s)", plan_field(plan, "id"), start, end)
        return ProgressResult(source=SOURCE_INVALID)

    if status == PlanStatus.COMPLETED:
        return ProgressResult(percent=100, days_passed=total, total_days=total, source=SOURCE_DATES)
    if today < start:
        return ProgressResult(percent=0, days_passed=0, total_days=total, source=SOURCE_DATES)
    if today > end:
        return ProgressResult(percent=100, days_passed=total, total_days=total, source=SOURCE_DATES)
    if total == 0:
        return ProgressResult(total_days=0, source=SOURCE_DATES)

    passed = (today - start).days
    percent = _round_half_up(passed / total * 100)
    return ProgressResult(
        percent=_clamp(percent, 0, 100),
        days_passed=_clamp(passed, 0, total),
        total_days=total,
        source=SOURCE_DATES,
    )


# =============================================================================
# Outcome label
# =============================================================================


def bucket_percent(percent: int, thresholds: OutcomeThresholds | None = None) -> str:
    """
    Bucket a completion percent into a quality label.

    Args:
        percent: 0-100
        thresholds: Bucket lower bounds (defaults to the configured policy)

    Returns:
        "excellent" | "good" | "fair" | "needs improvement"
    """
    t = thresholds or get_policy().outcome_thresholds
    if percent >= t.excellent:
        return LABEL_EXCELLENT
    if percent >= t.good:
        return LABEL_GOOD
    if percent >= t.fair:
        return LABEL_FAIR
    return LABEL_NEEDS_IMPROVEMENT


def compute_outcome_label(
    plan: Any,
    now: date | datetime | None = None,
    thresholds: OutcomeThresholds | None = None,
) -> str | None:
    """
    Qualitative outcome of a closed plan.

    Args:
        plan: QuitPlan, dataclass, or mapping with plan fields
        now: Reference date for the progress computation
        thresholds: Bucket bounds (defaults to the configured policy)

    Returns:
        Label string, or None for statuses that carry no outcome
    """
    status = plan_status_of(plan)
    if status not in CLOSED_WITH_OUTCOME:
        return None

    quality = plan_field(plan, "completion_quality")
    if isinstance(quality, str) and quality.strip():
        return string.capwords(quality.strip())

    if status == PlanStatus.FAILED:
        return LABEL_FAILED
    if status == PlanStatus.DENIED:
        return LABEL_REJECTED

    progress = compute_progress(plan, now)
    if progress.zero_duration:
        logger.warning(
            "Completed plan %s has zero duration and no completion_quality; not bucketing",
            plan_field(plan, "id"),
        )
        return LABEL_COMPLETED
    return bucket_percent(progress.percent, thresholds)


def progress_tone(plan: Any) -> str:
    """
    Display tone for a plan's progress bar.

    Returns:
        "success" (COMPLETED), "exception" (FAILED / DENIED), "normal" otherwise
    """
    status = plan_status_of(plan)
    if status == PlanStatus.COMPLETED:
        return TONE_SUCCESS
    if status in (PlanStatus.FAILED, PlanStatus.DENIED):
        return TONE_EXCEPTION
    return TONE_NORMAL


__all__ = [
    "ProgressResult",
    "compute_progress",
    "compute_outcome_label",
    "bucket_percent",
    "progress_tone",
    "plan_status_of",
    "plan_field",
    "as_date",
]
