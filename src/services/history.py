"""
History Projector for the Quit-Plan Engine.

Projects a member's plans into display summaries for the history screen:
filter (free-text, status, date range), sort, paginate, and aggregate.

Percent, outcome label and tone come from the progress calculator; this
module never derives them on its own. Nothing here raises on partially
populated plans.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from src.config.policy import get_policy
from src.core.status import PlanStatus, normalize_status
from src.lib.exceptions import ValidationError
from src.services.plan_store import total_pages
from src.services.progress import (
    as_date,
    compute_outcome_label,
    compute_progress,
    plan_field,
    plan_status_of,
    progress_tone,
)

logger = logging.getLogger(__name__)

# Fields the free-text search looks at
SEARCH_FIELDS: tuple[str, ...] = (
    "coach_name",
    "coping_strategies",
    "smoking_triggers_to_avoid",
    "motivation",
)

# Summary fields callers may sort the history by
SORT_FIELDS: tuple[str, ...] = ("start_date", "end_date", "status", "percent", "coach_name", "id")
DEFAULT_SORT_FIELD = "start_date"


@dataclass
class HistoryFilters:
    """Optional filters for history projection. Empty filters match everything."""

    search: str | None = None
    status: str | PlanStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


@dataclass(frozen=True)
class PlanSummary:
    """One row of the history view."""

    id: Any
    status: str | None
    start_date: date | None
    end_date: date | None
    coach_name: str | None
    percent: int
    visible: bool
    outcome_label: str | None
    tone: str
    is_newest: bool

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "coach_name": self.coach_name,
            "percent": self.percent,
            "visible": self.visible,
            "outcome_label": self.outcome_label,
            "tone": self.tone,
            "is_newest": self.is_newest,
        }


@dataclass
class Page:
    """A page of results. `page` is 0-based."""

    items: list[Any] = field(default_factory=list)
    page: int = 0
    page_size: int = 0
    total: int = 0
    total_pages: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.items],
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "total_pages": self.total_pages,
        }


@dataclass(frozen=True)
class HistoryStats:
    """Aggregate numbers for the history dashboard."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    active: int = 0
    average_percent: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "active": self.active,
            "average_percent": self.average_percent,
        }


# =============================================================================
# Filtering
# =============================================================================


def _matches_search(plan: Any, needle: str) -> bool:
    needle = needle.casefold()
    for name in SEARCH_FIELDS:
        value = plan_field(plan, name)
        if isinstance(value, str) and needle in value.casefold():
            return True
    return False


def _overlaps(plan: Any, date_from: date | None, date_to: date | None) -> bool:
    start = as_date(plan_field(plan, "start_date"))
    end = as_date(plan_field(plan, "end_date"))
    # A plan without both dates never matches a date filter
    if start is None or end is None:
        return False
    if date_from is not None and end < date_from:
        return False
    if date_to is not None and start > date_to:
        return False
    return True


def matches(plan: Any, filters: HistoryFilters | None) -> bool:
    """
    True if a plan passes every filter that is set.

    Status filters accept legacy spellings; an unknown status matches nothing.
    """
    if filters is None:
        return True
    if filters.search and filters.search.strip():
        if not _matches_search(plan, filters.search.strip()):
            return False
    if filters.status:
        wanted = normalize_status(filters.status)
        if wanted is None or plan_status_of(plan) != wanted:
            return False
    if filters.date_from is not None or filters.date_to is not None:
        if not _overlaps(plan, filters.date_from, filters.date_to):
            return False
    return True


# =============================================================================
# Projection
# =============================================================================


def summarize(plan: Any, now: date | datetime | None = None) -> PlanSummary:
    """Build the summary row for one plan."""
    status = plan_status_of(plan)
    progress = compute_progress(plan, now)
    return PlanSummary(
        id=plan_field(plan, "id"),
        status=status.value if status else None,
        start_date=as_date(plan_field(plan, "start_date")),
        end_date=as_date(plan_field(plan, "end_date")),
        coach_name=plan_field(plan, "coach_name"),
        percent=progress.percent,
        visible=progress.visible,
        outcome_label=compute_outcome_label(plan, now),
        tone=progress_tone(plan),
        is_newest=bool(plan_field(plan, "is_newest")),
    )


def sort_key_for(field_name: str | None) -> Callable[[PlanSummary], Any]:
    """
    Key function for a sortable summary field.

    Raises:
        ValidationError: If the field is not sortable
    """
    name = field_name or DEFAULT_SORT_FIELD
    if name not in SORT_FIELDS:
        raise ValidationError(
            f"Cannot sort history by {name!r}",
            details={"sortable": list(SORT_FIELDS)},
        )
    return lambda summary: getattr(summary, name)


def sort_summaries(
    summaries: Iterable[PlanSummary],
    sort_key: Callable[[PlanSummary], Any],
    descending: bool = True,
) -> list[PlanSummary]:
    """Sort by `sort_key`; rows whose key is None go last in either direction."""
    keyed = [(sort_key(s), s) for s in summaries]
    present = [pair for pair in keyed if pair[0] is not None]
    missing = [s for key, s in keyed if key is None]
    present.sort(key=lambda pair: pair[0], reverse=descending)
    return [s for _, s in present] + missing


def project(
    plans: Iterable[Any],
    filters: HistoryFilters | None = None,
    sort_key: Callable[[PlanSummary], Any] | None = None,
    descending: bool = True,
    now: date | datetime | None = None,
    sort_by: str | None = None,
) -> list[PlanSummary]:
    """
    Filter, summarize and sort plans for the history view.

    Args:
        plans: QuitPlan rows or plan-like mappings
        filters: Optional HistoryFilters
        sort_key: Key over PlanSummary; wins over sort_by
        descending: Sort direction (default: most recent first)
        now: Reference date for progress
        sort_by: Name of a field in SORT_FIELDS (default: start_date)

    Returns:
        Sorted list of PlanSummary, missing sort values last
    """
    summaries = [summarize(plan, now) for plan in plans if matches(plan, filters)]
    key = sort_key or sort_key_for(sort_by)
    return sort_summaries(summaries, key, descending)


def paginate(items: Sequence[Any], page: int = 0, page_size: int | None = None) -> Page:
    """
    Slice `items` into a 0-based page.

    Negative pages clamp to 0; page_size defaults to the configured page size
    and is capped at the configured maximum.
    """
    policy = get_policy()
    size = page_size if page_size and page_size > 0 else policy.default_page_size
    size = min(size, policy.max_page_size)
    page = max(page, 0)
    start = page * size
    return Page(
        items=list(items[start:start + size]),
        page=page,
        page_size=size,
        total=len(items),
        total_pages=total_pages(len(items), size),
    )


def summarize_history(plans: Iterable[Any], now: date | datetime | None = None) -> HistoryStats:
    """
    Count plans by outcome and average the completion percent.

    The average covers plans whose progress bar is visible.
    """
    total = completed = failed = active = 0
    percents: list[int] = []
    for plan in plans:
        total += 1
        status = plan_status_of(plan)
        if status == PlanStatus.COMPLETED:
            completed += 1
        elif status == PlanStatus.FAILED:
            failed += 1
        elif status == PlanStatus.ACTIVE:
            active += 1
        progress = compute_progress(plan, now)
        if progress.visible:
            percents.append(progress.percent)
    average = round(sum(percents) / len(percents)) if percents else 0
    return HistoryStats(
        total=total,
        completed=completed,
        failed=failed,
        active=active,
        average_percent=average,
    )


__all__ = [
    "HistoryFilters",
    "HistoryStats",
    "SORT_FIELDS",
    "Page",
    "PlanSummary",
    "matches",
    "paginate",
    "project",
    "sort_key_for",
    "sort_summaries",
    "summarize",
    "summarize_history",
]
