"""
Services for the Quit-Plan Engine.

Services:
    - PlanStore: SQLAlchemy persistence with optimistic concurrency
    - Phase decomposer: tier -> ordered phases, goal merging
    - LifecycleEngine: the plan state machine
    - Progress: percent, outcome label, tone
    - History: filter / sort / paginate / aggregate
    - QuitPlanService: id-based commands and queries
"""

from .history import HistoryFilters, HistoryStats, Page, PlanSummary, paginate, project, summarize_history
from .lifecycle_engine import LifecycleEngine, TransitionEvent, TransitionListener
from .phase_decomposer import (
    AddictionTier,
    PhaseDraft,
    PhaseTemplate,
    attach_goals,
    build_phase_plan,
    decompose,
    normalize_tier,
    tier_from_quiz_points,
)
from .plan_store import PlanStore
from .progress import ProgressResult, bucket_percent, compute_outcome_label, compute_progress, progress_tone
from .quit_plan_service import QuitPlanService

__all__ = [
    # History
    "HistoryFilters",
    "HistoryStats",
    "Page",
    "PlanSummary",
    "paginate",
    "project",
    "summarize_history",
    # Lifecycle
    "LifecycleEngine",
    "TransitionEvent",
    "TransitionListener",
    # Decomposer
    "AddictionTier",
    "PhaseDraft",
    "PhaseTemplate",
    "attach_goals",
    "build_phase_plan",
    "decompose",
    "normalize_tier",
    "tier_from_quiz_points",
    # Store
    "PlanStore",
    # Progress
    "ProgressResult",
    "bucket_percent",
    "compute_outcome_label",
    "compute_progress",
    "progress_tone",
    # Service
    "QuitPlanService",
]
