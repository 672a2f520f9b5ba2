"""
Pydantic Schemas for the Quit-Plan REST API.

Defines the response envelope, request bodies, and the serializers that turn
plans and phases into JSON-ready dicts.

Every response uses the same envelope:
    {"success": bool, "data": ..., "error": {...} | None, "meta": {...}}
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.lib.errors import build_error_response
from src.models.quit_phase import QuitPhase
from src.models.quit_plan import QuitPlan
from src.services.progress import compute_outcome_label, compute_progress, progress_tone

# =============================================================================
# Envelope
# =============================================================================


def success_response(data: Any = None, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """Wrap a successful result in the response envelope."""
    return {"success": True, "data": data, "error": None, "meta": meta or {}}


def error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Wrap an error in the response envelope."""
    return {
        "success": False,
        "data": None,
        "error": build_error_response(code, message, details),
        "meta": {},
    }


# =============================================================================
# Request Schemas
# =============================================================================


class PlanContent(BaseModel):
    """Free-text plan content. Every field is optional."""

    motivation: str | None = Field(None, max_length=5000)
    coping_strategies: str | None = Field(None, max_length=5000)
    medications_to_use: str | None = Field(None, max_length=2000)
    medication_instructions: str | None = Field(None, max_length=5000)
    smoking_triggers_to_avoid: str | None = Field(None, max_length=5000)
    relapse_prevention_strategies: str | None = Field(None, max_length=5000)
    support_resources: str | None = Field(None, max_length=5000)
    reward_plan: str | None = Field(None, max_length=5000)
    additional_notes: str | None = Field(None, max_length=5000)


class CreatePlanRequest(PlanContent):
    """Request schema for creating a draft plan."""

    member_id: int | None = None
    coach_id: int | None = None
    coach_name: str | None = Field(None, max_length=200)
    start_date: date
    end_date: date
    addiction_tier: str | None = Field(None, max_length=20)

    def content(self) -> dict[str, Any]:
        return self.model_dump(include=set(PlanContent.model_fields), exclude_none=True)


class UpdateContentRequest(PlanContent):
    """Request schema for a partial content update."""

    expected_version: int | None = None

    def content(self) -> dict[str, Any]:
        return self.model_dump(include=set(PlanContent.model_fields), exclude_unset=True)


class TransitionRequest(BaseModel):
    """Body for lifecycle actions (submit, approve, deny, ...)."""

    feedback: str | None = Field(None, max_length=5000)
    expected_version: int | None = None


class ApproveRequest(TransitionRequest):
    """Approve body; phase_goals maps 0-based phase index to goal strings."""

    phase_goals: dict[int, list[str]] | None = None


class PhaseGoalsRequest(BaseModel):
    """Replacement goal list for one phase."""

    goals: list[str] = Field(default_factory=list, max_length=50)

    @field_validator("goals")
    @classmethod
    def strip_goals(cls, value: list[str]) -> list[str]:
        return [goal.strip() for goal in value if goal and goal.strip()]


class FinalEvaluationRequest(BaseModel):
    """Coach sign-off for a completed plan."""

    evaluation: str = Field(..., min_length=1, max_length=10000)


class TokenRequest(BaseModel):
    """Development token request (disabled in production)."""

    user_id: int
    role: str = Field(..., max_length=20)


# =============================================================================
# Serializers
# =============================================================================


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def phase_to_dict(phase: QuitPhase) -> dict[str, Any]:
    """Serialize a phase."""
    return {
        "id": phase.id,
        "plan_id": phase.plan_id,
        "phase_order": phase.phase_order,
        "name": phase.name,
        "objective": phase.objective,
        "duration": phase.duration,
        "recommend_goal": phase.recommend_goal,
        "goals": list(phase.goals or []),
        "is_completed": phase.is_completed,
        "completion_percentage": phase.completion_percentage,
        "start_date": _iso(phase.start_date),
        "end_date": _iso(phase.end_date),
    }


def plan_to_dict(plan: QuitPlan, include_phases: bool = True) -> dict[str, Any]:
    """Serialize a plan together with its derived progress and outcome."""
    progress = compute_progress(plan)
    data: dict[str, Any] = {
        "id": plan.id,
        "member_id": plan.member_id,
        "coach_id": plan.coach_id,
        "coach_name": plan.coach_name,
        "author_role": plan.author_role,
        "status": plan.status,
        "start_date": _iso(plan.start_date),
        "end_date": _iso(plan.end_date),
        "is_newest": plan.is_newest,
        "addiction_tier": plan.addiction_tier,
        "content": plan.content(),
        "feedback": plan.feedback,
        "final_evaluation": plan.final_evaluation,
        "completion_quality": plan.completion_quality,
        "progress": progress.to_dict(),
        "outcome_label": compute_outcome_label(plan),
        "tone": progress_tone(plan),
        "submitted_at": _iso(plan.submitted_at),
        "approved_at": _iso(plan.approved_at),
        "closed_at": _iso(plan.closed_at),
        "created_at": _iso(plan.created_at),
        "updated_at": _iso(plan.updated_at),
        "version": plan.version,
    }
    if include_phases:
        data["phases"] = [phase_to_dict(phase) for phase in plan.phases]
    return data


__all__ = [
    "success_response",
    "error_response",
    "PlanContent",
    "CreatePlanRequest",
    "UpdateContentRequest",
    "TransitionRequest",
    "ApproveRequest",
    "PhaseGoalsRequest",
    "FinalEvaluationRequest",
    "TokenRequest",
    "plan_to_dict",
    "phase_to_dict",
]
