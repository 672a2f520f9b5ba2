"""
REST API Routes for the Quit-Plan Engine.

All responses use the response envelope (see src.api.schemas). The acting
role and id come from the bearer token; engine errors are mapped to HTTP
statuses by the exception handler installed in create_app().

Endpoints (all under /api/v1 prefix):
- /health - Health check
- /auth/token - Issue a token (non-production only)
- /plans - Create a draft plan
- /plans/newest - The member's current plan
- /plans/history - Filtered, sorted, paginated history (+ /stats)
- /plans/coach - Plans assigned to a coach, same paging
- /plans/expire - Overdue sweep (system role)
- /plans/{id} - Plan detail, phases, progress, available actions
- /plans/{id}/{action} - submit, approve, deny, accept, decline, complete, fail, cancel
- /plans/{id}/content - Coach content update
- /plans/{id}/phases/{phase_id}/complete - Complete a phase
- /plans/{id}/phases/{phase_id}/goals - Edit a phase's goals
- /plans/{id}/evaluation - Final evaluation
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, date, datetime
from typing import Any, Literal

from fastapi import APIRouter as FastAPIRouter
from fastapi import Depends, Query

from src.api.auth import ActorToken, AuthService
from src.api.dependencies import get_auth_service, get_current_actor, get_plan_service
from src.api.schemas import (
    ApproveRequest,
    CreatePlanRequest,
    FinalEvaluationRequest,
    PhaseGoalsRequest,
    TokenRequest,
    TransitionRequest,
    UpdateContentRequest,
    phase_to_dict,
    plan_to_dict,
    success_response,
)
from src.core.status import ActorRole, PlanAction
from src.lib.exceptions import ForbiddenError, ValidationError
from src.services.history import HistoryFilters, Page
from src.services.quit_plan_service import QuitPlanService

logger = logging.getLogger(__name__)

router = FastAPIRouter(prefix="/api/v1")


def _member_scope(actor: ActorToken, member_id: int | None) -> int:
    """Resolve whose history/newest plan is being read."""
    if actor.role == ActorRole.MEMBER:
        if member_id is not None and member_id != actor.user_id:
            raise ForbiddenError(f"Member {actor.user_id} may not read member {member_id}'s plans")
        return actor.user_id
    if member_id is None:
        raise ValidationError("member_id is required")
    return member_id


def _coach_scope(actor: ActorToken, coach_id: int | None) -> int:
    """Resolve whose assigned plans are being listed."""
    if actor.role == ActorRole.COACH:
        if coach_id is not None and coach_id != actor.user_id:
            raise ForbiddenError(f"Coach {actor.user_id} may not read coach {coach_id}'s plans")
        return actor.user_id
    if actor.role == ActorRole.MEMBER:
        raise ForbiddenError("Members may not list coach plans")
    if coach_id is None:
        raise ValidationError("coach_id is required")
    return coach_id


def _history_filters(
    search: str | None,
    status: str | None,
    date_from: date | None,
    date_to: date | None,
) -> HistoryFilters:
    return HistoryFilters(search=search, status=status, date_from=date_from, date_to=date_to)


def _page_response(result: Page) -> dict[str, Any]:
    payload = result.to_dict()
    items = payload.pop("items")
    return success_response(data=items, meta=payload)


# =============================================================================
# Health & Auth
# =============================================================================


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return success_response(
        data={
            "status": "healthy",
            "version": "0.1.0",
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


@router.post("/auth/token")
def issue_token(
    data: TokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> dict[str, Any]:
    """Issue a bearer token. Only available outside production."""
    if os.getenv("QUITPLAN_ENVIRONMENT", "development") == "production":
        raise ForbiddenError("Token issuing is disabled in production")
    try:
        token = auth_service.generate_token(data.user_id, data.role)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return success_response(
        data={
            "access_token": auth_service.encode_token(token),
            "token_type": token.token_type,
            "expires_at": token.expires_at.isoformat(),
        }
    )


# =============================================================================
# Plans: creation & collection reads
# =============================================================================


@router.post("/plans", status_code=201)
def create_plan(
    data: CreatePlanRequest,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """Create a draft plan (member for themselves, coach for a member)."""
    member_id = _member_scope(actor, data.member_id)
    plan = service.create_draft_plan(
        member_id,
        data.content(),
        actor.role,
        actor_id=actor.user_id,
        start_date=data.start_date,
        end_date=data.end_date,
        coach_id=data.coach_id,
        coach_name=data.coach_name,
        addiction_tier=data.addiction_tier,
    )
    return success_response(data=plan_to_dict(plan))


@router.get("/plans/newest")
def get_newest_plan(
    member_id: int | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """The member's newest plan, or null."""
    plan = service.get_newest_plan(_member_scope(actor, member_id))
    return success_response(data=plan_to_dict(plan) if plan else None)


@router.get("/plans/history")
def get_plan_history(
    member_id: int | None = None,
    page: int = Query(0, ge=0),
    page_size: int | None = Query(None, ge=1),
    search: str | None = Query(None, max_length=200),
    status: str | None = Query(None, max_length=30),
    date_from: date | None = None,
    date_to: date | None = None,
    sort: str | None = Query(None, max_length=30),
    order: Literal["asc", "desc"] = "desc",
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """One page of a member's plan history (0-based pages)."""
    result = service.get_plan_history(
        _member_scope(actor, member_id),
        page,
        page_size,
        _history_filters(search, status, date_from, date_to),
        sort_by=sort,
        descending=order == "desc",
    )
    return _page_response(result)


@router.get("/plans/coach")
def get_coach_plans(
    coach_id: int | None = None,
    page: int = Query(0, ge=0),
    page_size: int | None = Query(None, ge=1),
    search: str | None = Query(None, max_length=200),
    status: str | None = Query(None, max_length=30),
    date_from: date | None = None,
    date_to: date | None = None,
    sort: str | None = Query(None, max_length=30),
    order: Literal["asc", "desc"] = "desc",
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """One page of the plans assigned to a coach (the coach dashboard list)."""
    result = service.get_coach_plans(
        _coach_scope(actor, coach_id),
        page,
        page_size,
        _history_filters(search, status, date_from, date_to),
        sort_by=sort,
        descending=order == "desc",
    )
    return _page_response(result)


@router.get("/plans/history/stats")
def get_history_stats(
    member_id: int | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """Totals of completed / failed / active plans for a member."""
    stats = service.get_history_stats(_member_scope(actor, member_id))
    return success_response(data=stats.to_dict())


@router.post("/plans/expire")
def expire_overdue_plans(
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """Fail overdue ACTIVE plans. System role only."""
    if actor.role != ActorRole.SYSTEM:
        raise ForbiddenError("Only the system role may run the overdue sweep")
    failed = service.expire_overdue_plans()
    return success_response(data=[plan.id for plan in failed], meta={"count": len(failed)})


# =============================================================================
# Plans: single-plan reads
# =============================================================================


@router.get("/plans/{plan_id}")
def get_plan(
    plan_id: int,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """Plan detail with phases and derived progress."""
    plan = service.get_plan(plan_id, actor.role, actor.user_id)
    return success_response(data=plan_to_dict(plan))


@router.get("/plans/{plan_id}/phases")
def get_phases(
    plan_id: int,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    service.get_plan(plan_id, actor.role, actor.user_id)
    return success_response(data=[phase_to_dict(phase) for phase in service.get_phases(plan_id)])


@router.get("/plans/{plan_id}/progress")
def get_progress(
    plan_id: int,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    service.get_plan(plan_id, actor.role, actor.user_id)
    progress = service.get_progress(plan_id)
    return success_response(
        data={**progress.to_dict(), "outcome_label": service.get_outcome_label(plan_id)}
    )


@router.get("/plans/{plan_id}/actions")
def get_available_actions(
    plan_id: int,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """Actions the caller may take on the plan (drives which buttons a UI shows)."""
    service.get_plan(plan_id, actor.role, actor.user_id)
    return success_response(data=service.get_available_actions(plan_id, actor.role))


# =============================================================================
# Plans: lifecycle actions
# =============================================================================


def _act(
    service: QuitPlanService,
    plan_id: int,
    action: PlanAction,
    actor: ActorToken,
    **kwargs: Any,
) -> dict[str, Any]:
    plan = service.apply_action(plan_id, action, actor.role, actor.user_id, **kwargs)
    return success_response(data=plan_to_dict(plan))


@router.post("/plans/{plan_id}/submit")
def submit_plan(
    plan_id: int,
    data: TransitionRequest | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    data = data or TransitionRequest()
    return _act(service, plan_id, PlanAction.SUBMIT, actor, expected_version=data.expected_version)


@router.post("/plans/{plan_id}/approve")
def approve_plan(
    plan_id: int,
    data: ApproveRequest | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    data = data or ApproveRequest()
    return _act(
        service,
        plan_id,
        PlanAction.APPROVE,
        actor,
        feedback=data.feedback,
        phase_goals=data.phase_goals,
        expected_version=data.expected_version,
    )


@router.post("/plans/{plan_id}/deny")
def deny_plan(
    plan_id: int,
    data: TransitionRequest,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    return _act(
        service,
        plan_id,
        PlanAction.DENY,
        actor,
        feedback=data.feedback,
        expected_version=data.expected_version,
    )


@router.post("/plans/{plan_id}/accept")
def accept_plan(
    plan_id: int,
    data: TransitionRequest | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    data = data or TransitionRequest()
    return _act(service, plan_id, PlanAction.ACCEPT, actor, expected_version=data.expected_version)


@router.post("/plans/{plan_id}/decline")
def decline_plan(
    plan_id: int,
    data: TransitionRequest,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    return _act(
        service,
        plan_id,
        PlanAction.DECLINE,
        actor,
        feedback=data.feedback,
        expected_version=data.expected_version,
    )


@router.post("/plans/{plan_id}/complete")
def complete_plan(
    plan_id: int,
    data: TransitionRequest | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    data = data or TransitionRequest()
    return _act(service, plan_id, PlanAction.MARK_COMPLETE, actor, expected_version=data.expected_version)


@router.post("/plans/{plan_id}/fail")
def fail_plan(
    plan_id: int,
    data: TransitionRequest | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    data = data or TransitionRequest()
    return _act(service, plan_id, PlanAction.MARK_FAILED, actor, expected_version=data.expected_version)


@router.post("/plans/{plan_id}/cancel")
def cancel_plan(
    plan_id: int,
    data: TransitionRequest | None = None,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    data = data or TransitionRequest()
    return _act(service, plan_id, PlanAction.CANCEL, actor, expected_version=data.expected_version)


@router.patch("/plans/{plan_id}/content")
def update_plan_content(
    plan_id: int,
    data: UpdateContentRequest,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    """Coach edits an ACTIVE plan's content."""
    return _act(
        service,
        plan_id,
        PlanAction.UPDATE,
        actor,
        content=data.content(),
        expected_version=data.expected_version,
    )


# =============================================================================
# Phases & evaluation
# =============================================================================


@router.post("/plans/{plan_id}/phases/{phase_id}/complete")
def mark_phase_complete(
    plan_id: int,
    phase_id: int,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    phase = service.mark_phase_complete(plan_id, phase_id, actor.role, actor_id=actor.user_id)
    return success_response(data=phase_to_dict(phase))


@router.put("/plans/{plan_id}/phases/{phase_id}/goals")
def edit_phase_goals(
    plan_id: int,
    phase_id: int,
    data: PhaseGoalsRequest,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    if actor.role != ActorRole.COACH:
        raise ForbiddenError("Only coaches may edit phase goals", plan_id=plan_id)
    phase = service.edit_phase_goals(plan_id, phase_id, data.goals, actor.user_id)
    return success_response(data=phase_to_dict(phase))


@router.post("/plans/{plan_id}/evaluation")
def attach_final_evaluation(
    plan_id: int,
    data: FinalEvaluationRequest,
    actor: ActorToken = Depends(get_current_actor),
    service: QuitPlanService = Depends(get_plan_service),
) -> dict[str, Any]:
    if actor.role != ActorRole.COACH:
        raise ForbiddenError("Only coaches may evaluate plans", plan_id=plan_id)
    plan = service.attach_final_evaluation(plan_id, actor.user_id, data.evaluation)
    return success_response(data=plan_to_dict(plan))


__all__ = ["router"]
