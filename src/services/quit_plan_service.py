"""
Quit Plan Service for the Quit-Plan Engine.

The id-based boundary every caller (REST API, schedulers, admin tools) goes
through. Each call receives the acting role and identity explicitly; there
is no ambient session state.

Commands:
- create_draft_plan, submit_plan
- approve_plan / deny_plan (coach, member-authored plans)
- accept_plan / decline_plan (member, coach-authored plans)
- update_plan_content, mark_phase_complete, edit_phase_goals
- complete_plan, fail_plan, cancel_plan, attach_final_evaluation
- expire_overdue_plans (system sweep)

Queries:
- get_plan, get_newest_plan, get_phases, get_plan_history, search_history,
  get_coach_plans
- get_progress, get_outcome_label, get_history_stats, get_available_actions

Identity rules:
- Member-scoped calls require actor_id == plan.member_id
- Coach-scoped calls require actor_id == plan.coach_id when the plan has one
- The counterpart of the author approves: coaches approve/deny plans members
  wrote; members accept/decline plans coaches wrote
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session

from src.config.policy import PolicyConfig, get_policy
from src.core.status import ActorRole, PlanAction, normalize_role
from src.core.transitions import available_actions, find_rule
from src.lib.exceptions import ForbiddenError, QuitPlanError
from src.models.quit_phase import QuitPhase
from src.models.quit_plan import QuitPlan
from src.services.history import (
    HistoryFilters,
    HistoryStats,
    Page,
    PlanSummary,
    paginate,
    project,
    summarize_history,
)
from src.services.lifecycle_engine import LifecycleEngine, TransitionListener
from src.services.plan_store import PlanStore
from src.services.progress import ProgressResult, compute_outcome_label, compute_progress

logger = logging.getLogger(__name__)

# Which approval actions belong to which author
_COUNTERPART_ACTIONS: dict[PlanAction, ActorRole] = {
    PlanAction.APPROVE: ActorRole.MEMBER,
    PlanAction.DENY: ActorRole.MEMBER,
    PlanAction.ACCEPT: ActorRole.COACH,
    PlanAction.DECLINE: ActorRole.COACH,
}


class QuitPlanService:
    """
    Commands and queries over quit plans, scoped to one database session.

    Usage:
        service = QuitPlanService(session)
        plan = service.create_draft_plan(7, {"motivation": "..."}, "member",
                                         actor_id=7, start_date=..., end_date=...)
        service.submit_plan(plan.id, "member", actor_id=7)
        service.approve_plan(plan.id, coach_id=3)
    """

    def __init__(
        self,
        session: Session,
        policy: PolicyConfig | None = None,
        notifier: TransitionListener | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = PlanStore(session)
        self._policy = policy or get_policy()
        self._engine = LifecycleEngine(
            self._store,
            policy=self._policy,
            listeners=[notifier] if notifier else None,
            clock=clock,
        )

    @property
    def engine(self) -> LifecycleEngine:
        return self._engine

    @property
    def store(self) -> PlanStore:
        return self._store

    # =========================================================================
    # Commands
    # =========================================================================

    def create_draft_plan(
        self,
        member_id: int,
        content: Mapping[str, Any] | None,
        acting_role: ActorRole | str,
        *,
        actor_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        coach_id: int | None = None,
        coach_name: str | None = None,
        addiction_tier: str | None = None,
    ) -> QuitPlan:
        """
        Create a DRAFT plan for a member.

        A member may only draft for themselves. A coach drafting for a member
        becomes the plan's coach unless another coach_id is given.
        """
        role = normalize_role(acting_role)
        if role == ActorRole.MEMBER and actor_id is not None and actor_id != member_id:
            raise ForbiddenError(
                f"Member {actor_id} may not create plans for member {member_id}",
                action="create",
            )
        if role == ActorRole.COACH and coach_id is None:
            coach_id = actor_id

        return self._engine.create_draft(
            member_id,
            content,
            acting_role,
            start_date=start_date,
            end_date=end_date,
            coach_id=coach_id,
            coach_name=coach_name,
            addiction_tier=addiction_tier,
        )

    def submit_plan(
        self,
        plan_id: int,
        acting_role: ActorRole | str,
        *,
        actor_id: int | None = None,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Submit a DRAFT plan for approval."""
        return self.apply_action(
            plan_id,
            PlanAction.SUBMIT,
            acting_role,
            actor_id,
            expected_version=expected_version,
        )

    def approve_plan(
        self,
        plan_id: int,
        coach_id: int,
        feedback: str | None = None,
        *,
        phase_goals: Mapping[int, Sequence[str] | str] | None = None,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """
        Coach approves a member-authored plan. The plan becomes ACTIVE,
        newest, and gets its phases.
        """
        return self.apply_action(
            plan_id,
            PlanAction.APPROVE,
            ActorRole.COACH,
            coach_id,
            feedback=feedback,
            phase_goals=phase_goals,
            expected_version=expected_version,
        )

    def deny_plan(
        self,
        plan_id: int,
        coach_id: int,
        feedback: str,
        *,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Coach denies a member-authored plan with feedback."""
        return self.apply_action(
            plan_id,
            PlanAction.DENY,
            ActorRole.COACH,
            coach_id,
            feedback=feedback,
            expected_version=expected_version,
        )

    def accept_plan(
        self,
        plan_id: int,
        member_id: int,
        *,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Member accepts a coach-authored plan."""
        return self.apply_action(
            plan_id,
            PlanAction.ACCEPT,
            ActorRole.MEMBER,
            member_id,
            expected_version=expected_version,
        )

    def decline_plan(
        self,
        plan_id: int,
        member_id: int,
        feedback: str,
        *,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Member declines a coach-authored plan with feedback."""
        return self.apply_action(
            plan_id,
            PlanAction.DECLINE,
            ActorRole.MEMBER,
            member_id,
            feedback=feedback,
            expected_version=expected_version,
        )

    def update_plan_content(
        self,
        plan_id: int,
        coach_id: int,
        partial_content: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Coach edits the content of an ACTIVE plan. Status is unchanged."""
        return self.apply_action(
            plan_id,
            PlanAction.UPDATE,
            ActorRole.COACH,
            coach_id,
            content=partial_content,
            expected_version=expected_version,
        )

    def complete_plan(
        self,
        plan_id: int,
        coach_id: int,
        *,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Coach closes an ACTIVE plan whose phases are all complete."""
        return self.apply_action(
            plan_id,
            PlanAction.MARK_COMPLETE,
            ActorRole.COACH,
            coach_id,
            expected_version=expected_version,
        )

    def fail_plan(
        self,
        plan_id: int,
        acting_role: ActorRole | str,
        *,
        actor_id: int | None = None,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Close an ACTIVE plan as FAILED (coach or system). Repeat calls are no-ops."""
        return self.apply_action(
            plan_id,
            PlanAction.MARK_FAILED,
            acting_role,
            actor_id,
            expected_version=expected_version,
        )

    def cancel_plan(
        self,
        plan_id: int,
        acting_role: ActorRole | str,
        *,
        actor_id: int | None = None,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """Withdraw a non-terminal plan."""
        return self.apply_action(
            plan_id,
            PlanAction.CANCEL,
            acting_role,
            actor_id,
            expected_version=expected_version,
        )

    def mark_phase_complete(
        self,
        plan_id: int,
        phase_id: int,
        acting_role: ActorRole | str,
        *,
        actor_id: int | None = None,
    ) -> QuitPhase:
        """Complete the next phase of an ACTIVE plan."""
        plan = self._store.get_plan(plan_id)
        self._check_identity(plan, normalize_role(acting_role), actor_id, "phase_complete")
        return self._engine.mark_phase_complete(plan, phase_id, acting_role)

    def edit_phase_goals(
        self,
        plan_id: int,
        phase_id: int,
        goals: Sequence[str],
        coach_id: int,
    ) -> QuitPhase:
        """Replace the goals of one phase (coach only)."""
        plan = self._store.get_plan(plan_id)
        self._check_identity(plan, ActorRole.COACH, coach_id, "edit_goals")
        return self._engine.edit_phase_goals(plan, phase_id, goals, ActorRole.COACH)

    def attach_final_evaluation(self, plan_id: int, coach_id: int, evaluation: str) -> QuitPlan:
        """Attach the coach's sign-off to a COMPLETED plan."""
        plan = self._store.get_plan(plan_id)
        self._check_identity(plan, ActorRole.COACH, coach_id, "final_evaluation")
        return self._engine.attach_final_evaluation(plan, evaluation, ActorRole.COACH)

    def expire_overdue_plans(self, today: date | None = None) -> list[QuitPlan]:
        """Fail ACTIVE plans past their end date (system sweep)."""
        return self._engine.expire_overdue_plans(today)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_plan(
        self,
        plan_id: int,
        acting_role: ActorRole | str | None = None,
        actor_id: int | None = None,
    ) -> QuitPlan:
        """Load a plan; when a role and id are given, the caller must own it."""
        plan = self._store.get_plan(plan_id)
        if acting_role is not None:
            self._check_identity(plan, normalize_role(acting_role), actor_id, "read")
        return plan

    def get_newest_plan(self, member_id: int) -> QuitPlan | None:
        return self._store.get_newest_plan(member_id)

    def get_phases(self, plan_id: int) -> list[QuitPhase]:
        self._store.get_plan(plan_id)
        return self._store.get_phases(plan_id)

    def get_progress(self, plan_id: int, now: date | datetime | None = None) -> ProgressResult:
        return compute_progress(self._store.get_plan(plan_id), now)

    def get_outcome_label(self, plan_id: int, now: date | datetime | None = None) -> str | None:
        return compute_outcome_label(
            self._store.get_plan(plan_id),
            now,
            self._policy.outcome_thresholds,
        )

    def get_plan_history(
        self,
        member_id: int,
        page: int = 0,
        page_size: int | None = None,
        filters: HistoryFilters | None = None,
        now: date | datetime | None = None,
        sort_by: str | None = None,
        descending: bool = True,
    ) -> Page:
        """
        One page of a member's history, most recent start date first by default.

        Args:
            member_id: Owning member
            page: 0-based page index
            page_size: Items per page (defaults to the configured size)
            filters: Optional search / status / date filters
            sort_by: Summary field to sort by (see history.SORT_FIELDS)
            descending: Sort direction; plans missing the field go last
        """
        summaries = project(
            self._store.list_member_plans(member_id),
            filters,
            descending=descending,
            now=now,
            sort_by=sort_by,
        )
        return paginate(summaries, page, page_size)

    def search_history(
        self,
        member_id: int,
        filters: HistoryFilters | None,
        now: date | datetime | None = None,
        sort_by: str | None = None,
        descending: bool = True,
    ) -> list[PlanSummary]:
        return project(
            self._store.list_member_plans(member_id),
            filters,
            descending=descending,
            now=now,
            sort_by=sort_by,
        )

    def get_coach_plans(
        self,
        coach_id: int,
        page: int = 0,
        page_size: int | None = None,
        filters: HistoryFilters | None = None,
        now: date | datetime | None = None,
        sort_by: str | None = None,
        descending: bool = True,
    ) -> Page:
        """
        One page of the plans assigned to a coach, for the coach dashboard.

        Same filtering, sorting and 0-based paging as get_plan_history.
        """
        summaries = project(
            self._store.list_coach_plans(coach_id),
            filters,
            descending=descending,
            now=now,
            sort_by=sort_by,
        )
        logger.debug("Coach %s: %d plan(s) after filters", coach_id, len(summaries))
        return paginate(summaries, page, page_size)

    def get_history_stats(self, member_id: int, now: date | datetime | None = None) -> HistoryStats:
        return summarize_history(self._store.list_member_plans(member_id), now)

    def get_available_actions(self, plan_id: int, acting_role: ActorRole | str) -> list[str]:
        """
        Actions the role may take on the plan right now.

        Approval actions the author's counterpart does not own are left out.
        """
        plan = self._store.get_plan(plan_id)
        role = normalize_role(acting_role)
        if role is None:
            return []
        actions = available_actions(plan.plan_status, role)
        return [
            action.value
            for action in actions
            if _COUNTERPART_ACTIONS.get(action, plan.author_role) == plan.author_role
        ]

    def apply_action(
        self,
        plan_id: int,
        action: PlanAction | str,
        acting_role: ActorRole | str,
        actor_id: int | None = None,
        **kwargs: Any,
    ) -> QuitPlan:
        """
        Run one lifecycle action on a plan by id.

        Checks identity and the approval flow, then hands over to the engine.
        The approving coach becomes the plan's coach if it has none.

        Args:
            plan_id: Target plan
            action: Lifecycle action
            acting_role: Role of the caller
            actor_id: Id of the caller (member or coach id)
            **kwargs: feedback, content, phase_goals, expected_version
        """
        plan = self._store.get_plan(plan_id)
        role = normalize_role(acting_role)
        try:
            act = PlanAction(action)
        except ValueError:
            # The engine reports unknown actions
            return self._engine.apply_transition(plan, action, acting_role, **kwargs)

        self._guard(plan, act, role, actor_id)
        assigns_coach = (
            act == PlanAction.APPROVE
            and role == ActorRole.COACH
            and actor_id is not None
            and plan.coach_id is None
            and find_rule(plan.plan_status, act) is not None
        )
        if not assigns_coach:
            return self._engine.apply_transition(plan, act, acting_role, **kwargs)

        plan.coach_id = actor_id
        try:
            return self._engine.apply_transition(plan, act, acting_role, **kwargs)
        except QuitPlanError:
            # Undo the coach assignment
            self._store.rollback()
            raise

    # =========================================================================
    # Helpers
    # =========================================================================

    def _guard(
        self,
        plan: QuitPlan,
        action: PlanAction,
        role: ActorRole | None,
        actor_id: int | None,
    ) -> None:
        # Undefined (status, action) pairs are reported by the engine as InvalidTransition
        rule = find_rule(plan.plan_status, action)
        if rule is None or role is None or role not in rule.roles:
            return
        self._check_identity(plan, role, actor_id, action.value)
        author = _COUNTERPART_ACTIONS.get(action)
        if author is not None and plan.author_role != author:
            raise ForbiddenError(
                f"{role.value.title()} may not {action.value} a plan authored by a {plan.author_role}",
                plan_id=plan.id,
                action=action.value,
                status=plan.status,
            )

    def _check_identity(
        self,
        plan: QuitPlan,
        role: ActorRole | None,
        actor_id: int | None,
        action: str,
    ) -> None:
        if actor_id is None or role is None:
            return
        if role == ActorRole.MEMBER and plan.member_id != actor_id:
            raise ForbiddenError(
                f"Member {actor_id} does not own plan {plan.id}",
                plan_id=plan.id,
                action=action,
                status=plan.status,
            )
        if role == ActorRole.COACH and plan.coach_id is not None and plan.coach_id != actor_id:
            raise ForbiddenError(
                f"Coach {actor_id} is not assigned to plan {plan.id}",
                plan_id=plan.id,
                action=action,
                status=plan.status,
            )


__all__ = ["QuitPlanService"]
