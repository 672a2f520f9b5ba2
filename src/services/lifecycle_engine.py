"""
Lifecycle Engine for the Quit-Plan Engine.

The state machine that moves a quit plan from draft to closure:

    DRAFT -> PENDING_APPROVAL -> ACTIVE -> COMPLETED | FAILED
                              `-> DENIED
    (any non-terminal) -> CANCELLED

Responsibilities:
- Validate (status, action) against the transition table
- Gate every action by the acting role
- Keep exactly one is_newest plan per member
- Attach phases from the decomposer when a plan becomes ACTIVE
- Complete phases strictly in order
- Timestamp transitions and tell listeners (notifications) about them

Identity checks (is this coach assigned to this plan?) and the choice of
approval flow belong to QuitPlanService; this engine only knows roles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any

from src.config.policy import PolicyConfig, get_policy
from src.core.status import ActorRole, PlanAction, PlanStatus, normalize_role
from src.core.transitions import find_rule, is_permitted
from src.lib.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    PhasesIncompleteError,
    QuitPlanError,
    ValidationError,
)
from src.lib.logging import plan_log_context
from src.models.quit_phase import QuitPhase
from src.models.quit_plan import CONTENT_FIELDS, QuitPlan
from src.services.phase_decomposer import (
    AddictionTier,
    build_phase_plan,
    normalize_tier,
    validate_phase_order,
)
from src.services.plan_store import PlanStore

logger = logging.getLogger(__name__)

# Tier used when an approved plan carries none
DEFAULT_TIER = AddictionTier.MEDIUM

# Non-transition events reported to listeners
EVENT_CREATED = "create"
EVENT_PHASE_COMPLETED = "phase_complete"
EVENT_GOALS_EDITED = "edit_goals"
EVENT_FINAL_EVALUATION = "final_evaluation"

_CREATOR_ROLES = frozenset({ActorRole.MEMBER, ActorRole.COACH})


@dataclass(frozen=True)
class TransitionEvent:
    """Something that happened to a plan, for notification delivery."""

    plan_id: int
    member_id: int
    action: str
    from_status: str | None
    to_status: str
    role: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "plan_id": self.plan_id,
            "member_id": self.member_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "role": self.role,
            "occurred_at": self.occurred_at.isoformat(),
            "details": self.details,
        }


TransitionListener = Callable[[TransitionEvent], None]


def validate_plan_dates(start: date | None, end: date | None, min_duration_days: int) -> None:
    """
    Check a plan window: both dates present, end >= start + minimum duration.

    Raises:
        ValidationError: On missing, non-date, or too-short windows
    """
    if not isinstance(start, date) or not isinstance(end, date):
        raise ValidationError(
            "start_date and end_date are required",
            details={"start_date": str(start), "end_date": str(end)},
        )
    if end < start + timedelta(days=min_duration_days):
        raise ValidationError(
            f"end_date must be at least {min_duration_days} days after start_date",
            details={
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "min_duration_days": min_duration_days,
            },
        )


class LifecycleEngine:
    """
    State machine over QuitPlan rows held in a PlanStore.

    Every mutating method commits its unit of work before notifying
    listeners, so a listener never sees a transition that was rolled back.

    Usage:
        engine = LifecycleEngine(PlanStore(session))
        engine.apply_transition(plan, PlanAction.APPROVE, ActorRole.COACH)
    """

    def __init__(
        self,
        store: PlanStore,
        policy: PolicyConfig | None = None,
        listeners: Sequence[TransitionListener] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or get_policy()
        self._listeners: list[TransitionListener] = list(listeners or [])
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def store(self) -> PlanStore:
        return self._store

    @property
    def policy(self) -> PolicyConfig:
        return self._policy

    def now(self) -> datetime:
        return self._clock()

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_draft(
        self,
        member_id: int,
        content: Mapping[str, Any] | None,
        acting_role: ActorRole | str,
        *,
        start_date: date | None,
        end_date: date | None,
        coach_id: int | None = None,
        coach_name: str | None = None,
        addiction_tier: str | AddictionTier | None = None,
    ) -> QuitPlan:
        """
        Create a DRAFT plan and make it the member's newest plan.

        Raises:
            ForbiddenError: If the role may not author plans
            ValidationError: On bad dates, unknown content fields or tier,
                or when the member already has an open plan
        """
        role = self._resolve_role(acting_role, "create", None, None)
        if role not in _CREATOR_ROLES:
            raise ForbiddenError(f"Role '{role}' may not create quit plans", action="create")

        validate_plan_dates(start_date, end_date, self._policy.min_duration_days)
        fields = self._clean_content(content, plan_id=None, action="create")

        tier = None
        if addiction_tier is not None:
            tier = normalize_tier(addiction_tier)
            if tier is None:
                raise ValidationError(f"Unknown addiction tier: {addiction_tier!r}", action="create")

        current = self._store.get_newest_plan(member_id)
        if current is not None and not current.plan_status.is_terminal:
            raise ValidationError(
                f"Member {member_id} already has an open plan ({current.status})",
                plan_id=current.id,
                action="create",
                status=current.status,
            )

        plan = QuitPlan(
            member_id=member_id,
            coach_id=coach_id,
            coach_name=coach_name,
            author_role=role.value,
            status=PlanStatus.DRAFT.value,
            start_date=start_date,
            end_date=end_date,
            addiction_tier=tier.value if tier else None,
            is_newest=False,
            **fields,
        )
        self._store.add(plan)
        self._store.flush()
        self._store.set_newest(plan)
        self._store.commit()

        logger.info("Quit plan %s created by %s for member %s", plan.id, role, member_id)
        self._notify(plan, EVENT_CREATED, None, role)
        return plan

    # =========================================================================
    # Transitions
    # =========================================================================

    def apply_transition(
        self,
        plan: QuitPlan,
        action: PlanAction | str,
        acting_role: ActorRole | str,
        *,
        feedback: str | None = None,
        content: Mapping[str, Any] | None = None,
        phase_goals: Mapping[int, Sequence[str] | str] | Sequence[Sequence[str] | str | None] | None = None,
        expected_version: int | None = None,
    ) -> QuitPlan:
        """
        Validate and apply one lifecycle action.

        Args:
            plan: The plan to transition (attached to this engine's store)
            action: Lifecycle action
            acting_role: Role of the caller
            feedback: Required for deny/decline, optional for approve
            content: Content fields for update
            phase_goals: Coach goal overrides used when phases are attached
            expected_version: Caller's plan version for optimistic concurrency

        Returns:
            The updated plan

        Raises:
            InvalidTransitionError: Action undefined for the current status
            ForbiddenError: Role not allowed for this (status, action)
            ValidationError: Missing/short feedback, bad content or dates
            PhasesIncompleteError: mark_complete with unfinished phases
            ConflictError: Stale expected_version or concurrent write
        """
        with plan_log_context(plan_id=plan.id, member_id=plan.member_id, action=action, role=acting_role):
            return self._apply_transition(
                plan,
                action,
                acting_role,
                feedback=feedback,
                content=content,
                phase_goals=phase_goals,
                expected_version=expected_version,
            )

    def _apply_transition(
        self,
        plan: QuitPlan,
        action: PlanAction | str,
        acting_role: ActorRole | str,
        *,
        feedback: str | None,
        content: Mapping[str, Any] | None,
        phase_goals: Any,
        expected_version: int | None,
    ) -> QuitPlan:
        act = self._resolve_action(action, plan)
        status = plan.plan_status
        role = self._resolve_role(acting_role, act.value, plan.id, status)

        rule = find_rule(status, act)

        # mark_failed on an already FAILED plan is a no-op for roles that may fail plans
        if act == PlanAction.MARK_FAILED and status == PlanStatus.FAILED:
            if is_permitted(PlanStatus.ACTIVE, PlanAction.MARK_FAILED, role):
                logger.debug("Plan %s already FAILED; mark_failed ignored", plan.id)
                return plan

        if rule is None:
            if status.is_terminal:
                message = f"cannot {act.value}: plan is already {status.value}"
            else:
                message = f"cannot {act.value} a plan in status {status.value}"
            raise InvalidTransitionError(message, plan_id=plan.id, action=act.value, status=status.value)

        if role not in rule.roles:
            raise ForbiddenError(
                f"Role '{role}' may not {act.value} a plan in status {status.value}",
                plan_id=plan.id,
                action=act.value,
                status=status.value,
            )

        self._store.check_version(plan, expected_version)

        handler = self._HANDLERS.get(act)
        if handler is not None:
            try:
                handler(self, plan, feedback=feedback, content=content, phase_goals=phase_goals)
            except QuitPlanError:
                # Discard partial side effects (newest flag, phases)
                self._store.rollback()
                raise

        plan.status = rule.target.value
        self._stamp(plan, act)
        self._store.commit()

        logger.info(
            "Quit plan %s: %s by %s (%s -> %s)",
            plan.id,
            act.value,
            role,
            status.value,
            rule.target.value,
        )
        self._notify(plan, act.value, status.value, role)
        return plan

    def _on_approve(self, plan: QuitPlan, *, feedback: str | None, **_: Any) -> None:
        if feedback is not None and feedback.strip():
            plan.feedback = feedback.strip()

    def _on_activate(self, plan: QuitPlan, *, phase_goals: Any = None, **_: Any) -> None:
        self._store.set_newest(plan)
        today = self.now().date()
        if plan.start_date is None:
            plan.start_date = today
        if plan.end_date is None:
            days = plan.duration_in_days or self._policy.min_duration_days
            plan.end_date = plan.start_date + timedelta(days=days)
        if not plan.phases:
            self._attach_phases(plan, phase_goals)

    def _on_approve_or_accept(self, plan: QuitPlan, *, feedback: str | None = None, **kwargs: Any) -> None:
        self._on_approve(plan, feedback=feedback)
        self._on_activate(plan, **kwargs)

    def _on_reject(self, plan: QuitPlan, *, feedback: str | None, **_: Any) -> None:
        plan.feedback = self._require_feedback(plan, feedback)

    def _on_complete(self, plan: QuitPlan, **_: Any) -> None:
        remaining = sum(1 for phase in plan.phases if not phase.is_completed)
        if remaining:
            raise PhasesIncompleteError(
                remaining,
                plan_id=plan.id,
                action=PlanAction.MARK_COMPLETE.value,
                status=plan.status,
            )

    def _on_update(self, plan: QuitPlan, *, content: Mapping[str, Any] | None, **_: Any) -> None:
        fields = self._clean_content(content, plan_id=plan.id, action=PlanAction.UPDATE.value)
        if not fields:
            raise ValidationError(
                "update requires at least one content field",
                plan_id=plan.id,
                action=PlanAction.UPDATE.value,
                status=plan.status,
            )
        for name, value in fields.items():
            setattr(plan, name, value)
        plan.updated_at = self.now()

    def _on_submit(self, plan: QuitPlan, **_: Any) -> None:
        try:
            validate_plan_dates(plan.start_date, plan.end_date, self._policy.min_duration_days)
        except ValidationError as e:
            e.plan_id = plan.id
            e.action = PlanAction.SUBMIT.value
            e.status = plan.status
            raise

    _HANDLERS: dict[PlanAction, Callable[..., None]] = {
        PlanAction.SUBMIT: _on_submit,
        PlanAction.APPROVE: _on_approve_or_accept,
        PlanAction.ACCEPT: _on_approve_or_accept,
        PlanAction.DENY: _on_reject,
        PlanAction.DECLINE: _on_reject,
        PlanAction.MARK_COMPLETE: _on_complete,
        PlanAction.UPDATE: _on_update,
    }

    # =========================================================================
    # Phases
    # =========================================================================

    def mark_phase_complete(
        self,
        plan: QuitPlan,
        phase_id: int,
        acting_role: ActorRole | str,
    ) -> QuitPhase:
        """
        Mark one phase complete. Phases complete strictly in order.

        Completing an already completed phase is a no-op.

        Raises:
            NotFoundError: If the phase is not part of the plan
            InvalidTransitionError: If the plan is not ACTIVE
            ForbiddenError: If the role is not member or coach
            ValidationError: If an earlier phase is still open
        """
        action = EVENT_PHASE_COMPLETED
        role = self._resolve_role(acting_role, action, plan.id, plan.plan_status)
        self._require_active(plan, action)
        if role not in _CREATOR_ROLES:
            raise ForbiddenError(
                f"Role '{role}' may not complete phases",
                plan_id=plan.id,
                action=action,
                status=plan.status,
            )

        phase = self._store.get_phase(plan.id, phase_id)
        if phase.is_completed:
            return phase

        open_before = [
            p.phase_order for p in plan.phases
            if p.phase_order < phase.phase_order and not p.is_completed
        ]
        if open_before:
            raise ValidationError(
                f"Phase {phase.phase_order} cannot be completed before phase {min(open_before)}",
                plan_id=plan.id,
                action=action,
                status=plan.status,
                details={"phase_id": phase_id, "open_phases": open_before},
            )

        phase.is_completed = True
        phase.completion_percentage = 100
        if phase.end_date is None:
            phase.end_date = self.now().date()
        # Touch the plan row so concurrent phase edits conflict on version
        plan.updated_at = self.now()
        self._store.commit()

        logger.info("Quit plan %s: phase %s completed by %s", plan.id, phase.phase_order, role)
        self._notify(plan, action, plan.status, role, {"phase_id": phase.id, "phase_order": phase.phase_order})
        return phase

    def edit_phase_goals(
        self,
        plan: QuitPlan,
        phase_id: int,
        goals: Sequence[str],
        acting_role: ActorRole | str,
    ) -> QuitPhase:
        """
        Replace a phase's goal list. Blank lists fall back to [recommend_goal].

        Raises:
            NotFoundError: If the phase is not part of the plan
            InvalidTransitionError: If the plan is not ACTIVE
            ForbiddenError: If the role is not coach
        """
        action = EVENT_GOALS_EDITED
        role = self._resolve_role(acting_role, action, plan.id, plan.plan_status)
        self._require_active(plan, action)
        if role != ActorRole.COACH:
            raise ForbiddenError(
                f"Role '{role}' may not edit phase goals",
                plan_id=plan.id,
                action=action,
                status=plan.status,
            )

        phase = self._store.get_phase(plan.id, phase_id)
        cleaned = [g.strip() for g in goals if isinstance(g, str) and g.strip()]
        if not cleaned and phase.recommend_goal:
            cleaned = [phase.recommend_goal]
        phase.goals = cleaned
        plan.updated_at = self.now()
        self._store.commit()

        logger.info("Quit plan %s: goals of phase %s edited", plan.id, phase.phase_order)
        self._notify(plan, action, plan.status, role, {"phase_id": phase.id})
        return phase

    def _attach_phases(self, plan: QuitPlan, phase_goals: Any) -> None:
        tier = normalize_tier(plan.addiction_tier)
        if tier is None:
            logger.warning("Quit plan %s has no addiction tier; using %s phases", plan.id, DEFAULT_TIER)
            tier = DEFAULT_TIER
        drafts = build_phase_plan(tier, plan.start_date, phase_goals)
        try:
            validate_phase_order([d.phase_order for d in drafts])
        except ValidationError as e:
            e.plan_id = plan.id
            e.status = plan.status
            raise
        self._store.add_phases(
            plan,
            [
                QuitPhase(
                    phase_order=d.phase_order,
                    name=d.name,
                    objective=d.objective,
                    duration=d.duration,
                    recommend_goal=d.recommend_goal,
                    goals=list(d.goals),
                    is_completed=False,
                    completion_percentage=0,
                    start_date=d.start_date,
                    end_date=d.end_date,
                )
                for d in drafts
            ],
        )

    # =========================================================================
    # Closure
    # =========================================================================

    def attach_final_evaluation(
        self,
        plan: QuitPlan,
        evaluation: str,
        acting_role: ActorRole | str,
    ) -> QuitPlan:
        """
        Attach the coach's sign-off to a COMPLETED plan.

        Raises:
            InvalidTransitionError: If the plan is not COMPLETED
            ForbiddenError: If the role is not coach
            ValidationError: If the evaluation is blank
        """
        action = EVENT_FINAL_EVALUATION
        status = plan.plan_status
        role = self._resolve_role(acting_role, action, plan.id, status)
        if status != PlanStatus.COMPLETED:
            raise InvalidTransitionError(
                "final evaluation can only be attached to a completed plan",
                plan_id=plan.id,
                action=action,
                status=status.value,
            )
        if role != ActorRole.COACH:
            raise ForbiddenError(
                f"Role '{role}' may not evaluate plans",
                plan_id=plan.id,
                action=action,
                status=status.value,
            )
        if not evaluation or not evaluation.strip():
            raise ValidationError("final evaluation must not be empty", plan_id=plan.id, action=action)

        plan.final_evaluation = evaluation.strip()
        self._store.commit()
        self._notify(plan, action, status.value, role)
        return plan

    def expire_overdue_plans(self, today: date | None = None) -> list[QuitPlan]:
        """
        Fail every ACTIVE plan whose end_date has passed without completion.

        Runs as the system role. Safe to run repeatedly: already failed plans
        are skipped, and a plan changed concurrently is retried once against
        fresh state.

        Returns:
            Plans failed by this sweep
        """
        today = today or self.now().date()
        failed: list[QuitPlan] = []
        for plan in self._store.list_overdue_active_plans(today):
            if plan.phases and all(phase.is_completed for phase in plan.phases):
                logger.info("Quit plan %s overdue but all phases done; awaiting coach completion", plan.id)
                continue
            try:
                self.apply_transition(plan, PlanAction.MARK_FAILED, ActorRole.SYSTEM)
            except ConflictError:
                fresh = self._store.get_plan(plan.id)
                self._store.refresh(fresh)
                if fresh.plan_status != PlanStatus.ACTIVE:
                    continue
                self.apply_transition(fresh, PlanAction.MARK_FAILED, ActorRole.SYSTEM)
                plan = fresh
            failed.append(plan)
        if failed:
            logger.info("Expired %d overdue quit plan(s)", len(failed))
        return failed

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve_action(self, action: PlanAction | str, plan: QuitPlan) -> PlanAction:
        try:
            return PlanAction(action)
        except ValueError as e:
            raise InvalidTransitionError(
                f"Unknown action: {action!r}",
                plan_id=plan.id,
                action=str(action),
                status=plan.status,
            ) from e

    def _resolve_role(
        self,
        acting_role: ActorRole | str,
        action: str,
        plan_id: int | None,
        status: PlanStatus | None,
    ) -> ActorRole:
        role = normalize_role(acting_role)
        if role is None:
            raise ForbiddenError(
                f"Unknown role: {acting_role!r}",
                plan_id=plan_id,
                action=action,
                status=status.value if status else None,
            )
        return role

    def _require_active(self, plan: QuitPlan, action: str) -> None:
        if plan.plan_status != PlanStatus.ACTIVE:
            raise InvalidTransitionError(
                f"cannot {action.replace('_', ' ')}: plan is {plan.status}",
                plan_id=plan.id,
                action=action,
                status=plan.status,
            )

    def _require_feedback(self, plan: QuitPlan, feedback: str | None) -> str:
        text = (feedback or "").strip()
        minimum = self._policy.min_feedback_length
        if len(text) < minimum:
            raise ValidationError(
                f"feedback must be at least {minimum} characters",
                plan_id=plan.id,
                status=plan.status,
                details={"min_length": minimum, "length": len(text)},
            )
        return text

    def _clean_content(
        self,
        content: Mapping[str, Any] | None,
        *,
        plan_id: int | None,
        action: str,
    ) -> dict[str, str | None]:
        if not content:
            return {}
        unknown = sorted(set(content) - set(CONTENT_FIELDS))
        if unknown:
            raise ValidationError(
                f"Unknown content field(s): {', '.join(unknown)}",
                plan_id=plan_id,
                action=action,
                details={"fields": unknown},
            )
        cleaned: dict[str, str | None] = {}
        for name, value in content.items():
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"Content field {name} must be text", plan_id=plan_id, action=action)
            cleaned[name] = value
        return cleaned

    def _stamp(self, plan: QuitPlan, action: PlanAction) -> None:
        now = self.now()
        if action == PlanAction.SUBMIT:
            plan.submitted_at = now
        elif action in (PlanAction.APPROVE, PlanAction.ACCEPT):
            plan.approved_at = now
        if plan.plan_status.is_terminal:
            plan.closed_at = now
        plan.updated_at = now

    def _notify(
        self,
        plan: QuitPlan,
        action: str,
        from_status: str | None,
        role: ActorRole,
        details: dict[str, Any] | None = None,
    ) -> None:
        event = TransitionEvent(
            plan_id=plan.id,
            member_id=plan.member_id,
            action=action,
            from_status=from_status,
            to_status=plan.status,
            role=role.value,
            occurred_at=self.now(),
            details=details or {},
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                # Delivery failures never undo a committed transition
                logger.exception("Transition listener failed for plan %s (%s)", plan.id, action)


__all__ = [
    "LifecycleEngine",
    "TransitionEvent",
    "TransitionListener",
    "validate_plan_dates",
    "DEFAULT_TIER",
]
