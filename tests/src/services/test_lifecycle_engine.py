"""
Tests for the Lifecycle Engine.

Verifies:
- Every (status, action, role) combination against the transition table
- Feedback rules for deny/decline
- The one-newest-plan-per-member invariant
- Phase attachment on activation and strict phase ordering
- Completion guard, idempotent mark_failed, the overdue sweep
- Optimistic concurrency and listener notification
"""

from __future__ import annotations

import itertools
from datetime import date

import pytest
import structlog

from src.core.status import ActorRole, PlanAction, PlanStatus
from src.core.transitions import find_rule
from src.lib.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PhasesIncompleteError,
    ValidationError,
)
from src.services import lifecycle_engine
from src.services.lifecycle_engine import LifecycleEngine, validate_plan_dates
from src.services.phase_decomposer import PhaseDraft

PLAN_START = date(2025, 1, 1)
PLAN_END = date(2025, 3, 1)
FEEDBACK = "Please add more coping ideas"  # 28 characters


# =============================================================================
# Transition grid
# =============================================================================

GRID = list(itertools.product(PlanStatus, PlanAction, ActorRole))


@pytest.mark.parametrize(
    ("status", "action", "role"),
    GRID,
    ids=[f"{s.value}-{a.value}-{r.value}" for s, a, r in GRID],
)
def test_transition_grid(engine, make_plan, status, action, role) -> None:
    phases = [True] if status == PlanStatus.ACTIVE else None
    plan = make_plan(status, phases=phases)
    kwargs = {"feedback": FEEDBACK, "content": {"motivation": "For my kids"}}
    rule = find_rule(status, action)

    if action == PlanAction.MARK_FAILED and status == PlanStatus.FAILED and role in (
        ActorRole.COACH,
        ActorRole.SYSTEM,
    ):
        version = plan.version
        engine.apply_transition(plan, action, role, **kwargs)
        assert plan.plan_status == PlanStatus.FAILED
        assert plan.version == version
    elif rule is None:
        with pytest.raises(InvalidTransitionError):
            engine.apply_transition(plan, action, role, **kwargs)
        assert plan.plan_status == status
    elif role not in rule.roles:
        with pytest.raises(ForbiddenError):
            engine.apply_transition(plan, action, role, **kwargs)
        assert plan.plan_status == status
    else:
        engine.apply_transition(plan, action, role, **kwargs)
        assert plan.plan_status == rule.target


# =============================================================================
# Creation
# =============================================================================


class TestCreateDraft:
    """Test draft creation."""

    def test_creates_newest_draft(self, engine, make_plan, events) -> None:
        old = make_plan(PlanStatus.COMPLETED, is_newest=True)
        plan = engine.create_draft(
            1,
            {"motivation": "Health"},
            "member",
            start_date=PLAN_START,
            end_date=PLAN_END,
            addiction_tier="heavy",
        )
        engine.store.refresh(old)
        assert plan.plan_status == PlanStatus.DRAFT
        assert plan.is_newest
        assert not old.is_newest
        assert plan.addiction_tier == "HIGH"
        assert plan.author_role == "member"
        assert events[-1].action == "create"

    def test_rejects_open_plan(self, engine, make_plan) -> None:
        make_plan(PlanStatus.ACTIVE, is_newest=True)
        with pytest.raises(ValidationError):
            engine.create_draft(1, None, "member", start_date=PLAN_START, end_date=PLAN_END)

    @pytest.mark.parametrize("role", ["admin", "system"])
    def test_forbidden_roles(self, engine, role: str) -> None:
        with pytest.raises(ForbiddenError):
            engine.create_draft(1, None, role, start_date=PLAN_START, end_date=PLAN_END)

    def test_unknown_role(self, engine) -> None:
        with pytest.raises(ForbiddenError):
            engine.create_draft(1, None, "janitor", start_date=PLAN_START, end_date=PLAN_END)

    def test_too_short(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.create_draft(1, None, "coach", start_date=PLAN_START, end_date=date(2025, 1, 20))

    def test_unknown_content_field(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.create_draft(1, {"favourite_colour": "red"}, "member", start_date=PLAN_START, end_date=PLAN_END)

    def test_unknown_tier(self, engine) -> None:
        with pytest.raises(ValidationError):
            engine.create_draft(1, None, "member", start_date=PLAN_START, end_date=PLAN_END, addiction_tier="x")


class TestValidatePlanDates:
    """Test the date window check."""

    def test_exact_minimum(self) -> None:
        validate_plan_dates(date(2025, 1, 1), date(2025, 1, 31), 30)

    def test_missing(self) -> None:
        with pytest.raises(ValidationError):
            validate_plan_dates(None, date(2025, 1, 31), 30)

    def test_end_before_start(self) -> None:
        with pytest.raises(ValidationError):
            validate_plan_dates(date(2025, 2, 1), date(2025, 1, 1), 30)


# =============================================================================
# Approval flows
# =============================================================================


class TestApproval:
    """approve / accept / deny / decline."""

    def test_deny_feedback_length(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.PENDING_APPROVAL, is_newest=True)
        with pytest.raises(ValidationError):
            engine.apply_transition(plan, "deny", "coach", feedback="too short")
        assert plan.plan_status == PlanStatus.PENDING_APPROVAL

        engine.apply_transition(plan, "deny", "coach", feedback="a" * 25)
        assert plan.plan_status == PlanStatus.DENIED
        assert plan.is_newest
        assert plan.feedback == "a" * 25
        assert plan.closed_at is not None

    def test_feedback_is_stripped_before_counting(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.PENDING_APPROVAL)
        with pytest.raises(ValidationError):
            engine.apply_transition(plan, "decline", "member", feedback="   short   " + " " * 20)

    def test_approve_attaches_phases(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.PENDING_APPROVAL, addiction_tier="MEDIUM")
        engine.apply_transition(plan, "approve", "coach", phase_goals={0: ["Pick a quit date"]})
        assert plan.plan_status == PlanStatus.ACTIVE
        assert plan.is_newest
        assert plan.approved_at is not None
        assert [p.phase_order for p in plan.phases] == [1, 2, 3, 4]
        assert plan.phases[0].goals == ["Pick a quit date"]
        assert plan.phases[1].goals == [plan.phases[1].recommend_goal]
        assert plan.phases[0].start_date == PLAN_START

    def test_approve_without_tier_uses_default(self, engine, make_plan, caplog) -> None:
        plan = make_plan(PlanStatus.PENDING_APPROVAL, addiction_tier=None)
        engine.apply_transition(plan, "approve", "coach")
        assert len(plan.phases) == 4
        assert "no addiction tier" in caplog.text

    def test_accept_fills_missing_dates(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.PENDING_APPROVAL, start_date=None, end_date=None, duration_in_days=42)
        engine.apply_transition(plan, "accept", "member")
        assert plan.start_date == date(2025, 1, 1)
        assert plan.end_date == date(2025, 2, 12)

    def test_activation_supersedes_newest(self, engine, make_plan) -> None:
        old = make_plan(PlanStatus.FAILED, is_newest=True)
        plan = make_plan(PlanStatus.PENDING_APPROVAL)
        engine.apply_transition(plan, "approve", "coach")
        engine.store.refresh(old)
        assert plan.is_newest
        assert not old.is_newest

    def test_failed_approval_keeps_newest(self, engine, make_plan) -> None:
        old = make_plan(PlanStatus.FAILED, is_newest=True)
        plan = make_plan(PlanStatus.PENDING_APPROVAL)
        with pytest.raises(ValidationError):
            engine.apply_transition(plan, "approve", "coach", phase_goals={9: ["bad index"]})
        engine.store.refresh(old)
        assert old.is_newest
        assert not plan.is_newest
        assert plan.phases == []

    def test_approval_rejects_gapped_phase_order(self, engine, make_plan, monkeypatch) -> None:
        def gapped(tier, start, overrides):
            return [
                PhaseDraft(phase_order=order, name=f"Phase {order}", objective="", duration="", recommend_goal="Rest")
                for order in (1, 3)
            ]

        monkeypatch.setattr(lifecycle_engine, "build_phase_plan", gapped)
        plan = make_plan(PlanStatus.PENDING_APPROVAL)
        with pytest.raises(ValidationError) as exc_info:
            engine.apply_transition(plan, "approve", "coach")
        assert exc_info.value.plan_id == plan.id
        assert plan.plan_status == PlanStatus.PENDING_APPROVAL
        assert plan.phases == []


# =============================================================================
# Active plans
# =============================================================================


class TestActive:
    """update / mark_complete / mark_failed."""

    def test_update_requires_content(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE)
        with pytest.raises(ValidationError):
            engine.apply_transition(plan, "update", "coach", content={})

    def test_update_sets_content(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE)
        version = plan.version
        engine.apply_transition(plan, "update", "coach", content={"reward_plan": "A trip"})
        assert plan.reward_plan == "A trip"
        assert plan.plan_status == PlanStatus.ACTIVE
        assert plan.version == version + 1

    def test_complete_with_open_phases(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[True, False, False])
        with pytest.raises(PhasesIncompleteError) as exc_info:
            engine.apply_transition(plan, "mark_complete", "coach")
        assert str(exc_info.value) == "cannot complete: 2 phases remaining"
        assert plan.plan_status == PlanStatus.ACTIVE

    def test_complete_without_phases(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE)
        engine.apply_transition(plan, "mark_complete", "coach")
        assert plan.plan_status == PlanStatus.COMPLETED

    def test_mark_failed_twice(self, engine, make_plan, events) -> None:
        plan = make_plan(PlanStatus.ACTIVE)
        engine.apply_transition(plan, "mark_failed", "system")
        engine.apply_transition(plan, "mark_failed", "coach")
        assert plan.plan_status == PlanStatus.FAILED
        assert [e.action for e in events] == ["mark_failed"]

    def test_terminal_message(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError, match="already COMPLETED"):
            engine.apply_transition(plan, "cancel", "member")

    def test_unknown_action(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.DRAFT)
        with pytest.raises(InvalidTransitionError):
            engine.apply_transition(plan, "archive", "member")

    def test_expected_version_conflict(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.DRAFT)
        with pytest.raises(ConflictError):
            engine.apply_transition(plan, "submit", "member", expected_version=plan.version + 1)
        assert plan.plan_status == PlanStatus.DRAFT

    def test_submit_stamps(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.DRAFT)
        engine.apply_transition(plan, "submit", "member", expected_version=plan.version)
        assert plan.plan_status == PlanStatus.PENDING_APPROVAL
        assert plan.submitted_at is not None

    def test_submit_revalidates_dates(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.DRAFT, end_date=date(2025, 1, 10))
        with pytest.raises(ValidationError) as exc_info:
            engine.apply_transition(plan, "submit", "member")
        assert exc_info.value.plan_id == plan.id


# =============================================================================
# Phases
# =============================================================================


class TestPhases:
    """Phase completion and goal editing."""

    def test_in_order(self, engine, make_plan, events) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False, False])
        first, second = plan.phases
        phase = engine.mark_phase_complete(plan, first.id, "member")
        assert phase.is_completed
        assert phase.completion_percentage == 100
        assert events[-1].action == "phase_complete"
        engine.mark_phase_complete(plan, second.id, "coach")
        assert all(p.is_completed for p in plan.phases)

    def test_out_of_order(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False, False, False])
        with pytest.raises(ValidationError) as exc_info:
            engine.mark_phase_complete(plan, plan.phases[2].id, "member")
        assert exc_info.value.details["open_phases"] == [1, 2]

    def test_already_completed_is_noop(self, engine, make_plan, events) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[True])
        engine.mark_phase_complete(plan, plan.phases[0].id, "member")
        assert events == []

    def test_requires_active(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.COMPLETED, phases=[False])
        with pytest.raises(InvalidTransitionError):
            engine.mark_phase_complete(plan, plan.phases[0].id, "coach")

    def test_system_may_not_complete_phases(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False])
        with pytest.raises(ForbiddenError):
            engine.mark_phase_complete(plan, plan.phases[0].id, "system")

    def test_unknown_phase(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False])
        with pytest.raises(NotFoundError):
            engine.mark_phase_complete(plan, 999, "member")

    def test_edit_goals(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False])
        phase = engine.edit_phase_goals(plan, plan.phases[0].id, [" Walk ", "", "Drink water"], "coach")
        assert phase.goals == ["Walk", "Drink water"]

    def test_edit_goals_blank_falls_back(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False])
        phase = engine.edit_phase_goals(plan, plan.phases[0].id, ["  "], "coach")
        assert phase.goals == ["Goal 1"]

    def test_edit_goals_member_forbidden(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[False])
        with pytest.raises(ForbiddenError):
            engine.edit_phase_goals(plan, plan.phases[0].id, ["x"], "member")


# =============================================================================
# Closure
# =============================================================================


class TestClosure:
    """Final evaluation and the overdue sweep."""

    def test_final_evaluation(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.COMPLETED)
        engine.attach_final_evaluation(plan, "  Great work  ", "coach")
        assert plan.final_evaluation == "Great work"

    def test_final_evaluation_requires_completed(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE)
        with pytest.raises(InvalidTransitionError):
            engine.attach_final_evaluation(plan, "Great work", "coach")

    def test_final_evaluation_checks(self, engine, make_plan) -> None:
        plan = make_plan(PlanStatus.COMPLETED)
        with pytest.raises(ForbiddenError):
            engine.attach_final_evaluation(plan, "Great work", "member")
        with pytest.raises(ValidationError):
            engine.attach_final_evaluation(plan, "   ", "coach")

    def test_expire_overdue(self, engine, make_plan, events) -> None:
        overdue = make_plan(PlanStatus.ACTIVE, end_date=date(2025, 1, 31), phases=[True, False])
        done = make_plan(PlanStatus.ACTIVE, member_id=2, end_date=date(2025, 1, 31), phases=[True])
        current = make_plan(PlanStatus.ACTIVE, member_id=3, end_date=date(2025, 3, 1))

        failed = engine.expire_overdue_plans(today=date(2025, 2, 1))

        assert failed == [overdue]
        assert overdue.plan_status == PlanStatus.FAILED
        assert done.plan_status == PlanStatus.ACTIVE
        assert current.plan_status == PlanStatus.ACTIVE
        assert events[-1].role == "system"

        assert engine.expire_overdue_plans(today=date(2025, 2, 1)) == []


# =============================================================================
# Listeners
# =============================================================================


class TestListeners:
    """Event delivery."""

    def test_event_contents(self, engine, make_plan, events) -> None:
        plan = make_plan(PlanStatus.DRAFT)
        engine.apply_transition(plan, "submit", "coach")
        event = events[-1]
        assert event.plan_id == plan.id
        assert event.from_status == "DRAFT"
        assert event.to_status == "PENDING_APPROVAL"
        assert event.to_dict()["role"] == "coach"

    def test_failing_listener_does_not_undo(self, store, default_policy, clock, make_plan) -> None:
        def broken(event) -> None:
            raise RuntimeError("mail server down")

        engine = LifecycleEngine(store, policy=default_policy, listeners=[broken], clock=clock)
        plan = make_plan(PlanStatus.DRAFT)
        engine.apply_transition(plan, "cancel", "member")
        store.refresh(plan)
        assert plan.plan_status == PlanStatus.CANCELLED

    def test_listeners_run_inside_plan_log_context(self, store, default_policy, clock, make_plan) -> None:
        seen: list[dict] = []
        engine = LifecycleEngine(
            store,
            policy=default_policy,
            listeners=[lambda event: seen.append(structlog.contextvars.get_contextvars())],
            clock=clock,
        )
        plan = make_plan(PlanStatus.DRAFT, member_id=5)
        engine.apply_transition(plan, PlanAction.SUBMIT, ActorRole.MEMBER)
        assert seen == [{"plan_id": plan.id, "member_id": 5, "action": "submit", "role": "member"}]
        assert "plan_id" not in structlog.contextvars.get_contextvars()
