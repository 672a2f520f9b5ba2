"""
Tests for the SQLAlchemy plan store.
"""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import text

from src.core.status import PlanStatus
from src.lib.exceptions import ConflictError, NotFoundError
from src.models import QuitPhase, QuitPlan
from src.services.plan_store import total_pages


class TestReads:
    """Lookups by id, member and coach."""

    def test_get_plan(self, store, make_plan) -> None:
        plan = make_plan()
        assert store.get_plan(plan.id) is plan

    def test_get_plan_missing(self, store) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            store.get_plan(999)
        assert exc_info.value.plan_id == 999

    def test_get_phase_of_other_plan(self, store, make_plan) -> None:
        first = make_plan(PlanStatus.ACTIVE, phases=[False])
        second = make_plan(PlanStatus.ACTIVE, member_id=2, phases=[False])
        with pytest.raises(NotFoundError):
            store.get_phase(first.id, second.phases[0].id)

    def test_get_phases_ordered(self, store, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE, phases=[True, False, False])
        assert [p.phase_order for p in store.get_phases(plan.id)] == [1, 2, 3]

    def test_get_newest_plan(self, store, make_plan) -> None:
        make_plan(PlanStatus.FAILED)
        newest = make_plan(PlanStatus.ACTIVE, is_newest=True)
        assert store.get_newest_plan(1) is newest
        assert store.get_newest_plan(2) is None

    def test_list_member_and_coach_plans(self, store, make_plan) -> None:
        a = make_plan(member_id=1, coach_id=10)
        b = make_plan(member_id=1, coach_id=11)
        make_plan(member_id=2, coach_id=10)
        assert {p.id for p in store.list_member_plans(1)} == {a.id, b.id}
        assert len(store.list_coach_plans(10)) == 2

    def test_list_overdue_active_plans(self, store, make_plan) -> None:
        overdue = make_plan(PlanStatus.ACTIVE, end_date=date(2025, 1, 31))
        make_plan(PlanStatus.ACTIVE, member_id=2, end_date=date(2025, 3, 1))
        make_plan(PlanStatus.COMPLETED, member_id=3, end_date=date(2025, 1, 15))
        assert store.list_overdue_active_plans(date(2025, 2, 1)) == [overdue]


class TestWrites:
    """Newest flag and version handling."""

    def test_set_newest_clears_others(self, store, make_plan) -> None:
        old = make_plan(PlanStatus.COMPLETED, is_newest=True)
        other_member = make_plan(PlanStatus.ACTIVE, member_id=2, is_newest=True)
        new = make_plan(PlanStatus.DRAFT)
        store.set_newest(new)
        store.commit()
        store.refresh(old)
        assert new.is_newest
        assert not old.is_newest
        assert other_member.is_newest

    def test_version_starts_at_one_and_bumps(self, store, make_plan) -> None:
        plan = make_plan()
        assert plan.version == 1
        plan.motivation = "Breathe easier"
        store.commit()
        assert plan.version == 2

    def test_check_version(self, store, make_plan) -> None:
        plan = make_plan()
        store.check_version(plan, None)
        store.check_version(plan, plan.version)
        with pytest.raises(ConflictError) as exc_info:
            store.check_version(plan, plan.version + 5)
        assert exc_info.value.details["current_version"] == plan.version

    def test_second_newest_plan_is_conflict(self, store, make_plan) -> None:
        # Another session already committed member 1's newest plan
        make_plan(PlanStatus.ACTIVE, is_newest=True)
        store.add(QuitPlan(member_id=1, author_role="member", status="DRAFT", is_newest=True))
        with pytest.raises(ConflictError):
            store.commit()

        assert store.get_newest_plan(1).plan_status == PlanStatus.ACTIVE
        store.add(QuitPlan(member_id=2, author_role="member", status="DRAFT", is_newest=True))
        store.commit()
        assert store.get_newest_plan(2) is not None

    def test_stale_write_is_conflict(self, store, db_session, make_plan) -> None:
        plan = make_plan()
        db_session.execute(
            text("UPDATE quit_plans SET version = version + 1 WHERE id = :id"),
            {"id": plan.id},
        )
        plan.motivation = "changed"
        with pytest.raises(ConflictError):
            store.commit()

    def test_add_phases(self, store, make_plan) -> None:
        plan = make_plan(PlanStatus.ACTIVE)
        store.add_phases(plan, [QuitPhase(phase_order=1, name="Preparation", goals=["g"])])
        store.commit()
        assert len(store.get_phases(plan.id)) == 1


@pytest.mark.parametrize(
    ("total", "size", "expected"),
    [(0, 10, 0), (10, 10, 1), (11, 10, 2), (5, 0, 0)],
)
def test_total_pages(total: int, size: int, expected: int) -> None:
    assert total_pages(total, size) == expected
