"""
Plan Store for the Quit-Plan Engine.

SQLAlchemy-backed storage for quit plans and their phases. Only the
Lifecycle Engine and the Quit Plan Service call the mutating methods.

Concurrency: QuitPlan.version is the mapper's version_id_col, so a write
against a row someone else already updated fails with StaleDataError. That
is surfaced as ConflictError so the caller can refetch and retry. Two
sessions racing to flag a member's newest plan hit the partial unique index
instead, which is surfaced the same way.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from src.core.status import PlanStatus
from src.lib.exceptions import ConflictError, NotFoundError, StoreError
from src.models.quit_phase import QuitPhase
from src.models.quit_plan import NEWEST_PLAN_INDEX, QuitPlan

logger = logging.getLogger(__name__)


class PlanStore:
    """
    Persistence for QuitPlan / QuitPhase.

    Usage:
        store = PlanStore(session)
        plan = store.get_plan(42)
        ...
        store.commit()
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_plan(self, plan_id: int) -> QuitPlan:
        """
        Load a plan by id.

        Raises:
            NotFoundError: If no plan has this id
        """
        plan = self._session.get(QuitPlan, plan_id)
        if plan is None:
            raise NotFoundError(f"Quit plan {plan_id} not found", plan_id=plan_id)
        return plan

    def get_phase(self, plan_id: int, phase_id: int) -> QuitPhase:
        """
        Load a phase that belongs to `plan_id`.

        Raises:
            NotFoundError: If the phase does not exist or belongs to another plan
        """
        phase = self._session.get(QuitPhase, phase_id)
        if phase is None or phase.plan_id != plan_id:
            raise NotFoundError(
                f"Phase {phase_id} not found in plan {plan_id}",
                plan_id=plan_id,
                details={"phase_id": phase_id},
            )
        return phase

    def get_phases(self, plan_id: int) -> list[QuitPhase]:
        """Phases of a plan in phase_order."""
        stmt = select(QuitPhase).where(QuitPhase.plan_id == plan_id).order_by(QuitPhase.phase_order)
        return list(self._session.scalars(stmt))

    def get_newest_plan(self, member_id: int) -> QuitPlan | None:
        """The member's plan flagged is_newest, or None."""
        stmt = (
            select(QuitPlan)
            .where(QuitPlan.member_id == member_id, QuitPlan.is_newest.is_(True))
            .order_by(QuitPlan.id.desc())
        )
        return self._session.scalars(stmt).first()

    def list_member_plans(self, member_id: int) -> list[QuitPlan]:
        """All plans of a member, newest first."""
        stmt = (
            select(QuitPlan)
            .where(QuitPlan.member_id == member_id)
            .order_by(QuitPlan.created_at.desc(), QuitPlan.id.desc())
        )
        return list(self._session.scalars(stmt))

    def list_coach_plans(self, coach_id: int) -> list[QuitPlan]:
        """All plans assigned to a coach, newest first."""
        stmt = (
            select(QuitPlan)
            .where(QuitPlan.coach_id == coach_id)
            .order_by(QuitPlan.created_at.desc(), QuitPlan.id.desc())
        )
        return list(self._session.scalars(stmt))

    def list_overdue_active_plans(self, today: date) -> list[QuitPlan]:
        """ACTIVE plans whose end_date is before `today`."""
        stmt = select(QuitPlan).where(
            QuitPlan.status == PlanStatus.ACTIVE.value,
            QuitPlan.end_date.is_not(None),
            QuitPlan.end_date < today,
        )
        return list(self._session.scalars(stmt))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, plan: QuitPlan) -> QuitPlan:
        """Stage a new plan for insert."""
        self._session.add(plan)
        return plan

    def add_phases(self, plan: QuitPlan, phases: Sequence[QuitPhase]) -> None:
        """Attach phases to a plan."""
        for phase in phases:
            plan.phases.append(phase)

    def set_newest(self, plan: QuitPlan) -> None:
        """
        Make `plan` the member's only newest plan.

        Clears the flag on every other plan of the same member first.
        """
        others = update(QuitPlan).where(
            QuitPlan.member_id == plan.member_id,
            QuitPlan.is_newest.is_(True),
        )
        if plan.id is not None:
            others = others.where(QuitPlan.id != plan.id)
        # Bulk update bypasses version_id_col: clearing the flag is not a content write
        self._session.execute(
            others.values(is_newest=False).execution_options(synchronize_session="fetch")
        )
        plan.is_newest = True

    def check_version(self, plan: QuitPlan, expected_version: int | None) -> None:
        """
        Fail fast if the caller's copy of the plan is stale.

        Raises:
            ConflictError: If expected_version is given and differs from plan.version
        """
        if expected_version is not None and plan.version != expected_version:
            raise ConflictError(
                f"Quit plan {plan.id} is at version {plan.version}, expected {expected_version}",
                plan_id=plan.id,
                status=plan.status,
                details={"expected_version": expected_version, "current_version": plan.version},
            )

    def flush(self) -> None:
        """Flush pending changes (assigns ids) without committing."""
        self._write(self._session.flush)

    def commit(self) -> None:
        """Commit the unit of work."""
        self._write(self._session.commit)

    def rollback(self) -> None:
        self._session.rollback()

    def refresh(self, plan: QuitPlan) -> QuitPlan:
        """Reload a plan's state from the database."""
        self._session.refresh(plan)
        return plan

    def _write(self, operation) -> None:
        try:
            operation()
        except StaleDataError as e:
            self._session.rollback()
            logger.info("Version conflict on quit plan write: %s", e)
            raise ConflictError("The plan was modified concurrently; reload and retry") from e
        except IntegrityError as e:
            self._session.rollback()
            if _violates_newest_index(e):
                logger.info("Concurrent newest-plan write rejected: %s", e)
                raise ConflictError(
                    "Another plan became the member's newest plan concurrently; reload and retry"
                ) from e
            logger.error("Integrity error on quit plan write: %s", e)
            raise StoreError("The plan could not be saved (integrity constraint)") from e
        except SQLAlchemyError as e:
            self._session.rollback()
            logger.error("Store failure on quit plan write: %s", e)
            raise StoreError("The plan store is unavailable") from e


def _violates_newest_index(error: IntegrityError) -> bool:
    # PostgreSQL names the index; SQLite names the indexed column
    message = str(error.orig)
    return NEWEST_PLAN_INDEX in message or "quit_plans.member_id" in message


def total_pages(total: int, page_size: int) -> int:
    """Number of pages needed for `total` items."""
    if page_size <= 0:
        return 0
    return math.ceil(total / page_size)


__all__ = ["PlanStore", "total_pages"]
