"""
Shared test fixtures for the Quit-Plan Engine.

This module provides common fixtures used across all test modules:
- Environment setup (dev mode, API secret)
- Database engine and session (in-memory SQLite)
- Default policy, reset around every test
- A fixed clock and a LifecycleEngine / QuitPlanService wired to the session
- make_plan: insert a plan directly in any status

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

import os
from datetime import UTC, date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# 1. Environment setup -- must run before any application imports
# ---------------------------------------------------------------------------

os.environ.setdefault("QUITPLAN_DEV_MODE", "1")
os.environ.setdefault(
    "QUITPLAN_API_SECRET_KEY",
    "test-secret-key-for-jwt-signing-at-least-32-bytes-long",
)

# ---------------------------------------------------------------------------
# Application imports (after env vars are set)
# ---------------------------------------------------------------------------

from src.config.policy import PolicyConfig, set_policy  # noqa: E402
from src.core.status import PlanStatus  # noqa: E402
from src.models import Base, QuitPhase, QuitPlan  # noqa: E402
from src.services.lifecycle_engine import LifecycleEngine  # noqa: E402
from src.services.plan_store import PlanStore  # noqa: E402
from src.services.quit_plan_service import QuitPlanService  # noqa: E402

FIXED_NOW = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)
PLAN_START = date(2025, 1, 1)
PLAN_END = date(2025, 3, 1)


# ---------------------------------------------------------------------------
# 2. Policy -- every test starts from the defaults
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def default_policy():
    """Install the default PolicyConfig for the duration of a test."""
    policy = PolicyConfig()
    set_policy(policy)
    yield policy
    set_policy(None)


# ---------------------------------------------------------------------------
# 3. db_engine / db_session -- in-memory SQLite
# ---------------------------------------------------------------------------

@pytest.fixture()
def db_engine():
    """
    In-memory SQLite engine shared by every connection (StaticPool), so that
    sync FastAPI endpoints running in a worker thread see the same database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(db_engine):
    """
    Provide a SQLAlchemy session backed by the in-memory database.

    A fresh database is created for every test that requests this fixture.
    """
    TestingSession = sessionmaker(bind=db_engine, expire_on_commit=False)
    session = TestingSession()

    yield session

    session.close()


# ---------------------------------------------------------------------------
# 4. Engine / service wiring
# ---------------------------------------------------------------------------

@pytest.fixture()
def clock():
    """A clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture()
def events():
    """Collects TransitionEvents delivered to listeners."""
    return []


@pytest.fixture()
def store(db_session):
    return PlanStore(db_session)


@pytest.fixture()
def engine(store, default_policy, clock, events):
    return LifecycleEngine(store, policy=default_policy, listeners=[events.append], clock=clock)


@pytest.fixture()
def service(db_session, default_policy, clock, events):
    return QuitPlanService(db_session, policy=default_policy, notifier=events.append, clock=clock)


# ---------------------------------------------------------------------------
# 5. make_plan -- insert a plan in any status without going through the engine
# ---------------------------------------------------------------------------

@pytest.fixture()
def make_plan(db_session):
    """
    Factory inserting a QuitPlan row directly.

    Example::

        def test_something(make_plan):
            plan = make_plan(PlanStatus.ACTIVE, phases=[True, False])
    """

    def _make(
        status: PlanStatus | str = PlanStatus.DRAFT,
        *,
        member_id: int = 1,
        coach_id: int | None = 10,
        author_role: str = "member",
        is_newest: bool = False,
        phases: list[bool] | None = None,
        **fields,
    ) -> QuitPlan:
        fields.setdefault("start_date", PLAN_START)
        fields.setdefault("end_date", PLAN_END)
        fields.setdefault("addiction_tier", "LOW")
        plan = QuitPlan(
            member_id=member_id,
            coach_id=coach_id,
            author_role=author_role,
            status=PlanStatus(status).value,
            is_newest=is_newest,
            **fields,
        )
        for order, done in enumerate(phases or [], start=1):
            plan.phases.append(
                QuitPhase(
                    phase_order=order,
                    name=f"Phase {order}",
                    recommend_goal=f"Goal {order}",
                    goals=[f"Goal {order}"],
                    is_completed=done,
                    completion_percentage=100 if done else 0,
                )
            )
        db_session.add(plan)
        db_session.commit()
        return plan

    return _make
