"""
QuitPlan Model for the Quit-Plan Engine.

A member's cessation plan: the root aggregate of the engine. Plans are never
deleted; superseded plans stay in the table as history with is_newest=False.
"""

from datetime import UTC, date, datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from src.core.status import ActorRole, PlanStatus
from src.models.base import Base

# Partial unique index: one is_newest plan per member
NEWEST_PLAN_INDEX = "uq_quit_plan_member_newest"

# Free-text fields the engine never interprets
CONTENT_FIELDS: tuple[str, ...] = (
    "motivation",
    "coping_strategies",
    "medications_to_use",
    "medication_instructions",
    "smoking_triggers_to_avoid",
    "relapse_prevention_strategies",
    "support_resources",
    "reward_plan",
    "additional_notes",
)


class QuitPlan(Base):
    """
    QuitPlan model.

    Attributes:
        id: Primary key
        member_id: Owning member
        coach_id: Assigned coach (None while a member-authored draft)
        author_role: member | coach, decides which approval flow applies
        status: Canonical PlanStatus value
        start_date / end_date: Intended plan window
        is_newest: The member's currently authoritative plan
        addiction_tier: Severity tier used to pick default phases
        progress_in_day / duration_in_days: Server counters (override date math)
        completion_quality: Server-supplied outcome label
        final_evaluation: Coach sign-off (COMPLETED only)
        feedback: Last approve/deny/decline feedback
        version: Optimistic-concurrency counter, bumped on every UPDATE
    """

    __tablename__ = "quit_plans"

    phases = relationship(
        "QuitPhase",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="QuitPhase.phase_order",
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, nullable=False, index=True)
    coach_id = Column(Integer, nullable=True, index=True)
    author_role = Column(String(10), nullable=False, default=ActorRole.MEMBER.value)

    status = Column(String(20), nullable=False, default=PlanStatus.DRAFT.value)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_newest = Column(Boolean, nullable=False, default=False)
    addiction_tier = Column(String(10), nullable=True)

    # Content (opaque to the engine)
    motivation = Column(Text, nullable=True)
    coping_strategies = Column(Text, nullable=True)
    medications_to_use = Column(Text, nullable=True)
    medication_instructions = Column(Text, nullable=True)
    smoking_triggers_to_avoid = Column(Text, nullable=True)
    relapse_prevention_strategies = Column(Text, nullable=True)
    support_resources = Column(Text, nullable=True)
    reward_plan = Column(Text, nullable=True)
    additional_notes = Column(Text, nullable=True)

    # Denormalised for history search
    coach_name = Column(String(200), nullable=True)

    # Server counters and evaluation
    progress_in_day = Column(Integer, nullable=True)
    duration_in_days = Column(Integer, nullable=True)
    completion_quality = Column(String(50), nullable=True)
    final_evaluation = Column(Text, nullable=True)
    feedback = Column(Text, nullable=True)

    # Transition timestamps
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            NEWEST_PLAN_INDEX,
            "member_id",
            unique=True,
            postgresql_where=is_newest.is_(True),
            sqlite_where=is_newest.is_(True),
        ),
        Index("idx_quit_plan_member_status", "member_id", "status"),
        Index("idx_quit_plan_coach_id", "coach_id"),
    )

    @property
    def plan_status(self) -> PlanStatus:
        """Status as the canonical enum."""
        return PlanStatus(self.status)

    @property
    def planned_days(self) -> int | None:
        """Days between start and end, or None if either date is missing."""
        if not isinstance(self.start_date, date) or not isinstance(self.end_date, date):
            return None
        return (self.end_date - self.start_date).days

    def content(self) -> dict[str, str | None]:
        """Return the free-text content fields as a dict."""
        return {name: getattr(self, name) for name in CONTENT_FIELDS}

    def __repr__(self) -> str:
        return (
            f"<QuitPlan(id={self.id}, member_id={self.member_id}, "
            f"status={self.status}, is_newest={self.is_newest})>"
        )


__all__ = ["QuitPlan", "CONTENT_FIELDS", "NEWEST_PLAN_INDEX"]
