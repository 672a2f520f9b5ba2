"""
QuitPhase Model for the Quit-Plan Engine.

An ordered stage of an active plan (preparation, action, maintenance...).
phase_order is 1-based and contiguous within a plan; phases are only ever
marked complete, never reordered.
"""

from sqlalchemy import JSON, Boolean, Column, Date, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from src.models.base import Base


class QuitPhase(Base):
    """
    QuitPhase model.

    Attributes:
        id: Primary key
        plan_id: Foreign key to quit_plans.id
        phase_order: 1-based position within the plan
        name / objective / duration: Template text
        recommend_goal: Template's recommended goal
        goals: Ordered list of goal strings (editable)
        is_completed: Phase finished
        completion_percentage: 0-100
        start_date / end_date: Scheduled window
    """

    __tablename__ = "quit_phases"

    plan = relationship("QuitPlan", back_populates="phases")

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(
        Integer,
        ForeignKey("quit_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phase_order = Column(Integer, nullable=False)

    name = Column(String(200), nullable=False)
    objective = Column(Text, nullable=True)
    duration = Column(String(100), nullable=True)
    recommend_goal = Column(Text, nullable=True)
    goals = Column(JSON, nullable=False, default=list)

    is_completed = Column(Boolean, nullable=False, default=False)
    completion_percentage = Column(Integer, nullable=False, default=0)

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("plan_id", "phase_order", name="uq_quit_phase_plan_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuitPhase(id={self.id}, plan_id={self.plan_id}, "
            f"order={self.phase_order}, completed={self.is_completed})>"
        )


__all__ = ["QuitPhase"]
