"""
Models package for the Quit-Plan Engine.

This package exports all SQLAlchemy models.

Usage:
    from src.models import QuitPlan, QuitPhase
"""

from src.models.base import Base
from src.models.quit_phase import QuitPhase
from src.models.quit_plan import CONTENT_FIELDS, QuitPlan

__all__ = [
    "Base",
    "QuitPlan",
    "QuitPhase",
    "CONTENT_FIELDS",
]
