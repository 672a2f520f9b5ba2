"""
Policy Configuration for the Quit-Plan Engine.

Policy constants that product owners tune without code changes:
- Minimum plan duration (days between start and end at creation)
- Minimum feedback length for deny/decline
- Outcome-label thresholds (excellent / good / fair)
- History pagination defaults

Every value can be overridden through an environment variable. The defaults
are the values the coaching product has always used.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from src.lib.exceptions import ConfigurationError

DEFAULT_MIN_DURATION_DAYS = 30
DEFAULT_MIN_FEEDBACK_LENGTH = 20
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Outcome buckets, percent >= threshold
DEFAULT_EXCELLENT_THRESHOLD = 90
DEFAULT_GOOD_THRESHOLD = 75
DEFAULT_FAIR_THRESHOLD = 50


@dataclass(frozen=True)
class OutcomeThresholds:
    """Lower bounds (inclusive) of the outcome buckets for completed plans."""

    excellent: int = DEFAULT_EXCELLENT_THRESHOLD
    good: int = DEFAULT_GOOD_THRESHOLD
    fair: int = DEFAULT_FAIR_THRESHOLD

    def __post_init__(self) -> None:
        values = (self.excellent, self.good, self.fair)
        if any(v < 0 or v > 100 for v in values):
            raise ConfigurationError(f"Outcome thresholds must be within 0..100, got {values}")
        if not self.excellent >= self.good >= self.fair:
            raise ConfigurationError(
                f"Outcome thresholds must be descending (excellent >= good >= fair), got {values}"
            )


@dataclass(frozen=True)
class PolicyConfig:
    """All tunable policy values for the engine."""

    min_duration_days: int = DEFAULT_MIN_DURATION_DAYS
    min_feedback_length: int = DEFAULT_MIN_FEEDBACK_LENGTH
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    outcome_thresholds: OutcomeThresholds = field(default_factory=OutcomeThresholds)

    @classmethod
    def from_env(cls) -> PolicyConfig:
        """
        Build a PolicyConfig from QUITPLAN_* environment variables.

        Raises:
            ConfigurationError: If a variable is set but not a valid integer
        """
        return cls(
            min_duration_days=_env_int("QUITPLAN_MIN_DURATION_DAYS", DEFAULT_MIN_DURATION_DAYS, minimum=1),
            min_feedback_length=_env_int("QUITPLAN_MIN_FEEDBACK_LENGTH", DEFAULT_MIN_FEEDBACK_LENGTH, minimum=0),
            default_page_size=_env_int("QUITPLAN_DEFAULT_PAGE_SIZE", DEFAULT_PAGE_SIZE, minimum=1),
            max_page_size=_env_int("QUITPLAN_MAX_PAGE_SIZE", MAX_PAGE_SIZE, minimum=1),
            outcome_thresholds=OutcomeThresholds(
                excellent=_env_int("QUITPLAN_OUTCOME_EXCELLENT", DEFAULT_EXCELLENT_THRESHOLD),
                good=_env_int("QUITPLAN_OUTCOME_GOOD", DEFAULT_GOOD_THRESHOLD),
                fair=_env_int("QUITPLAN_OUTCOME_FAIR", DEFAULT_FAIR_THRESHOLD),
            ),
        )


def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


_policy: PolicyConfig | None = None


def get_policy() -> PolicyConfig:
    """Get the process-wide policy (loaded from the environment on first use)."""
    global _policy
    if _policy is None:
        _policy = PolicyConfig.from_env()
    return _policy


def set_policy(policy: PolicyConfig | None) -> None:
    """Replace the process-wide policy (None reloads from env on next use)."""
    global _policy
    _policy = policy


__all__ = [
    "DEFAULT_MIN_DURATION_DAYS",
    "DEFAULT_MIN_FEEDBACK_LENGTH",
    "OutcomeThresholds",
    "PolicyConfig",
    "get_policy",
    "set_policy",
]
