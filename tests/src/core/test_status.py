"""
Tests for plan status, action and role vocabulary.

Verifies:
- Legacy status spellings collapse to the canonical PlanStatus
- Matching is case-insensitive and tolerant of dashes/spaces
- Unknown values map to None instead of raising
- Terminal statuses
"""

from __future__ import annotations

import pytest

from src.core.status import (
    CLOSED_WITH_OUTCOME,
    TERMINAL_STATUSES,
    ActorRole,
    PlanStatus,
    normalize_role,
    normalize_status,
)


class TestNormalizeStatus:
    """Test the legacy-synonym mapping."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("ACTIVE", PlanStatus.ACTIVE),
            ("IN_PROGRESS", PlanStatus.ACTIVE),
            ("in-progress", PlanStatus.ACTIVE),
            ("approved", PlanStatus.ACTIVE),
            ("Accepted", PlanStatus.ACTIVE),
            ("REJECTED", PlanStatus.DENIED),
            ("declined", PlanStatus.DENIED),
            ("PENDING", PlanStatus.PENDING_APPROVAL),
            ("pending approval", PlanStatus.PENDING_APPROVAL),
            ("DISABLED", PlanStatus.CANCELLED),
            ("canceled", PlanStatus.CANCELLED),
            ("complete", PlanStatus.COMPLETED),
            ("FAILED", PlanStatus.FAILED),
            ("  draft  ", PlanStatus.DRAFT),
        ],
    )
    def test_synonyms(self, raw: str, expected: PlanStatus) -> None:
        assert normalize_status(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "ARCHIVED", "42"])
    def test_unknown_is_none(self, raw) -> None:
        assert normalize_status(raw) is None

    def test_enum_passes_through(self) -> None:
        assert normalize_status(PlanStatus.FAILED) is PlanStatus.FAILED

    def test_every_canonical_value_maps_to_itself(self) -> None:
        for status in PlanStatus:
            assert normalize_status(status.value) == status


class TestTerminal:
    """Test terminal and outcome-bearing status sets."""

    def test_terminal_statuses(self) -> None:
        assert TERMINAL_STATUSES == {
            PlanStatus.DENIED,
            PlanStatus.COMPLETED,
            PlanStatus.FAILED,
            PlanStatus.CANCELLED,
        }

    @pytest.mark.parametrize("status", list(PlanStatus))
    def test_is_terminal_property(self, status: PlanStatus) -> None:
        assert status.is_terminal == (status in TERMINAL_STATUSES)

    def test_cancelled_has_no_outcome(self) -> None:
        assert PlanStatus.CANCELLED not in CLOSED_WITH_OUTCOME
        assert PlanStatus.DENIED in CLOSED_WITH_OUTCOME


class TestNormalizeRole:
    """Test role parsing."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("member", ActorRole.MEMBER),
            ("Coach", ActorRole.COACH),
            (" ADMIN ", ActorRole.ADMIN),
            ("system", ActorRole.SYSTEM),
            (ActorRole.COACH, ActorRole.COACH),
        ],
    )
    def test_known_roles(self, raw, expected: ActorRole) -> None:
        assert normalize_role(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "doctor"])
    def test_unknown_roles(self, raw) -> None:
        assert normalize_role(raw) is None
