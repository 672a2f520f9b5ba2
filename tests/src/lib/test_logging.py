"""
Tests for logging setup and the plan log context.
"""

from __future__ import annotations

import logging

import pytest
import structlog

from src.core.status import ActorRole, PlanAction
from src.lib.logging import PLAN_CONTEXT_KEYS, plan_log_context, setup_logging


class TestPlanLogContext:
    """Binding plan fields to log records."""

    def test_binds_and_clears(self) -> None:
        with plan_log_context(plan_id=7, action=PlanAction.APPROVE, role=ActorRole.COACH):
            assert structlog.contextvars.get_contextvars() == {
                "plan_id": 7,
                "action": "approve",
                "role": "coach",
            }
        assert "plan_id" not in structlog.contextvars.get_contextvars()

    def test_none_values_skipped(self) -> None:
        with plan_log_context(plan_id=None, member_id=3):
            assert structlog.contextvars.get_contextvars() == {"member_id": 3}

    def test_nested_restores_outer(self) -> None:
        with plan_log_context(plan_id=1):
            with plan_log_context(plan_id=2):
                assert structlog.contextvars.get_contextvars()["plan_id"] == 2
            assert structlog.contextvars.get_contextvars()["plan_id"] == 1

    def test_unknown_key(self) -> None:
        with pytest.raises(ValueError):
            with plan_log_context(user_email="a@b.c"):
                pass

    def test_keys(self) -> None:
        assert set(PLAN_CONTEXT_KEYS) == {"plan_id", "member_id", "action", "role"}


class TestSetupLogging:
    """Root logger wiring."""

    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_installs_single_handler(self, monkeypatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "debug")
        setup_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_stdlib_records_carry_plan_context(self, monkeypatch) -> None:
        monkeypatch.setenv("QUITPLAN_DEV_MODE", "0")
        setup_logging()
        formatter = logging.getLogger().handlers[0].formatter
        record = logging.LogRecord("src.services", logging.INFO, __file__, 1, "approved", None, None)
        with plan_log_context(plan_id=42, action="approve"):
            output = formatter.format(record)
        assert '"plan_id": 42' in output
        assert '"action": "approve"' in output
